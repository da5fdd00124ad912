from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Iterable, Sequence
    from typing import Any


class EtlGraphError(Exception):
    def __init__(self, *args: "Any", **kwargs: "Any") -> None:
        super().__init__(*args, **kwargs)


##
## GRAPH
##


class MalformedGraphError(EtlGraphError):
    def __init__(self, message: str) -> None:
        super().__init__(f"Malformed pipeline graph: {message}")


##
## VALIDATION
##


class FlowValidationError(EtlGraphError):
    def __init__(self, message: str, node_id: str | None = None) -> None:
        super().__init__(message)
        self.reason = message
        self.node_id = node_id


class EmptyFlowError(FlowValidationError):
    def __init__(self) -> None:
        super().__init__("Flow must contain at least one node.")


class MissingControlNodeError(FlowValidationError):
    def __init__(self, kind: str) -> None:
        super().__init__(f"Flow must contain a '{kind}' node.")
        self.kind = kind


class NoPathError(FlowValidationError):
    def __init__(self, start_id: str, stop_id: str) -> None:
        super().__init__(
            f"No path between start node '{start_id}' and stop node '{stop_id}'.",
            node_id=start_id,
        )
        self.start_id = start_id
        self.stop_id = stop_id


class UnresolvedImplementationError(FlowValidationError):
    def __init__(
        self,
        node_id: str | None,
        implementation_ref: str | None,
        suggestions: "Sequence[str]" = (),
    ) -> None:
        if implementation_ref is None:
            message = f"Node '{node_id}' has no implementation."
        else:
            message = (
                f"Implementation '{implementation_ref}' of node '{node_id}' is not"
                " registered."
            )
            if suggestions:
                message += f" Did you mean: {', '.join(suggestions)}?"

        super().__init__(message, node_id=node_id)
        self.implementation_ref = implementation_ref


class IncompatibleImplementationError(FlowValidationError):
    def __init__(self, node_id: str, implementation_ref: str, expected: str) -> None:
        super().__init__(
            f"Implementation '{implementation_ref}' of node '{node_id}' is not"
            f" a {expected} component.",
            node_id=node_id,
        )
        self.implementation_ref = implementation_ref
        self.expected = expected


##
## GENERATION
##


class GenerationError(EtlGraphError):
    def __init__(self, message: str, node_id: str | None = None) -> None:
        super().__init__(message)
        self.node_id = node_id


class MissingParameterError(GenerationError):
    def __init__(self, node_id: str, parameter: str) -> None:
        super().__init__(
            f"Required parameter '{parameter}' of node '{node_id}' has no value"
            " and no default.",
            node_id=node_id,
        )
        self.parameter = parameter


class InvalidParameterError(GenerationError):
    def __init__(self, node_id: str, parameter: str, value: "Any", type_: str) -> None:
        super().__init__(
            f"Parameter '{parameter}' of node '{node_id}' is not a valid {type_}:"
            f" {value!r}.",
            node_id=node_id,
        )
        self.parameter = parameter


class UnknownParameterError(GenerationError):
    def __init__(self, component: str, parameter: str) -> None:
        super().__init__(f"Component '{component}' has no parameter '{parameter}'.")
        self.parameter = parameter


##
## BUILD
##


class BuildError(EtlGraphError):
    def __init__(
        self, diagnostics: "Iterable[str]", source: str | None = None
    ) -> None:
        self.diagnostics = list(diagnostics)
        self.source = source

        message = "Failed to build flow:\n  " + "\n  ".join(self.diagnostics)
        if source is not None:
            numbered = "\n".join(
                f"{lineno:4d} | {line}"
                for lineno, line in enumerate(source.splitlines(), start=1)
            )
            message += f"\n\nGenerated source:\n{numbered}"

        super().__init__(message)


class DependencyResolutionError(BuildError):
    def __init__(self, missing: "Iterable[str]") -> None:
        self.missing = list(missing)
        super().__init__(
            f"Required dependency '{requirement}' could not be resolved."
            for requirement in self.missing
        )


##
## LOAD
##


class BundleLoadError(EtlGraphError):
    def __init__(self, message: str) -> None:
        super().__init__(message)


class MissingManifestAttributeError(BundleLoadError):
    def __init__(self, bundle: str, attribute: str) -> None:
        super().__init__(f"Bundle '{bundle}' has no '{attribute}' manifest attribute.")
        self.attribute = attribute


class NestedArchiveError(BundleLoadError):
    def __init__(self, bundle: str, archive: str, reason: str) -> None:
        super().__init__(
            f"Nested archive '{archive}' of bundle '{bundle}' cannot be loaded:"
            f" {reason}"
        )
        self.archive = archive


class EntryPointError(BundleLoadError):
    def __init__(self, entry_point: str, reason: str) -> None:
        super().__init__(f"Entry point '{entry_point}' cannot be used: {reason}")
        self.entry_point = entry_point


class ContextMismatchError(BundleLoadError):
    def __init__(self, expected: type, received: type) -> None:
        super().__init__(
            f"Execution context '{received.__module__}.{received.__qualname__}'"
            f" (id {id(received):#x}) was not created by the loading context of"
            f" this flow, which expects id {id(expected):#x}."
        )


##
## RUNTIME
##


class FlowExecutionError(EtlGraphError):
    def __init__(self, failures: "Sequence[tuple[str, BaseException]]") -> None:
        self.failures = list(failures)
        details = "\n  ".join(
            f"{component}: {type(exc).__name__}: {exc}"
            for component, exc in self.failures
        )
        super().__init__(
            f"{len(self.failures)} worker(s) failed during flow execution:\n"
            f"  {details}"
        )


class StreamTerminatedError(EtlGraphError):
    def __init__(self, owner: str, op: str) -> None:
        super().__init__(
            f"Cannot {op} on the data stream of '{owner}' after its terminator."
        )
        self.owner = owner


class FlowRunError(EtlGraphError):
    def __init__(self, bundle: str, cause: BaseException) -> None:
        super().__init__(
            f"Flow from bundle '{bundle}' failed: {type(cause).__name__}: {cause}"
        )
        self.bundle = bundle
        self.cause_type = type(cause).__name__
