import difflib
import importlib
import warnings
from typing import TYPE_CHECKING

from ..exceptions import UnresolvedImplementationError
from .component import ETLComponent

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable, Iterator
    from typing import ClassVar, TypeVar

    C = TypeVar("C", bound=type[ETLComponent])


class ComponentRegistryOverrideWarning(UserWarning):
    pass


def dotted_path(cls: type) -> str:
    return f"{cls.__module__}.{cls.__qualname__}"


class ComponentRegistry:
    """
    Maps implementation references to component classes.

    A class is reachable under its stable component id and under its dotted path
    `module.QualName`. Dotted paths of classes that were never registered are
    imported on first use, as long as they name an `ETLComponent` subclass.
    """

    _default: "ClassVar[ComponentRegistry | None]" = None

    def __init__(self) -> None:
        self._components: dict[str, type[ETLComponent]] = {}

    @classmethod
    def default(cls) -> "ComponentRegistry":
        if cls._default is None:
            cls._default = cls()

        return cls._default

    def register(self, component_id: str, cls: type[ETLComponent]) -> None:
        if not component_id or not component_id.strip():
            raise ValueError("Component id must be non-empty.")

        if not (isinstance(cls, type) and issubclass(cls, ETLComponent)):
            raise TypeError(f"'{cls!r}' is not an ETLComponent subclass.")

        for key in (component_id.strip(), dotted_path(cls)):
            if (existing := self._components.get(key)) is not None and existing is not cls:
                warnings.warn(
                    f"Component '{key}' is already registered. This will override that"
                    " implementation.",
                    ComponentRegistryOverrideWarning,
                    stacklevel=3,
                )

            self._components[key] = cls

        if "component_id" not in vars(cls):
            cls.component_id = component_id.strip()

    def resolve(self, ref: str | None, node_id: str | None = None) -> type[ETLComponent]:
        if ref is None:
            raise UnresolvedImplementationError(node_id, ref)

        if (cls := self._components.get(ref)) is not None:
            return cls

        if (cls := self._import(ref)) is not None:
            self._components[ref] = cls
            return cls

        raise UnresolvedImplementationError(
            node_id,
            ref,
            difflib.get_close_matches(ref, list(self._components), n=3, cutoff=0.6),
        )

    def _import(self, ref: str) -> type[ETLComponent] | None:
        module_name, _, qualname = ref.rpartition(".")
        while module_name:
            try:
                target = importlib.import_module(module_name)
            except ImportError:
                module_name, _, head = module_name.rpartition(".")
                qualname = f"{head}.{qualname}"
                continue

            for attr in qualname.split("."):
                target = getattr(target, attr, None)

            if isinstance(target, type) and issubclass(target, ETLComponent):
                return target

            return None

        return None

    def __contains__(self, ref: str) -> bool:
        return ref in self._components

    def __iter__(self) -> "Iterator[str]":
        return iter(sorted(self._components))


def component(
    component_id: str, registry: ComponentRegistry | None = None
) -> "Callable[[C], C]":
    """Register a component class under `component_id` and its dotted path."""

    def decorator(cls: "C") -> "C":
        (registry or ComponentRegistry.default()).register(component_id, cls)
        return cls

    return decorator
