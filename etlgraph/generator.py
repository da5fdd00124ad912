"""
Source generation for compiled flows.

The generator turns a validated graph and its two analyses into the source of one
Python module defining a `CompiledFlow` subclass. Output only depends on the graph
and on the component classes it references, so generating the same graph twice
yields byte-identical source.
"""

import json
import keyword
import logging
import math
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .exceptions import (
    GenerationError,
    InvalidParameterError,
    MissingParameterError,
    UnknownParameterError,
)
from .graph import ParameterType
from .runtime.component import DataConsumer, DataProducer
from .runtime.registry import ComponentRegistry

if TYPE_CHECKING:  # pragma: no cover
    from typing import Any

    from .control_flow import ControlSpine
    from .data_flow import DataFlowPlan
    from .graph import Node, PipelineGraph
    from .runtime.component import ETLComponent

logger = logging.getLogger(__name__)

GENERATED_PACKAGE = "etlgraph.generated"
INDENT = " " * 4

_ESCAPES = {"\\": "\\\\", '"': '\\"', "\n": "\\n", "\r": "\\r", "\t": "\\t"}


##
## literals
##


def quote_string(value: str) -> str:
    """Double-quoted Python literal of `value`, with control characters escaped."""
    escaped = []
    for char in value:
        if char in _ESCAPES:
            escaped.append(_ESCAPES[char])
        elif ord(char) < 0x20 or ord(char) == 0x7F:
            escaped.append(f"\\x{ord(char):02x}")
        else:
            escaped.append(char)

    return f'"{"".join(escaped)}"'


def _format_number(value: "Any") -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return repr(value)
    if isinstance(value, float):
        return repr(value) if math.isfinite(value) else None

    if isinstance(value, str):
        text = value.strip()
        try:
            return repr(int(text))
        except ValueError:
            pass

        try:
            number = float(text)
        except ValueError:
            return None

        return repr(number) if math.isfinite(number) else None

    return None


def _format_boolean(value: "Any") -> str | None:
    if isinstance(value, bool):
        return repr(value)
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return repr(value.strip().lower() == "true")

    return None


def format_literal(
    value: "Any", declared_type: str, *, node_id: str = "", parameter: str = ""
) -> str:
    """
    Format a parameter value as a Python literal of its declared type.

    Numbers and booleans are emitted verbatim; every other type, known or not,
    becomes a quoted string.
    """
    if declared_type == ParameterType.NUMBER.value:
        literal = _format_number(value)
    elif declared_type == ParameterType.BOOLEAN.value:
        literal = _format_boolean(value)
    else:
        literal = quote_string(value if isinstance(value, str) else json.dumps(value))

    if literal is None:
        raise InvalidParameterError(node_id, parameter, value, declared_type)

    return literal


##
## identifiers
##


def _identifier(text: str) -> str:
    name = re.sub(r"\W", "_", text, flags=re.ASCII) or "_"
    if name[0].isdigit():
        name = f"_{name}"
    if keyword.iskeyword(name):
        name = f"{name}_"

    return name


def _import_target(cls: type) -> tuple[str, str]:
    if cls.__module__ in ("__main__", "builtins") or "<locals>" in cls.__qualname__:
        raise GenerationError(
            f"Component class '{cls.__qualname__}' is not importable from a module."
        )

    return cls.__module__, cls.__qualname__.split(".")[0]


@dataclass(kw_only=True, frozen=True, slots=True)
class GeneratedFlow:
    module_name: str
    class_name: str
    source: str
    component_classes: tuple[type["ETLComponent"], ...]

    @property
    def qualified_name(self) -> str:
        return f"{self.module_name}.{self.class_name}"

    @property
    def filename(self) -> str:
        return self.module_name.replace(".", "/") + ".py"


class _SourceWriter:
    def __init__(self) -> None:
        self.lines: list[str] = []
        self._level = 0

    def line(self, text: str = "") -> None:
        self.lines.append(f"{INDENT * self._level}{text}" if text else "")

    def indent(self) -> None:
        self._level += 1

    def dedent(self) -> None:
        self._level -= 1

    def getvalue(self) -> str:
        return "\n".join(self.lines) + "\n"


class FlowGenerator:
    def __init__(self, registry: ComponentRegistry | None = None) -> None:
        self.registry = registry or ComponentRegistry.default()

    def generate(
        self, graph: "PipelineGraph", spine: "ControlSpine", plan: "DataFlowPlan"
    ) -> GeneratedFlow:
        digest = graph.fingerprint()[:12]
        module_name = f"{GENERATED_PACKAGE}.flow_{digest}"
        class_name = f"Flow_{digest}"

        nodes = graph.component_nodes
        classes = {
            node.id: self.registry.resolve(node.implementation_ref, node.id)
            for node in nodes
        }
        attributes = self._attribute_names(nodes)
        aliases = self._class_aliases(list(classes.values()))

        for producer, consumer in plan.connections:
            if not issubclass(classes[producer], DataProducer):
                raise GenerationError(
                    f"Node '{producer}' feeds '{consumer}' but does not produce rows.",
                    node_id=producer,
                )
            if not issubclass(classes[consumer], DataConsumer):
                raise GenerationError(
                    f"Node '{consumer}' is fed by '{producer}' but does not consume rows.",
                    node_id=consumer,
                )

        out = _SourceWriter()
        self._write_header(out, graph, aliases)
        out.line()
        out.line()
        out.line(f"class {class_name}(CompiledFlow):")
        out.indent()
        self._write_class_attributes(out, graph, spine, plan)
        out.line()
        self._write_init(out, nodes, attributes)

        for node in nodes:
            out.line()
            self._write_factory(out, node, classes[node.id], aliases, attributes)

        out.line()
        self._write_connect(out, plan, attributes)

        for node in nodes:
            out.line()
            self._write_worker(out, node, attributes)

        out.line()
        self._write_execute(out, self._start_order(graph, spine), attributes)
        out.dedent()

        generated = GeneratedFlow(
            module_name=module_name,
            class_name=class_name,
            source=out.getvalue(),
            component_classes=tuple(dict.fromkeys(classes.values())),
        )
        logger.debug(
            "Generated %s for '%s' (%d component(s), %d connection(s))",
            generated.qualified_name,
            graph.id,
            len(nodes),
            len(plan.connections),
        )
        return generated

    ##
    ## naming
    ##

    @staticmethod
    def _attribute_names(nodes: list["Node"]) -> dict[str, str]:
        names: dict[str, str] = {}
        taken: set[str] = set()
        for node in nodes:
            base = f"node_{_identifier(node.id).lstrip('_')}"
            name, suffix = base, 1
            while name in taken:
                suffix += 1
                name = f"{base}_{suffix}"

            taken.add(name)
            names[node.id] = name

        return names

    @staticmethod
    def _class_aliases(classes: list[type["ETLComponent"]]) -> dict[type, str]:
        aliases: dict[type, str] = {}
        taken = {"CompiledFlow", "ExecutionContext"}
        for cls in classes:
            if cls in aliases:
                continue

            _, top = _import_target(cls)
            name, suffix = top, 1
            while name in taken:
                suffix += 1
                name = f"{top}_{suffix}"

            taken.add(name)
            aliases[cls] = name

        return aliases

    @staticmethod
    def _reference(cls: type, aliases: dict[type, str]) -> str:
        _, *rest = cls.__qualname__.split(".")
        return ".".join([aliases[cls], *rest])

    @staticmethod
    def _start_order(graph: "PipelineGraph", spine: "ControlSpine") -> list["Node"]:
        ordered = [node for node in spine if not node.is_control]
        seen = {node.id for node in ordered}
        ordered.extend(
            node for node in graph.component_nodes if node.id not in seen
        )
        return ordered

    ##
    ## sections
    ##

    def _write_header(
        self, out: _SourceWriter, graph: "PipelineGraph", aliases: dict[type, str]
    ) -> None:
        out.line('"""')
        out.line(f"Compiled flow {quote_string(graph.name or graph.id)}.")
        out.line()
        out.line("Generated from the pipeline graph; regenerate instead of editing.")
        out.line('"""')
        out.line()
        out.line("from etlgraph.runtime import CompiledFlow, ExecutionContext")

        imports = []
        for cls, alias in aliases.items():
            module, top = _import_target(cls)
            imports.append(
                f"from {module} import {top}"
                if alias == top
                else f"from {module} import {top} as {alias}"
            )

        for statement in sorted(set(imports)):
            out.line(statement)

    def _write_class_attributes(
        self,
        out: _SourceWriter,
        graph: "PipelineGraph",
        spine: "ControlSpine",
        plan: "DataFlowPlan",
    ) -> None:
        out.line(f"flow_id = {quote_string(graph.id)}")
        out.line(
            "control_spine = ("
            + "".join(f"{quote_string(node_id)}, " for node_id in spine.node_ids).rstrip()
            + ")"
        )
        out.line("data_flow_chains = (")
        out.indent()
        for chain in plan:
            out.line(
                "("
                + "".join(f"{quote_string(node_id)}, " for node_id in chain.node_ids).rstrip()
                + "),"
            )
        out.dedent()
        out.line(")")

    def _write_init(
        self, out: _SourceWriter, nodes: list["Node"], attributes: dict[str, str]
    ) -> None:
        out.line("def __init__(self, **settings):")
        out.indent()
        out.line("super().__init__(**settings)")
        for node in nodes:
            out.line(f"self.{attributes[node.id]} = self._create_{attributes[node.id]}()")

        out.line("self.components = {")
        out.indent()
        for node in nodes:
            out.line(f"{quote_string(node.id)}: self.{attributes[node.id]},")
        out.dedent()
        out.line("}")
        out.dedent()

    def _write_factory(
        self,
        out: _SourceWriter,
        node: "Node",
        cls: type["ETLComponent"],
        aliases: dict[type, str],
        attributes: dict[str, str],
    ) -> None:
        out.line(f"def _create_{attributes[node.id]}(self):")
        out.indent()
        out.line(
            f"component = {self._reference(cls, aliases)}("
            f"{quote_string(node.id)}, queue_size=self.config.queue_size)"
        )
        for name, literal in self._bind_parameters(node, cls):
            out.line(f"component.set_parameter({quote_string(name)}, {literal})")

        out.line("return component")
        out.dedent()

    def _bind_parameters(
        self, node: "Node", cls: type["ETLComponent"]
    ) -> list[tuple[str, str]]:
        bound: list[tuple[str, str]] = []
        seen: set[str] = set()

        for param in node.parameters:
            spec = cls.parameter_spec(param.name)
            if spec is None:
                raise UnknownParameterError(f"{cls.__qualname__} ({node.id})", param.name)

            seen.add(param.name)
            value = param.resolved_value
            if value is None:
                # the component keeps its own default, if any
                if (param.required or spec.required) and spec.default is None:
                    raise MissingParameterError(node.id, param.name)
                continue

            bound.append(
                (
                    param.name,
                    format_literal(
                        value, param.declared_type, node_id=node.id, parameter=param.name
                    ),
                )
            )

        for spec in cls.parameters:
            if spec.name not in seen and spec.required and spec.default is None:
                raise MissingParameterError(node.id, spec.name)

        return bound

    def _write_connect(
        self, out: _SourceWriter, plan: "DataFlowPlan", attributes: dict[str, str]
    ) -> None:
        out.line("def connect(self):")
        out.indent()
        if not plan.connections:
            out.line("pass")
        for producer, consumer in plan.connections:
            out.line(
                f"self.{attributes[producer]}.register_consumer("
                f"self.{attributes[consumer]})"
            )
        out.dedent()

    def _write_worker(
        self, out: _SourceWriter, node: "Node", attributes: dict[str, str]
    ) -> None:
        out.line(f"async def _run_{attributes[node.id]}(self, context):")
        out.indent()
        out.line(
            f"async with self.worker_scope({quote_string(node.id)}, context)"
            " as component:"
        )
        out.indent()
        out.line("await component.execute(context)")
        out.dedent()
        out.dedent()

    def _write_execute(
        self, out: _SourceWriter, order: list["Node"], attributes: dict[str, str]
    ) -> None:
        out.line("async def execute(self, context: ExecutionContext) -> None:")
        out.indent()
        out.line("context = self.ensure_context(context)")
        out.line('context.info("Starting flow execution")')
        out.line("self.connect()")
        out.line("async with self.supervise(context) as tg:")
        out.indent()
        if not order:
            out.line("pass")
        for node in order:
            out.line("tg.start_soon(")
            out.indent()
            out.line(f"self._run_{attributes[node.id]},")
            out.line(f"context.for_component({quote_string(node.display_name)}),")
            out.line(f"name={quote_string(node.id)},")
            out.dedent()
            out.line(")")
        out.dedent()
        out.dedent()
