import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import networkx as nx

from .exceptions import (
    EmptyFlowError,
    FlowValidationError,
    IncompatibleImplementationError,
    MissingControlNodeError,
    NoPathError,
)
from .graph import NodeKind
from .runtime.component import DestinationComponent, SourceComponent, TransformComponent
from .runtime.registry import ComponentRegistry

if TYPE_CHECKING:  # pragma: no cover
    from .graph import PipelineGraph

logger = logging.getLogger(__name__)

_EXPECTED_BASES = {
    NodeKind.SOURCE: SourceComponent,
    NodeKind.TRANSFORM: TransformComponent,
    NodeKind.DESTINATION: DestinationComponent,
}


@dataclass(kw_only=True, frozen=True, slots=True)
class ValidationResult:
    error: FlowValidationError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def reason(self) -> str | None:
        return None if self.error is None else self.error.reason

    @property
    def node_id(self) -> str | None:
        return None if self.error is None else self.error.node_id

    def __bool__(self) -> bool:
        return self.ok


class FlowValidator:
    def __init__(self, registry: ComponentRegistry | None = None) -> None:
        self.registry = registry or ComponentRegistry.default()

    def validate(self, graph: "PipelineGraph") -> ValidationResult:
        try:
            self.check(graph)
        except FlowValidationError as e:
            logger.debug("Flow '%s' is invalid: %s", graph.id, e.reason)
            return ValidationResult(error=e)

        return ValidationResult()

    def check(self, graph: "PipelineGraph") -> None:
        """Raise the first structural problem of `graph`, if any."""
        if not graph.nodes:
            raise EmptyFlowError()

        start, stop = graph.start_node, graph.stop_node
        if start is None:
            raise MissingControlNodeError(NodeKind.START.value)
        if stop is None:
            raise MissingControlNodeError(NodeKind.STOP.value)

        # reachability over any edge, regardless of its channel
        if stop.id not in nx.descendants(graph.to_digraph(), start.id):
            raise NoPathError(start.id, stop.id)

        for node in graph.component_nodes:
            cls = self.registry.resolve(node.implementation_ref, node.id)

            expected = _EXPECTED_BASES[node.kind]
            if not issubclass(cls, expected):
                raise IncompatibleImplementationError(
                    node.id, node.implementation_ref, node.kind.value
                )
