import logging
import warnings
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .graph import Channel, NodeKind

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Iterator

    from .graph import Node, PipelineGraph

logger = logging.getLogger(__name__)


class ControlFlowFanOutWarning(UserWarning):
    pass


@dataclass(kw_only=True, frozen=True, slots=True)
class ControlSpine:
    """
    The ordered execution spine of a flow: the start marker, the sources reached
    along control-flow edges and the stop marker. Transforms and destinations run
    under data-flow ownership and are never part of it.
    """

    nodes: tuple["Node", ...]

    @property
    def node_ids(self) -> tuple[str, ...]:
        return tuple(node.id for node in self.nodes)

    @property
    def sources(self) -> tuple["Node", ...]:
        return tuple(node for node in self.nodes if node.kind is NodeKind.SOURCE)

    def __iter__(self) -> "Iterator[Node]":
        return iter(self.nodes)

    def __len__(self) -> int:
        return len(self.nodes)

    def __str__(self) -> str:
        return " -> ".join(self.node_ids)


def analyze_control_flow(graph: "PipelineGraph") -> ControlSpine:
    start = graph.start_node
    if start is None:
        return ControlSpine(nodes=graph.nodes)

    collected: list["Node"] = []
    visited: set[str] = set()
    node: "Node | None" = start

    while node is not None and node.id not in visited:
        visited.add(node.id)
        if node.is_control or node.kind is NodeKind.SOURCE:
            collected.append(node)

        if node.kind is NodeKind.STOP:
            break

        candidates = [
            edge
            for edge in graph.outgoing(node.id, Channel.CONTROL)
            if edge.target_node_id not in visited
        ]
        if not candidates:
            break

        if len(candidates) > 1:
            warnings.warn(
                f"Node '{node.id}' has {len(candidates)} outgoing control-flow edges;"
                f" following '{candidates[0].id}' and ignoring"
                f" {', '.join(repr(edge.id) for edge in candidates[1:])}.",
                ControlFlowFanOutWarning,
                stacklevel=2,
            )

        node = graph.node(candidates[0].target_node_id)

    spine = ControlSpine(nodes=tuple(collected))
    logger.debug("Control spine of '%s': %s", graph.id, spine)
    return spine
