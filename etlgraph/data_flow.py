import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .graph import Channel, NodeKind

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Iterator

    from .graph import Node, PipelineGraph

logger = logging.getLogger(__name__)


@dataclass(kw_only=True, frozen=True, slots=True)
class DataFlowChain:
    """One data path: a source, zero or more transforms and, usually, a destination."""

    nodes: tuple["Node", ...]

    @property
    def node_ids(self) -> tuple[str, ...]:
        return tuple(node.id for node in self.nodes)

    @property
    def source(self) -> "Node":
        return self.nodes[0]

    def links(self) -> "Iterator[tuple[str, str]]":
        ids = self.node_ids
        return zip(ids, ids[1:])

    def __len__(self) -> int:
        return len(self.nodes)

    def __str__(self) -> str:
        return " => ".join(self.node_ids)


@dataclass(kw_only=True, frozen=True, slots=True)
class DataFlowPlan:
    chains: tuple[DataFlowChain, ...]

    @property
    def connections(self) -> tuple[tuple[str, str], ...]:
        """Unique producer/consumer pairs across every chain, in first-seen order."""
        return tuple(dict.fromkeys(link for chain in self.chains for link in chain.links()))

    def __iter__(self) -> "Iterator[DataFlowChain]":
        return iter(self.chains)

    def __len__(self) -> int:
        return len(self.chains)

    def __str__(self) -> str:
        return "\n".join(str(chain) for chain in self.chains)


def _walk(
    graph: "PipelineGraph", path: list["Node"], chains: list[DataFlowChain]
) -> None:
    node = path[-1]
    on_path = {n.id for n in path}

    successors: list["Node"] = []
    if node.kind is not NodeKind.DESTINATION:
        for edge in graph.outgoing(node.id, Channel.DATA):
            target = graph.node(edge.target_node_id)
            if target.is_control or target.kind is NodeKind.SOURCE:
                continue
            if target.id in on_path:
                # cycle: the path ends here
                continue
            if any(s.id == target.id for s in successors):
                continue

            successors.append(target)

    if not successors:
        if len(path) > 1:
            chains.append(DataFlowChain(nodes=tuple(path)))

        return

    for target in successors:
        _walk(graph, [*path, target], chains)


def analyze_data_flow(graph: "PipelineGraph") -> DataFlowPlan:
    chains: list[DataFlowChain] = []
    for node in graph.nodes:
        if node.kind is NodeKind.SOURCE:
            _walk(graph, [node], chains)

    plan = DataFlowPlan(chains=tuple(chains))
    for chain in plan:
        logger.debug("Data-flow chain of '%s': %s", graph.id, chain)

    return plan
