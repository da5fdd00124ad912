"""
Pipeline graph model: the typed, immutable form of a visual pipeline sheet.
"""

import hashlib
import json
from enum import Enum
from functools import cached_property
from pathlib import Path
from typing import TYPE_CHECKING, Any

import networkx as nx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .exceptions import MalformedGraphError

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Mapping


class NodeKind(str, Enum):
    START = "start"
    STOP = "stop"
    SOURCE = "source"
    TRANSFORM = "transform"
    DESTINATION = "destination"

    @property
    def is_control(self) -> bool:
        return self in (NodeKind.START, NodeKind.STOP)

    @classmethod
    def infer(cls, node_type: str | None, component_id: str | None) -> "NodeKind":
        if node_type:
            try:
                return cls(node_type)
            except ValueError:
                pass

        cid = (component_id or "").lower()
        if cid in (cls.START.value, cls.STOP.value):
            return cls(cid)
        if "source" in cid:
            return cls.SOURCE
        if "dest" in cid:
            return cls.DESTINATION

        return cls.TRANSFORM


class Channel(str, Enum):
    CONTROL = "control-flow"
    DATA = "data-flow"

    @classmethod
    def from_handle(cls, handle: "Any") -> "Channel":
        if isinstance(handle, str) and "control" in handle and "data" not in handle:
            return cls.CONTROL

        return cls.DATA


class ParameterType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    SECRET = "secret"
    SQL = "sql"
    SELECT = "select"


class Parameter(BaseModel):
    name: str
    declared_type: str = ParameterType.STRING.value
    required: bool = False
    default_value: Any = None
    value: Any = None

    model_config = ConfigDict(extra="forbid", frozen=True)

    @property
    def resolved_value(self) -> Any:
        return self.default_value if self.value is None else self.value


class Node(BaseModel):
    id: str
    kind: NodeKind
    implementation_ref: str | None = None
    component_id: str | None = None
    label: str | None = None
    parameters: tuple[Parameter, ...] = ()
    thread_count: int = Field(default=1, ge=1)

    model_config = ConfigDict(extra="forbid", frozen=True)

    @property
    def display_name(self) -> str:
        if name := self.label or self.component_id:
            return f"{name} ({self.id})"

        return self.id

    @property
    def is_control(self) -> bool:
        return self.kind.is_control


class Edge(BaseModel):
    id: str
    source_node_id: str
    target_node_id: str
    channel: Channel = Channel.DATA

    model_config = ConfigDict(extra="forbid", frozen=True)


class PipelineGraph(BaseModel):
    id: str = ""
    version: str = ""
    name: str = ""
    nodes: tuple[Node, ...] = ()
    edges: tuple[Edge, ...] = ()

    model_config = ConfigDict(extra="forbid", frozen=True)

    @model_validator(mode="after")
    def _check_references(self) -> "PipelineGraph":
        seen: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                raise MalformedGraphError(f"duplicate node id '{node.id}'")

            seen.add(node.id)

        for edge in self.edges:
            for end in (edge.source_node_id, edge.target_node_id):
                if end not in seen:
                    raise MalformedGraphError(
                        f"edge '{edge.id}' references unknown node '{end}'"
                    )

        return self

    @cached_property
    def _index(self) -> dict[str, Node]:
        return {node.id: node for node in self.nodes}

    def node(self, node_id: str) -> Node:
        try:
            return self._index[node_id]
        except KeyError:
            raise MalformedGraphError(f"unknown node '{node_id}'") from None

    def outgoing(self, node_id: str, channel: Channel | None = None) -> list[Edge]:
        return [
            edge
            for edge in self.edges
            if edge.source_node_id == node_id
            and (channel is None or edge.channel is channel)
        ]

    def _first_of_kind(self, kind: NodeKind) -> Node | None:
        return next((node for node in self.nodes if node.kind is kind), None)

    @property
    def start_node(self) -> Node | None:
        return self._first_of_kind(NodeKind.START)

    @property
    def stop_node(self) -> Node | None:
        return self._first_of_kind(NodeKind.STOP)

    @property
    def component_nodes(self) -> list[Node]:
        return [node for node in self.nodes if not node.is_control]

    def to_digraph(self) -> nx.MultiDiGraph:
        digraph = nx.MultiDiGraph()
        for node in self.nodes:
            digraph.add_node(node.id, kind=node.kind)

        for edge in self.edges:
            digraph.add_edge(
                edge.source_node_id, edge.target_node_id, key=edge.id, channel=edge.channel
            )

        return digraph

    def fingerprint(self) -> str:
        """Stable digest of the canonical form of this graph."""
        canonical = json.dumps(self.model_dump(mode="json"), sort_keys=True)
        return hashlib.sha256(canonical.encode()).hexdigest()

    ##
    ## sheet parsing
    ##

    @classmethod
    def from_sheet(cls, sheet: "Mapping[str, Any]") -> "PipelineGraph":
        try:
            return cls(
                id=str(sheet.get("id") or ""),
                version=str(sheet.get("version") or ""),
                name=str(sheet.get("name") or ""),
                nodes=tuple(_parse_node(node) for node in sheet.get("nodes") or ()),
                edges=tuple(
                    _parse_edge(edge, index)
                    for index, edge in enumerate(sheet.get("edges") or ())
                ),
            )
        except (AttributeError, KeyError, TypeError, ValidationError) as e:
            raise MalformedGraphError(str(e)) from e

    @classmethod
    def from_json(cls, data: str | bytes) -> "PipelineGraph":
        try:
            sheet = json.loads(data)
        except json.JSONDecodeError as e:
            raise MalformedGraphError(f"invalid JSON: {e}") from e

        if not isinstance(sheet, dict):
            raise MalformedGraphError("a sheet must be a JSON object")

        return cls.from_sheet(sheet)

    @classmethod
    def load(cls, path: str | Path) -> "PipelineGraph":
        return cls.from_json(Path(path).read_bytes())


def _parse_parameter(param: "Mapping[str, Any]") -> Parameter:
    return Parameter(
        name=param["name"],
        declared_type=param.get("parameterType") or ParameterType.STRING.value,
        required=bool(param.get("required", False)),
        default_value=param.get("defaultValue"),
        value=param.get("value"),
    )


def _parse_node(node: "Mapping[str, Any]") -> Node:
    component_data = (node.get("data") or {}).get("componentData") or {}
    component_id = component_data.get("id")
    kind = NodeKind.infer(node.get("type") or component_data.get("type"), component_id)

    implementation_ref = component_data.get("implementationClass")
    if implementation_ref is None and not kind.is_control:
        implementation_ref = component_id

    return Node(
        id=str(node["id"]),
        kind=kind,
        implementation_ref=implementation_ref,
        component_id=component_id,
        label=component_data.get("label"),
        parameters=tuple(
            _parse_parameter(param) for param in component_data.get("parameters") or ()
        ),
        thread_count=int(component_data.get("threads") or 1),
    )


def _parse_edge(edge: "Mapping[str, Any]", index: int) -> Edge:
    source, target = str(edge["source"]), str(edge["target"])
    return Edge(
        id=str(edge.get("id") or f"e{index}-{source}-{target}"),
        source_node_id=source,
        target_node_id=target,
        channel=Channel.from_handle(edge.get("sourceHandle")),
    )
