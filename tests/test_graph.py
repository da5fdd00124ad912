import json

import networkx as nx
import pytest

from etlgraph import Channel, NodeKind, PipelineGraph
from etlgraph.exceptions import MalformedGraphError

from integration.sheets import control, data, linear_sheet, node, sheet, start, stop


def test_from_sheet():
    graph = PipelineGraph.from_sheet(
        linear_sheet(
            node("source", "list-source", "source", values="1,2"),
            node("sink", "collect-destination", "destination"),
        )
    )

    assert [n.id for n in graph.nodes] == ["start", "source", "sink", "stop"]
    assert graph.start_node.id == "start"
    assert graph.stop_node.id == "stop"
    assert [n.id for n in graph.component_nodes] == ["source", "sink"]

    source = graph.node("source")
    assert source.kind is NodeKind.SOURCE
    assert source.implementation_ref == "list-source"
    assert source.display_name == "List Source (source)"
    assert source.parameters[0].name == "values"
    assert source.parameters[0].resolved_value == "1,2"

    assert graph.node("start").implementation_ref is None
    assert [e.channel for e in graph.edges] == [
        Channel.CONTROL,
        Channel.DATA,
        Channel.CONTROL,
    ]


@pytest.mark.parametrize(
    ("node_type", "component_id", "kind"),
    (
        ("source", "anything", NodeKind.SOURCE),
        (None, "start", NodeKind.START),
        (None, "stop", NodeKind.STOP),
        (None, "database-source", NodeKind.SOURCE),
        ("etlNode", "csv-destination", NodeKind.DESTINATION),
        (None, "db-dest", NodeKind.DESTINATION),
        (None, "filter", NodeKind.TRANSFORM),
        (None, "map-transform", NodeKind.TRANSFORM),
    ),
)
def test_kind_inference(node_type, component_id, kind):
    assert NodeKind.infer(node_type, component_id) is kind


@pytest.mark.parametrize(
    ("handle", "channel"),
    (
        ("control-out", Channel.CONTROL),
        ("control", Channel.CONTROL),
        ("data-out", Channel.DATA),
        ("control-data", Channel.DATA),
        ("out", Channel.DATA),
        (None, Channel.DATA),
        (3, Channel.DATA),
    ),
)
def test_channel_from_handle(handle, channel):
    assert Channel.from_handle(handle) is channel


def test_implementation_class_wins():
    graph = PipelineGraph.from_sheet(
        sheet(
            [node("n", "filter", implementation="integration.components.Passthrough")],
            [],
        )
    )

    assert graph.node("n").implementation_ref == "integration.components.Passthrough"
    assert graph.node("n").component_id == "filter"


def test_parameter_default_and_threads():
    raw = node("n", "list-source")
    raw["data"]["componentData"]["threads"] = 4
    raw["data"]["componentData"]["parameters"] = [
        {"name": "values", "parameterType": "string", "defaultValue": "7", "required": True}
    ]

    parsed = PipelineGraph.from_sheet(sheet([raw], [])).node("n")

    assert parsed.thread_count == 4
    assert parsed.parameters[0].required
    assert parsed.parameters[0].value is None
    assert parsed.parameters[0].resolved_value == "7"


def test_duplicate_node_id():
    with pytest.raises(MalformedGraphError, match="duplicate node id 'start'"):
        PipelineGraph.from_sheet(sheet([start(), start()], []))


def test_edge_to_unknown_node():
    with pytest.raises(MalformedGraphError, match="unknown node 'ghost'"):
        PipelineGraph.from_sheet(sheet([start(), stop()], [data("start", "ghost")]))


@pytest.mark.parametrize(
    "payload", ("not json", "[1, 2]", json.dumps({"nodes": [{"data": {}}]}))
)
def test_malformed_json(payload):
    with pytest.raises(MalformedGraphError):
        PipelineGraph.from_json(payload)


def test_outgoing_keeps_input_order():
    graph = PipelineGraph.from_sheet(
        sheet(
            [start(), node("a", "list-source"), node("b", "list-source"), stop()],
            [control("start", "b"), data("start", "stop"), control("start", "a")],
        )
    )

    assert [e.target_node_id for e in graph.outgoing("start")] == ["b", "stop", "a"]
    assert [e.target_node_id for e in graph.outgoing("start", Channel.CONTROL)] == [
        "b",
        "a",
    ]


def test_to_digraph():
    graph = PipelineGraph.from_sheet(
        linear_sheet(node("s", "list-source"), node("d", "collect-destination"))
    )
    digraph = graph.to_digraph()

    assert set(digraph.nodes) == {"start", "s", "d", "stop"}
    assert nx.has_path(digraph, "start", "stop")
    assert digraph.edges["s", "d", "s=>d"]["channel"] is Channel.DATA


def test_fingerprint():
    raw = linear_sheet(node("s", "list-source"), node("d", "collect-destination"))

    first = PipelineGraph.from_sheet(raw)
    again = PipelineGraph.from_json(json.dumps(raw))
    changed = PipelineGraph.from_sheet({**raw, "name": "other"})

    assert first.fingerprint() == again.fingerprint()
    assert first.fingerprint() != changed.fingerprint()


def test_load(tmp_path):
    path = tmp_path / "sheet.json"
    path.write_text(
        json.dumps(linear_sheet(node("s", "list-source"), node("d", "collect-destination")))
    )

    assert PipelineGraph.load(path).id == "linear"
