from etlgraph import PipelineGraph, analyze_data_flow

from integration.sheets import control, data, linear_sheet, node, sheet, start, stop


def _plan(nodes, edges):
    return analyze_data_flow(PipelineGraph.from_sheet(sheet(nodes, edges)))


def test_linear_chain():
    plan = analyze_data_flow(
        PipelineGraph.from_sheet(
            linear_sheet(
                node("source", "list-source"),
                node("filter", "passthrough"),
                node("sink", "collect-destination"),
            )
        )
    )

    assert [chain.node_ids for chain in plan] == [("source", "filter", "sink")]
    assert plan.chains[0].source.id == "source"
    assert list(plan.chains[0].links()) == [("source", "filter"), ("filter", "sink")]
    assert str(plan) == "source => filter => sink"


def test_branching_source():
    plan = _plan(
        [
            node("s", "list-source"),
            node("t", "passthrough"),
            node("a", "collect-destination"),
            node("b", "collect-destination"),
        ],
        [data("s", "t"), data("t", "a"), data("t", "b")],
    )

    assert [chain.node_ids for chain in plan] == [("s", "t", "a"), ("s", "t", "b")]
    assert plan.connections == (("s", "t"), ("t", "a"), ("t", "b"))


def test_fan_in_connections_are_unique():
    plan = _plan(
        [
            node("s1", "list-source"),
            node("s2", "list-source"),
            node("t", "passthrough"),
            node("d", "collect-destination"),
        ],
        [data("s1", "t"), data("s2", "t"), data("t", "d")],
    )

    assert [chain.node_ids for chain in plan] == [("s1", "t", "d"), ("s2", "t", "d")]
    assert plan.connections == (("s1", "t"), ("t", "d"), ("s2", "t"))


def test_lonely_source_has_no_chain():
    plan = _plan([start(), node("s", "list-source"), stop()], [control("start", "s")])

    assert len(plan) == 0
    assert plan.connections == ()


def test_control_markers_and_sources_are_skipped():
    plan = _plan(
        [
            start(),
            node("s", "list-source"),
            node("other", "list-source"),
            node("d", "collect-destination"),
            stop(),
        ],
        [data("s", "stop"), data("s", "other"), data("s", "d")],
    )

    assert [chain.node_ids for chain in plan] == [("s", "d")]


def test_untagged_edges_carry_data():
    plan = _plan(
        [node("s", "list-source"), node("d", "collect-destination")],
        [{"source": "s", "target": "d"}],
    )

    assert [chain.node_ids for chain in plan] == [("s", "d")]


def test_control_edges_carry_no_data():
    plan = _plan(
        [node("s", "list-source"), node("d", "collect-destination")],
        [control("s", "d")],
    )

    assert len(plan) == 0


def test_cycle_ends_path():
    plan = _plan(
        [node("s", "list-source"), node("a", "passthrough"), node("b", "passthrough")],
        [data("s", "a"), data("a", "b"), data("b", "a")],
    )

    assert [chain.node_ids for chain in plan] == [("s", "a", "b")]


def test_destination_ends_path():
    plan = _plan(
        [
            node("s", "list-source"),
            node("d", "collect-destination"),
            node("t", "passthrough"),
        ],
        [data("s", "d"), data("d", "t")],
    )

    assert [chain.node_ids for chain in plan] == [("s", "d")]


def test_duplicate_edges_walk_once():
    plan = _plan(
        [node("s", "list-source"), node("d", "collect-destination")],
        [data("s", "d"), {**data("s", "d"), "id": "again"}],
    )

    assert [chain.node_ids for chain in plan] == [("s", "d")]
