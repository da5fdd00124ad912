import logging

from etlgraph.runtime import ExecutionContext, Severity


def test_variables():
    context = ExecutionContext(variables={"a": 1})
    context.set_value("b", 2)

    assert context.get_value("a") == 1
    assert context.get_value("missing", "default") == "default"
    assert context.variables == {"a": 1, "b": 2}

    # a copy
    context.variables["c"] = 3
    assert "c" not in context.variables


def test_sequence_is_monotonic_across_components():
    context = ExecutionContext(run_id="run")
    source = context.for_component("Source (s)")
    sink = context.for_component("Sink (d)")

    source.info("one")
    sink.warn("two")
    context.info("three")
    source.error("four", RuntimeError("x"))

    lines = list(context.log_lines)
    assert [line.sequence for line in lines] == [0, 1, 2, 3]
    assert [line.component for line in lines] == ["Source (s)", "Sink (d)", None, "Source (s)"]
    assert [line.severity for line in lines] == [
        Severity.INFO,
        Severity.WARN,
        Severity.INFO,
        Severity.ERROR,
    ]
    assert {line.run_id for line in lines} == {"run"}


def test_component_context_shares_state():
    context = ExecutionContext()
    worker = context.for_component("worker")
    worker.set_value("rows", 3)

    assert context.get_value("rows") == 3
    assert worker.run_id == context.run_id
    assert worker.current_component == "worker"
    assert worker.for_component("other").current_component == "other"
    assert worker.log_lines is context.log_lines


def test_log_sink_and_history():
    received = []
    context = ExecutionContext(log_sink=received.append, history=2)

    for message in ("a", "b", "c"):
        context.debug(message)

    assert [line.message for line in received] == ["a", "b", "c"]
    assert [line.message for line in context.log_lines] == ["b", "c"]


def test_lines_reach_the_logger(caplog):
    context = ExecutionContext(run_id="run")

    with caplog.at_level(logging.INFO, logger="etlgraph.runtime"):
        context.for_component("Sink (d)").warn("careful")

    record = caplog.records[-1]
    assert record.levelno == logging.WARNING
    assert record.component == "Sink (d)"
    assert "[Sink (d)] careful" in record.getMessage()


def test_line_format():
    context = ExecutionContext(run_id="run")
    line = context.info("hello")

    assert str(line).startswith("[000000] ")
    assert str(line).endswith("INFO  [flow] hello")
    assert line.to_dict()["severity"] == "INFO"
