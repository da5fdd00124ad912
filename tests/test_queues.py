import anyio
import pytest

from etlgraph.exceptions import StreamTerminatedError
from etlgraph.runtime import InputQueue, OutputPort, Row


def _row(value):
    return Row(payload={"value": value})


@pytest.mark.anyio
async def test_fan_out_delivers_every_row_to_every_consumer():
    port = OutputPort("source")
    left, right = InputQueue("left", 10), InputQueue("right", 10)
    port.register(left)
    port.register(right)
    left.seal()
    right.seal()

    for value in range(3):
        await port.send(_row(value))
    await port.send(Row.terminator())

    for queue in (left, right):
        values = []
        while not (row := await queue.take()).is_terminator:
            values.append(row["value"])

        assert values == [0, 1, 2]
        assert queue.terminated
        assert queue.rows_taken == 3

    assert port.consumers == ["left", "right"]
    assert port.rows_sent == 3


@pytest.mark.anyio
async def test_fan_in_yields_a_single_terminator():
    queue = InputQueue("sink", 10)
    first, second = OutputPort("a"), OutputPort("b")
    first.register(queue)
    second.register(queue)
    queue.seal()

    assert queue.producers == 2

    await first.send(_row("a"))
    await first.send(Row.terminator())
    await second.send(_row("b"))
    await second.send(Row.terminator())

    assert (await queue.take())["value"] == "a"
    assert (await queue.take())["value"] == "b"
    assert (await queue.take()).is_terminator

    with pytest.raises(StreamTerminatedError):
        await queue.take()


@pytest.mark.anyio
async def test_queue_without_producers_terminates():
    queue = InputQueue("orphan", 1)
    queue.seal()

    assert (await queue.take()).is_terminator


@pytest.mark.anyio
async def test_closed_producer_counts_as_terminated():
    queue = InputQueue("sink", 10)
    port = OutputPort("crashed")
    port.register(queue)
    queue.seal()

    await port.send(_row(1))
    port.close()

    assert (await queue.take())["value"] == 1
    assert (await queue.take()).is_terminator
    assert queue.terminated


@pytest.mark.anyio
async def test_send_after_terminator():
    port = OutputPort("source")
    port.register(InputQueue("sink", 10))

    await port.send(Row.terminator())

    assert port.terminated
    with pytest.raises(StreamTerminatedError, match="after its terminator"):
        await port.send(_row(1))


@pytest.mark.anyio
async def test_full_queue_blocks_the_producer():
    queue = InputQueue("slow", 2)
    port = OutputPort("fast")
    port.register(queue)
    queue.seal()

    await port.send(_row(1))
    await port.send(_row(2))

    with anyio.move_on_after(0.1) as scope:
        await port.send(_row(3))

    assert scope.cancelled_caught
    assert port.rows_sent == 2


@pytest.mark.anyio
async def test_stopped_consumer_is_dropped():
    port = OutputPort("source")
    alive, stopped = InputQueue("alive", 10), InputQueue("stopped", 10)
    port.register(alive)
    port.register(stopped)
    alive.seal()
    stopped.close()

    await port.send(_row(1))
    await port.send(Row.terminator())

    assert (await alive.take())["value"] == 1
    assert (await alive.take()).is_terminator


def test_attach_after_seal():
    queue = InputQueue("sink", 1)
    queue.seal()

    with pytest.raises(RuntimeError, match="sealed"):
        OutputPort("late").register(queue)


def test_terminator_has_no_payload():
    with pytest.raises(ValueError):
        Row(payload={"a": 1}, is_terminator=True)


def test_rows_are_read_only():
    row = _row(1)
    copy = row.with_payload({"value": 2})

    with pytest.raises(TypeError):
        row.payload["value"] = 3

    assert copy.id == row.id
    assert copy.to_dict() == {"value": 2}
    assert row.get("missing", "x") == "x"
