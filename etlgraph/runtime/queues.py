import logging
from typing import TYPE_CHECKING

import anyio
from anyio import BrokenResourceError, ClosedResourceError, EndOfStream

from ..exceptions import StreamTerminatedError
from .row import Row

if TYPE_CHECKING:  # pragma: no cover
    from anyio.streams.memory import MemoryObjectSendStream

logger = logging.getLogger(__name__)


class InputQueue:
    """
    The bounded input queue of a data consumer.

    Every upstream producer attaches its own send handle. The consumer observes a
    single terminator once each attached producer has sent one (or dropped its
    handle), so fan-in never leaks more than one end-of-stream downstream.
    """

    def __init__(self, owner: str, max_size: int) -> None:
        self.owner = owner
        self.max_size = max_size
        self._send, self._receive = anyio.create_memory_object_stream[Row](
            max_buffer_size=max_size
        )
        self._producers = 0
        self._pending_terminators = 0
        self._sealed = False
        self._terminated = False
        self.rows_taken = 0

    @property
    def producers(self) -> int:
        return self._producers

    @property
    def terminated(self) -> bool:
        return self._terminated

    def attach(self) -> "MemoryObjectSendStream[Row]":
        if self._sealed:
            raise RuntimeError(
                f"Input queue of '{self.owner}' is sealed; producers must attach"
                " before workers start."
            )

        self._producers += 1
        self._pending_terminators += 1
        return self._send.clone()

    def seal(self) -> None:
        """Stop accepting producers. Must be called once wiring is complete."""
        if not self._sealed:
            self._sealed = True
            self._send.close()

    async def take(self) -> Row:
        if self._terminated:
            raise StreamTerminatedError(self.owner, "take")

        while True:
            try:
                row = await self._receive.receive()
            except EndOfStream:
                # every producer is gone, with or without saying goodbye
                self._terminated = True
                return Row.terminator()

            if not row.is_terminator:
                self.rows_taken += 1
                return row

            self._pending_terminators -= 1
            if self._pending_terminators <= 0:
                self._terminated = True
                return row

    def close(self) -> None:
        """Stop consuming. Producers still sending to this queue will drop it."""
        self.seal()
        self._receive.close()


class OutputPort:
    """The fan-out side of a data producer: every row goes to every consumer."""

    def __init__(self, owner: str) -> None:
        self.owner = owner
        self._targets: list[tuple[str, "MemoryObjectSendStream[Row]"]] = []
        self._consumers: list[str] = []
        self._terminated = False
        self._closed = False
        self.rows_sent = 0

    @property
    def consumers(self) -> list[str]:
        return list(self._consumers)

    @property
    def terminated(self) -> bool:
        return self._terminated

    def register(self, queue: InputQueue) -> None:
        self._targets.append((queue.owner, queue.attach()))
        self._consumers.append(queue.owner)

    async def send(self, row: Row) -> None:
        if self._terminated or self._closed:
            raise StreamTerminatedError(self.owner, "send")

        for consumer, stream in list(self._targets):
            try:
                await stream.send(row)
            except (BrokenResourceError, ClosedResourceError):
                logger.warning(
                    "Consumer '%s' of '%s' stopped consuming; dropping it.",
                    consumer,
                    self.owner,
                )
                self._targets.remove((consumer, stream))
                stream.close()

        if row.is_terminator:
            self._terminated = True
            self.close()
        else:
            self.rows_sent += 1

    def close(self) -> None:
        for _, stream in self._targets:
            stream.close()

        self._targets.clear()
        self._closed = True
