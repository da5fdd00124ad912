import re
import warnings
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..config import Config
from ..exceptions import UnknownParameterError
from .queues import InputQueue, OutputPort
from .row import Row

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import AsyncIterator
    from typing import Any, ClassVar

    from .context import ExecutionContext


class EmptySourceWarning(UserWarning):
    pass


@dataclass(frozen=True, slots=True)
class Dependency:
    """A third-party distribution a component needs at runtime, pinned to a version."""

    name: str
    version: str
    optional: bool = False

    @property
    def normalized_name(self) -> str:
        return re.sub(r"[-_.]+", "-", self.name).lower()

    @property
    def requirement(self) -> str:
        return f"{self.name}=={self.version}"

    def __str__(self) -> str:
        return self.requirement


@dataclass(frozen=True, slots=True)
class ParameterSpec:
    name: str
    declared_type: str = "string"
    required: bool = False
    default: "Any" = None
    label: str | None = None
    description: str | None = None


class ETLComponent(ABC):
    """
    The contract every pipeline component implements.

    One instance is constructed per pipeline execution, its parameters are bound
    right after construction and `execute` is awaited exactly once by the worker
    that owns it.
    """

    component_id: "ClassVar[str | None]" = None
    label: "ClassVar[str | None]" = None
    parameters: "ClassVar[tuple[ParameterSpec, ...]]" = ()
    dependencies: "ClassVar[tuple[Dependency, ...]]" = ()

    def __init__(self, node_id: str | None = None, *, queue_size: int | None = None):
        self.node_id = node_id or self.component_id or type(self).__name__
        self._values: dict[str, "Any"] = {
            spec.name: spec.default for spec in self.parameters
        }

        if isinstance(self, DataProducer):
            self.output = OutputPort(self.node_id)

        if isinstance(self, DataConsumer):
            self.input_queue = InputQueue(
                self.node_id, queue_size or Config().queue_size
            )

    @classmethod
    def parameter_spec(cls, name: str) -> ParameterSpec | None:
        return next((spec for spec in cls.parameters if spec.name == name), None)

    def set_parameter(self, name: str, value: "Any") -> None:
        if name not in self._values:
            raise UnknownParameterError(str(self), name)

        self._values[name] = value

    def get_parameter(self, name: str, default: "Any" = None) -> "Any":
        if name not in self._values:
            raise UnknownParameterError(str(self), name)

        value = self._values[name]
        return default if value is None else value

    async def execute(self, context: "ExecutionContext") -> None:
        context.info("Starting execution")
        try:
            await self.execute_component(context)
        except Exception as e:
            context.error(f"Execution failed: {e}", e)
            raise

        context.info("Execution completed successfully")

    @abstractmethod
    async def execute_component(self, context: "ExecutionContext") -> None:
        raise NotImplementedError

    def __str__(self) -> str:
        return f"{self.component_id or type(self).__name__} ({self.node_id})"


class DataProducer:
    """Capability of components that emit rows to downstream consumers."""

    output: OutputPort

    def register_consumer(self, consumer: "DataConsumer") -> None:
        self.output.register(consumer.input_queue)

    async def send_row(self, row: Row) -> None:
        await self.output.send(row)


class DataConsumer:
    """Capability of components that read rows from a bounded input queue."""

    input_queue: InputQueue

    async def take_row(self) -> Row:
        return await self.input_queue.take()


class SourceComponent(DataProducer, ETLComponent):
    """
    Produces rows out of thin air (files, databases, ...). Subclasses implement
    `produce`; the terminator is sent for them once it is exhausted.
    """

    async def execute_component(self, context: "ExecutionContext") -> None:
        async for row in self.produce(context):
            await self.send_row(row)

        if self.output.rows_sent == 0:
            warnings.warn(
                f"Source '{self.node_id}' produced no rows.",
                EmptySourceWarning,
                stacklevel=2,
            )
            context.warn("Source produced no rows")

        await self.send_row(Row.terminator())
        context.info(f"Produced {self.output.rows_sent} row(s)")

    @abstractmethod
    def produce(self, context: "ExecutionContext") -> "AsyncIterator[Row]":
        raise NotImplementedError


class TransformComponent(DataConsumer, DataProducer, ETLComponent):
    """Turns every input row into zero or more output rows."""

    async def execute_component(self, context: "ExecutionContext") -> None:
        while True:
            row = await self.take_row()
            if row.is_terminator:
                await self.send_row(row)
                break

            async for transformed in self.transform(row, context):
                await self.send_row(transformed)

        context.info(
            f"Transformed {self.input_queue.rows_taken} row(s) into"
            f" {self.output.rows_sent}"
        )

    @abstractmethod
    def transform(self, row: Row, context: "ExecutionContext") -> "AsyncIterator[Row]":
        raise NotImplementedError


class DestinationComponent(DataConsumer, ETLComponent):
    """
    Sinks rows. `open` runs before the first row, `finish` after the terminator,
    and `close` always, also when consuming failed.
    """

    async def execute_component(self, context: "ExecutionContext") -> None:
        await self.open(context)
        try:
            while not (row := await self.take_row()).is_terminator:
                await self.consume(row, context)

            await self.finish(context)
        finally:
            await self.close(context)

        context.info(f"Consumed {self.input_queue.rows_taken} row(s)")

    async def open(self, context: "ExecutionContext") -> None:
        pass

    @abstractmethod
    async def consume(self, row: Row, context: "ExecutionContext") -> None:
        raise NotImplementedError

    async def finish(self, context: "ExecutionContext") -> None:
        pass

    async def close(self, context: "ExecutionContext") -> None:
        pass
