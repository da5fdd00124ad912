import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import anyio
import sniffio

from ..config import Config
from ..exceptions import ContextMismatchError, FlowExecutionError
from .component import DataConsumer, DataProducer
from .context import ExecutionContext

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import AsyncIterator
    from typing import Any, ClassVar

    from anyio.abc import TaskGroup

    from .component import ETLComponent

logger = logging.getLogger(__name__)


class CompiledFlow(ABC):
    """
    Base class of every generated flow.

    A flow instance wires its components once and runs once: `execute` connects
    the queues, starts one worker per component inside `supervise` and returns
    when all of them finished.
    """

    flow_id: "ClassVar[str]" = ""
    control_spine: "ClassVar[tuple[str, ...]]" = ()
    data_flow_chains: "ClassVar[tuple[tuple[str, ...], ...]]" = ()

    def __init__(self, **settings: "Any") -> None:
        self.config = Config(**settings)
        self.components: dict[str, "ETLComponent"] = {}
        self.failures: list[tuple[str, BaseException]] = []
        self._task_group: "TaskGroup | None" = None

    @abstractmethod
    def connect(self) -> None:
        """Register every data-flow connection between the components."""

    @abstractmethod
    async def execute(self, context: ExecutionContext) -> None:
        raise NotImplementedError

    def ensure_context(self, context: "Any") -> ExecutionContext:
        if not isinstance(context, ExecutionContext):
            raise ContextMismatchError(ExecutionContext, type(context))

        return context

    def seal(self) -> None:
        for component in self.components.values():
            if isinstance(component, DataConsumer):
                component.input_queue.seal()

    @asynccontextmanager
    async def supervise(
        self, context: ExecutionContext
    ) -> "AsyncIterator[TaskGroup]":
        self.failures.clear()
        self.seal()

        try:
            # workers read the task group until every one of them has joined
            async with anyio.create_task_group() as tg:
                self._task_group = tg
                yield tg
        finally:
            self._task_group = None

        if self.failures:
            context.error(
                f"Flow execution finished with {len(self.failures)} failed worker(s)"
            )
            raise FlowExecutionError(self.failures)

        context.info("Flow execution completed")

    @asynccontextmanager
    async def worker_scope(
        self, node_id: str, context: ExecutionContext
    ) -> "AsyncIterator[ETLComponent]":
        component = self.components[node_id]
        context.debug("Worker started")

        try:
            yield component
        except Exception as e:
            self.failures.append((node_id, e))
            context.warn("Worker stopped after a failure; closing its streams")
            if self.config.fail_fast and self._task_group is not None:
                self._task_group.cancel_scope.cancel()
        finally:
            # downstream sees end-of-stream, upstream drops this consumer
            if isinstance(component, DataProducer):
                component.output.close()
            if isinstance(component, DataConsumer):
                component.input_queue.close()

        context.debug("Worker finished")

    def run(self, context: ExecutionContext | None = None) -> ExecutionContext:
        try:
            sniffio.current_async_library()
            raise RuntimeError(
                "Running a flow synchronously within an event loop is forbidden."
                " Await `execute` instead."
            )
        except sniffio.AsyncLibraryNotFoundError:
            pass

        if context is None:
            context = ExecutionContext(history=self.config.log_history)

        logger.debug("Running flow '%s' on %s", self.flow_id, self.config.async_backend)
        anyio.run(self.execute, context, backend=self.config.async_backend)
        return context
