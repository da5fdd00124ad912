from collections.abc import AsyncIterator

import anyio

from etlgraph.runtime import (
    Dependency,
    DestinationComponent,
    ExecutionContext,
    ParameterSpec,
    Row,
    SourceComponent,
    TransformComponent,
    component,
)


# emits one row per comma-separated integer of 'values'
@component("list-source")
class ListSource(SourceComponent):
    parameters = (
        ParameterSpec("values", default="1,2,3"),
        ParameterSpec("column", default="value"),
    )

    async def produce(self, context: ExecutionContext) -> AsyncIterator[Row]:
        column = self.get_parameter("column", "value")
        for item in self.get_parameter("values", "").split(","):
            if item.strip():
                yield Row(payload={column: int(item)})


@component("passthrough")
class Passthrough(TransformComponent):
    async def transform(
        self, row: Row, context: ExecutionContext
    ) -> AsyncIterator[Row]:
        yield row


@component("duplicate")
class Duplicate(TransformComponent):
    async def transform(
        self, row: Row, context: ExecutionContext
    ) -> AsyncIterator[Row]:
        yield row
        yield row.with_payload({**row.payload, "copy": True})


# raises once more than 'fail_after' rows went through
@component("failing-transform")
class FailingTransform(TransformComponent):
    parameters = (ParameterSpec("fail_after", declared_type="number", default=0),)

    async def transform(
        self, row: Row, context: ExecutionContext
    ) -> AsyncIterator[Row]:
        if self.input_queue.rows_taken > self.get_parameter("fail_after", 0):
            raise RuntimeError("boom")

        yield row


# blocks forever on its first row, so only cancellation ends it
@component("stuck-transform")
class StuckTransform(TransformComponent):
    async def transform(
        self, row: Row, context: ExecutionContext
    ) -> AsyncIterator[Row]:
        await anyio.sleep_forever()
        yield row


@component("collect-destination")
class CollectDestination(DestinationComponent):
    def __init__(self, node_id: str | None = None, **kwargs) -> None:
        super().__init__(node_id, **kwargs)
        self.rows: list[dict] = []
        self.finished = False

    async def consume(self, row: Row, context: ExecutionContext) -> None:
        self.rows.append(row.to_dict())

    async def finish(self, context: ExecutionContext) -> None:
        self.finished = True
        context.set_value(f"{self.node_id}.rows", list(self.rows))
        context.set_value(f"{self.node_id}.terminated", self.input_queue.terminated)


@component("marker-source")
class MarkerSource(SourceComponent):
    dependencies = (Dependency("etlgraph-marker", "1.0"),)

    async def produce(self, context: ExecutionContext) -> AsyncIterator[Row]:
        import etlgraph_marker

        yield Row(payload={"origin": etlgraph_marker.ORIGIN})


@component("required-dependency-source")
class RequiredDependencySource(ListSource):
    dependencies = (Dependency("etlgraph-unavailable", "9.9.9"),)


@component("optional-dependency-source")
class OptionalDependencySource(ListSource):
    dependencies = (Dependency("etlgraph-unavailable", "9.9.9", optional=True),)
