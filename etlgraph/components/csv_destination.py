import csv
import io
from typing import TYPE_CHECKING

import anyio

from ..runtime.component import DestinationComponent, ParameterSpec
from ..runtime.registry import component

if TYPE_CHECKING:  # pragma: no cover
    from anyio import AsyncFile

    from ..runtime.context import ExecutionContext
    from ..runtime.row import Row


@component("csv-destination")
class CsvDestination(DestinationComponent):
    """
    Writes rows to a delimited text file. The header comes from the columns of the
    first row; columns of later rows outside that header are dropped with a
    warning. The number of rows written is stored under `<node id>.rows_written`.
    """

    label = "CSV Writer"
    parameters = (
        ParameterSpec("filepath", required=True, label="File Path"),
        ParameterSpec("delimiter", default=",", label="Delimiter"),
    )

    def __init__(self, node_id: str | None = None, **kwargs) -> None:
        super().__init__(node_id, **kwargs)
        self._file: "AsyncFile[str] | None" = None
        self._columns: list[str] | None = None
        self._dropped: set[str] = set()
        self.rows_written = 0

    def _format(self, values: list["object"]) -> str:
        buffer = io.StringIO()
        csv.writer(buffer, delimiter=self.get_parameter("delimiter", ",")).writerow(values)
        return buffer.getvalue()

    async def open(self, context: "ExecutionContext") -> None:
        filepath = self.get_parameter("filepath")
        context.info(f"Writing {filepath}")
        self._file = await anyio.open_file(filepath, "w", encoding="utf-8", newline="")

    async def consume(self, row: "Row", context: "ExecutionContext") -> None:
        if self._columns is None:
            self._columns = list(row.payload)
            await self._file.write(self._format(self._columns))

        known = {*self._columns, *self._dropped}
        if extra := [key for key in row.payload if key not in known]:
            self._dropped.update(extra)
            context.warn(
                f"Row has column(s) outside the header: {', '.join(extra)}; dropping them"
            )

        await self._file.write(self._format([row.get(col) for col in self._columns]))
        self.rows_written += 1

    async def finish(self, context: "ExecutionContext") -> None:
        context.set_value(f"{self.node_id}.rows_written", self.rows_written)

    async def close(self, context: "ExecutionContext") -> None:
        if self._file is not None:
            await self._file.aclose()
            self._file = None
