import csv
import io
from typing import TYPE_CHECKING

import anyio

from ..runtime.component import ParameterSpec, SourceComponent
from ..runtime.registry import component
from ..runtime.row import Row

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import AsyncIterator

    from ..runtime.context import ExecutionContext


@component("file-source")
class FileSource(SourceComponent):
    """
    Reads a delimited text file. The first record holds the column names; every
    other non-blank record becomes one row, with the number of its first line
    under `_line`. Quoted fields may contain newlines.
    """

    label = "File Source"
    parameters = (
        ParameterSpec("filepath", required=True, label="File Path"),
        ParameterSpec("delimiter", default=",", label="Delimiter"),
        ParameterSpec("encoding", default="utf-8", label="Encoding"),
    )

    async def produce(self, context: "ExecutionContext") -> "AsyncIterator[Row]":
        filepath = self.get_parameter("filepath")
        context.info(f"Reading {filepath}")

        async with await anyio.open_file(
            filepath, encoding=self.get_parameter("encoding", "utf-8"), newline=""
        ) as f:
            text = await f.read()

        # one reader over the whole text, so quoted fields may span lines
        reader = csv.reader(
            io.StringIO(text, newline=""), delimiter=self.get_parameter("delimiter", ",")
        )
        header: list[str] | None = None
        lineno = 0
        for values in reader:
            start, lineno = lineno + 1, reader.line_num
            if not any(value.strip() for value in values):
                continue

            if header is None:
                header = [name.strip() for name in values]
                context.debug(f"Columns: {', '.join(header)}")
                continue

            if len(values) != len(header):
                context.warn(
                    f"Line {start} has {len(values)} field(s), expected"
                    f" {len(header)}; skipping it"
                )
                continue

            yield Row(payload={**dict(zip(header, values)), "_line": start})
