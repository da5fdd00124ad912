from dataclasses import dataclass
from functools import cached_property
from typing import TYPE_CHECKING

import sqlglot
from sqlglot import exp

from ..runtime.component import Dependency, ParameterSpec, TransformComponent
from ..runtime.registry import component

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import AsyncIterator
    from typing import Any

    from ..runtime.context import ExecutionContext
    from ..runtime.row import Row


@dataclass(kw_only=True, frozen=True, slots=True)
class Projection:
    name: str
    column: str | None = None
    constant: "Any" = None
    star: bool = False


def parse_mapping(expression: str) -> list[Projection]:
    """
    Parse the select list of a mapping expression, e.g. `id, name AS label, 'x' AS
    tag`. A leading `SELECT` is optional. Columns, aliases, literals and `*` are
    supported.
    """
    text = expression.strip()
    if not text.lower().startswith("select"):
        text = f"SELECT {text}"

    select = sqlglot.parse_one(text)
    if not isinstance(select, exp.Select):
        raise ValueError(f"Mapping expression is not a select list: {expression!r}")

    projections = []
    for projection in select.expressions:
        target = projection.unalias()
        if isinstance(target, exp.Star):
            projections.append(Projection(name="*", star=True))
        elif isinstance(target, exp.Column):
            if isinstance(target.this, exp.Star):
                projections.append(Projection(name="*", star=True))
            else:
                projections.append(
                    Projection(name=projection.alias_or_name, column=target.name)
                )
        elif isinstance(target, exp.Literal):
            value: "Any" = target.this
            if not target.is_string:
                value = float(value) if "." in value or "e" in value.lower() else int(value)

            projections.append(Projection(name=projection.alias_or_name, constant=value))
        else:
            raise ValueError(
                f"Unsupported projection in mapping expression: {projection.sql()}"
            )

    return projections


@component("map-transform")
class MapTransform(TransformComponent):
    label = "Map Transform"
    parameters = (
        ParameterSpec(
            "mappingExpression",
            declared_type="sql",
            required=True,
            label="Mapping Expression",
        ),
    )
    dependencies = (Dependency("sqlglot", "26.0.0", optional=True),)

    @cached_property
    def projections(self) -> list[Projection]:
        return parse_mapping(self.get_parameter("mappingExpression"))

    async def transform(
        self, row: "Row", context: "ExecutionContext"
    ) -> "AsyncIterator[Row]":
        payload: dict[str, "Any"] = {}
        for projection in self.projections:
            if projection.star:
                payload.update(row.payload)
            elif projection.column is not None:
                payload[projection.name] = row.get(projection.column)
            else:
                payload[projection.name] = projection.constant

        yield row.with_payload(payload)
