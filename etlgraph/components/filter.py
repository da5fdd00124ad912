import operator
import re
from functools import cached_property
from typing import TYPE_CHECKING

from ..runtime.component import ParameterSpec, TransformComponent
from ..runtime.registry import component

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import AsyncIterator, Callable
    from typing import Any

    from ..runtime.context import ExecutionContext
    from ..runtime.row import Row

_CONDITION = re.compile(
    r"^\s*(?P<field>[\w.]+)\s*(?P<op>==|!=|<=|>=|<|>)\s*(?P<literal>.*?)\s*$"
)
_OPERATORS: dict[str, "Callable[[Any, Any], bool]"] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


def _number(value: "Any") -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return float(value)

    try:
        return float(str(value).strip())
    except ValueError:
        return None


def _unquote(literal: str) -> str:
    if len(literal) >= 2 and literal[0] == literal[-1] and literal[0] in "'\"":
        return literal[1:-1]

    return literal


def compile_condition(condition: str | None) -> "Callable[[Row], bool]":
    """
    Compile `<field> <op> <literal>` into a row predicate. Both sides are compared
    as numbers when both parse as numbers, as strings otherwise. An empty
    condition, or `true`, keeps every row.
    """
    if condition is None or condition.strip().lower() in ("", "true"):
        return lambda row: True

    if (match := _CONDITION.match(condition)) is None:
        raise ValueError(f"Invalid filter condition: {condition!r}")

    field, op = match["field"], _OPERATORS[match["op"]]
    literal = _unquote(match["literal"])
    literal_number = _number(literal)

    def predicate(row: "Row") -> bool:
        value = row.get(field)
        if value is None:
            return op is operator.ne

        if literal_number is not None and (number := _number(value)) is not None:
            return op(number, literal_number)

        try:
            return op(str(value), literal)
        except TypeError:
            return False

    return predicate


@component("filter")
class Filter(TransformComponent):
    label = "Filter"
    parameters = (ParameterSpec("condition", required=True, label="Filter Condition"),)

    @cached_property
    def predicate(self) -> "Callable[[Row], bool]":
        return compile_condition(self.get_parameter("condition"))

    async def transform(
        self, row: "Row", context: "ExecutionContext"
    ) -> "AsyncIterator[Row]":
        if self.predicate(row):
            yield row
