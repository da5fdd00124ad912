from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import TYPE_CHECKING
from uuid import uuid4

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Mapping
    from typing import Any


def _new_row_id() -> str:
    return uuid4().hex


@dataclass(kw_only=True, frozen=True, slots=True)
class Row:
    """
    A single record travelling through a data-flow chain.

    A terminator row carries no payload and marks the end of a stream rather than
    a data record.
    """

    id: str = field(default_factory=_new_row_id)
    payload: "Mapping[str, Any]" = field(default_factory=dict)
    is_terminator: bool = False

    def __post_init__(self) -> None:
        if self.is_terminator and self.payload:
            raise ValueError("Terminator rows cannot carry a payload.")

        # shared by every consumer of a fan-out, so read-only
        object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))

    @classmethod
    def terminator(cls) -> "Row":
        return cls(is_terminator=True)

    def get(self, column: str, default: "Any" = None) -> "Any":
        return self.payload.get(column, default)

    def __getitem__(self, column: str) -> "Any":
        return self.payload[column]

    def with_payload(self, payload: "Mapping[str, Any]") -> "Row":
        """Copy of this row, keeping its id, with a new payload."""
        return replace(self, payload=payload)

    def to_dict(self) -> dict[str, "Any"]:
        return dict(self.payload)
