import itertools
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING
from uuid import uuid4

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable, Mapping
    from typing import Any

logger = logging.getLogger("etlgraph.runtime")


class Severity(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"

    @property
    def level(self) -> int:
        return {
            Severity.DEBUG: logging.DEBUG,
            Severity.INFO: logging.INFO,
            Severity.WARN: logging.WARNING,
            Severity.ERROR: logging.ERROR,
        }[self]


@dataclass(kw_only=True, frozen=True, slots=True)
class LogLine:
    """
    One log line of a pipeline run. The sequence number is monotonically
    increasing within a run, so lines shipped out of order can be re-sorted.
    """

    run_id: str
    sequence: int
    timestamp: datetime
    severity: Severity
    component: str | None
    message: str

    def __str__(self) -> str:
        return (
            f"[{self.sequence:06d}] {self.timestamp.isoformat(timespec='milliseconds')}"
            f" {self.severity.value:<5} [{self.component or 'flow'}] {self.message}"
        )

    def to_dict(self) -> dict[str, "Any"]:
        return {
            "run_id": self.run_id,
            "sequence": self.sequence,
            "timestamp": self.timestamp.isoformat(),
            "severity": self.severity.value,
            "component": self.component,
            "message": self.message,
        }


class ExecutionContext:
    """
    State shared by every worker of one pipeline run: a key/value variable bag and
    the run's log stream.

    Workers never log through the context directly; each one gets a
    `ComponentContext` from `for_component` that carries its own current-component
    marker, so interleaved workers cannot misattribute each other's lines.
    """

    def __init__(
        self,
        *,
        run_id: str | None = None,
        variables: "Mapping[str, Any] | None" = None,
        log_sink: "Callable[[LogLine], None] | None" = None,
        history: int = 10000,
    ) -> None:
        self.run_id = run_id or uuid4().hex
        self._variables: dict[str, "Any"] = dict(variables or {})
        self._sequence = itertools.count()
        self._log_sink = log_sink
        self.log_lines: deque[LogLine] = deque(maxlen=history)

    @property
    def current_component(self) -> str | None:
        return None

    @property
    def variables(self) -> dict[str, "Any"]:
        return dict(self._variables)

    def set_value(self, key: str, value: "Any") -> None:
        self._variables[key] = value

    def get_value(self, key: str, default: "Any" = None) -> "Any":
        return self._variables.get(key, default)

    def for_component(self, component: str) -> "ComponentContext":
        return ComponentContext(self, component)

    def log(
        self,
        severity: Severity,
        message: str,
        component: str | None = None,
        exc_info: BaseException | None = None,
    ) -> LogLine:
        line = LogLine(
            run_id=self.run_id,
            sequence=next(self._sequence),
            timestamp=datetime.now(timezone.utc),
            severity=severity,
            component=component,
            message=message,
        )
        self.log_lines.append(line)

        logger.log(
            severity.level,
            "%s",
            line,
            exc_info=exc_info,
            extra={"sequence": line.sequence, "component": component},
        )
        if self._log_sink is not None:
            self._log_sink(line)

        return line

    def debug(self, message: str) -> LogLine:
        return self.log(Severity.DEBUG, message, self.current_component)

    def info(self, message: str) -> LogLine:
        return self.log(Severity.INFO, message, self.current_component)

    def warn(self, message: str) -> LogLine:
        return self.log(Severity.WARN, message, self.current_component)

    def error(self, message: str, exc: BaseException | None = None) -> LogLine:
        return self.log(Severity.ERROR, message, self.current_component, exc_info=exc)


class ComponentContext(ExecutionContext):
    """A view of an `ExecutionContext` bound to one worker's component marker."""

    def __init__(self, parent: ExecutionContext, component: str) -> None:
        # all state lives on the parent
        self.parent = parent
        self._component = component

    @property
    def run_id(self) -> str:
        return self.parent.run_id

    @property
    def current_component(self) -> str:
        return self._component

    @property
    def variables(self) -> dict[str, "Any"]:
        return self.parent.variables

    @property
    def log_lines(self) -> "deque[LogLine]":
        return self.parent.log_lines

    def set_value(self, key: str, value: "Any") -> None:
        self.parent.set_value(key, value)

    def get_value(self, key: str, default: "Any" = None) -> "Any":
        return self.parent.get_value(key, default)

    def for_component(self, component: str) -> "ComponentContext":
        return self.parent.for_component(component)

    def log(
        self,
        severity: Severity,
        message: str,
        component: str | None = None,
        exc_info: BaseException | None = None,
    ) -> LogLine:
        return self.parent.log(
            severity, message, component or self._component, exc_info=exc_info
        )
