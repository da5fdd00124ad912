import itertools
import logging
import os
import subprocess
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

import anyio
from anyio.streams.text import TextReceiveStream

from .config import Config
from .exceptions import BundleLoadError, FlowRunError
from .launcher import BundleLauncher

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import AsyncIterator, Callable
    from typing import Any

logger = logging.getLogger(__name__)

_FORWARDED_SETTINGS = {"queue_size", "fail_fast", "async_backend", "log_history"}


@dataclass(kw_only=True, frozen=True, slots=True)
class LogMessage:
    """One line of a streamed run, numbered so out-of-order transports can re-sort."""

    sequence: int
    content: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, "Any"]:
        return {
            "sequence": self.sequence,
            "content": self.content,
            "timestamp": int(self.timestamp.timestamp() * 1000),
        }


@dataclass(kw_only=True, frozen=True, slots=True)
class RunReport:
    bundle: Path
    run_id: str
    log: tuple[str, ...]
    variables: dict[str, "Any"]


class FlowRunner:
    """Runs bundles on behalf of the host, in-process or in a child interpreter."""

    def __init__(self, config: Config | None = None, **settings: "Any") -> None:
        self.config = config or Config(**settings)

    @property
    def flow_settings(self) -> dict[str, "Any"]:
        return self.config.model_dump(include=_FORWARDED_SETTINGS)

    def run(
        self,
        bundle: str | Path,
        *,
        variables: dict[str, "Any"] | None = None,
        log_sink: "Callable[[Any], None] | None" = None,
    ) -> RunReport:
        bundle = Path(bundle)
        if not bundle.is_file():
            raise BundleLoadError(f"Bundle '{bundle}' does not exist.")

        launcher = BundleLauncher(
            log_sink=log_sink, variables=variables, **self.flow_settings
        )
        try:
            context = launcher.run(bundle)
        except BundleLoadError:
            raise
        except Exception as e:
            # bundle code raises bundle-side exception classes
            raise FlowRunError(str(bundle), e) from e

        return RunReport(
            bundle=bundle,
            run_id=context.run_id,
            log=tuple(str(line) for line in context.log_lines),
            variables=context.variables,
        )

    async def stream(
        self, bundle: str | Path, *, verbose: bool = False
    ) -> "AsyncIterator[LogMessage]":
        """
        Run `bundle` in a child interpreter and yield every line it prints, then a
        final message telling whether the run succeeded.
        """
        sequence = itertools.count()

        def message(content: str) -> LogMessage:
            return LogMessage(sequence=next(sequence), content=content)

        bundle = Path(bundle)
        if not bundle.is_file():
            yield message(f"Error: bundle '{bundle}' not found. Compile the flow first.")
            return

        yield message("Starting flow execution...")
        yield message(f"Using bundle: {bundle}")

        command = [sys.executable, str(bundle), *(["--verbose"] if verbose else [])]
        env = {
            **os.environ,
            **{
                f"ETLGRAPH_{name.upper()}": str(value)
                for name, value in self.flow_settings.items()
            },
        }

        try:
            async with await anyio.open_process(
                command, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, env=env
            ) as process:
                pending = ""
                async for chunk in TextReceiveStream(process.stdout):
                    pending += chunk
                    *lines, pending = pending.split("\n")
                    for line in lines:
                        yield message(line.rstrip("\r"))

                if pending:
                    yield message(pending.rstrip("\r"))

                returncode = await process.wait()
        except OSError as e:
            logger.warning("Could not start %s: %s", bundle, e)
            yield message(f"Execution error: {e}")
            return

        if returncode == 0:
            yield message("Flow execution completed successfully")
        else:
            yield message(f"Flow execution failed with exit code: {returncode}")
