from pathlib import Path
from typing import Annotated, Literal

from annotated_types import Ge
from pydantic import PositiveInt
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_dependency_cache() -> Path:
    return Path.home() / ".cache" / "etlgraph" / "wheels"


class Config(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="ETLGRAPH_")

    queue_size: PositiveInt = 1000
    """Max number of rows buffered in a component's input queue before senders block."""

    fail_fast: bool = False
    """Cancel sibling workers as soon as one worker fails."""

    async_backend: Literal["asyncio", "trio"] = "asyncio"
    """anyio backend used when a flow is run synchronously."""

    dependency_cache: Path = _default_dependency_cache()
    """Directory holding downloaded dependency wheels."""

    offline: bool = False
    """Never download dependencies; only the local cache is consulted."""

    index_url: str | None = None
    """Package index used when downloading dependencies."""

    download_timeout: Annotated[int, Ge(1)] = 300
    """Max time in seconds for downloading a single dependency."""

    bundle_runtime_dependencies: bool = False
    """Nest the runtime's own third-party packages in every bundle."""

    log_history: PositiveInt = 10000
    """Max number of log lines an execution context keeps in memory."""
