import logging
import re
import subprocess
import sys
import warnings
from dataclasses import dataclass
from importlib import metadata
from pathlib import Path
from typing import TYPE_CHECKING

from .config import Config
from .exceptions import DependencyResolutionError
from .runtime.component import Dependency

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Iterable
    from typing import Any

    from .runtime.component import ETLComponent

logger = logging.getLogger(__name__)

# third-party distributions the bundled runtime imports, directly or transitively
RUNTIME_DEPENDENCIES = (
    "anyio",
    "idna",
    "sniffio",
    "annotated-types",
    "pydantic",
    "pydantic-core",
    "pydantic-settings",
    "python-dotenv",
    "typing-extensions",
    "typing-inspection",
)


class MissingOptionalDependencyWarning(UserWarning):
    pass


def normalize_name(name: str) -> str:
    return re.sub(r"[-_.]+", "-", name).lower()


@dataclass(kw_only=True, frozen=True, slots=True)
class ResolvedDependency:
    dependency: Dependency
    wheel: Path

    @property
    def archive_name(self) -> str:
        return self.wheel.name


class DependencyResolver:
    """
    Resolves the third-party dependencies declared by component classes to wheel
    archives, looking into the local wheel cache first and downloading with
    `pip download` otherwise.
    """

    def __init__(self, config: Config | None = None, **settings: "Any") -> None:
        self.config = config or Config(**settings)

    @property
    def cache(self) -> Path:
        return self.config.dependency_cache

    def collect(
        self,
        classes: "Iterable[type[ETLComponent]]",
        include_runtime: bool = False,
    ) -> list[Dependency]:
        collected: dict[str, Dependency] = {}

        declared = [dep for cls in classes for dep in cls.dependencies]
        if include_runtime:
            declared.extend(self.runtime_dependencies())

        for dep in declared:
            existing = collected.get(dep.normalized_name)
            if existing is None:
                collected[dep.normalized_name] = dep
            elif existing.version != dep.version:
                logger.warning(
                    "Conflicting versions of '%s' (%s, %s); keeping %s",
                    dep.name,
                    existing.version,
                    dep.version,
                    existing.version,
                )
            elif existing.optional and not dep.optional:
                collected[dep.normalized_name] = dep

        return list(collected.values())

    @staticmethod
    def runtime_dependencies() -> list[Dependency]:
        deps = []
        for name in RUNTIME_DEPENDENCIES:
            try:
                deps.append(Dependency(name, metadata.version(name)))
            except metadata.PackageNotFoundError:
                logger.debug("Runtime dependency '%s' is not installed; skipping", name)

        return deps

    def find_cached(self, dependency: Dependency) -> Path | None:
        if not self.cache.is_dir():
            return None

        for wheel in sorted(self.cache.glob("*.whl")):
            name, _, rest = wheel.name.partition("-")
            version = rest.split("-", 1)[0]
            if normalize_name(name) == dependency.normalized_name and (
                version == dependency.version
            ):
                return wheel

        return None

    def download(self, dependency: Dependency) -> Path | None:
        self.cache.mkdir(parents=True, exist_ok=True)

        command = [
            sys.executable,
            "-m",
            "pip",
            "download",
            "--no-deps",
            "--only-binary=:all:",
            "--dest",
            str(self.cache),
            dependency.requirement,
        ]
        if self.config.index_url:
            command.extend(["--index-url", self.config.index_url])

        logger.info("Downloading %s", dependency.requirement)
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.config.download_timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning("Could not download %s: %s", dependency.requirement, e)
            return None

        if result.returncode != 0:
            output = (result.stderr or result.stdout or "").strip().splitlines()
            logger.warning(
                "Could not download %s: %s",
                dependency.requirement,
                output[-1] if output else f"pip exited with {result.returncode}",
            )
            return None

        return self.find_cached(dependency)

    def resolve_one(self, dependency: Dependency) -> Path | None:
        if (wheel := self.find_cached(dependency)) is not None:
            logger.debug("%s satisfied from cache: %s", dependency.requirement, wheel)
            return wheel

        if self.config.offline:
            logger.debug("%s is not cached and downloads are disabled", dependency)
            return None

        return self.download(dependency)

    def resolve(
        self,
        classes: "Iterable[type[ETLComponent]]",
        include_runtime: bool = False,
    ) -> list[ResolvedDependency]:
        resolved: list[ResolvedDependency] = []
        missing: list[str] = []

        for dependency in self.collect(classes, include_runtime=include_runtime):
            wheel = self.resolve_one(dependency)
            if wheel is not None:
                resolved.append(ResolvedDependency(dependency=dependency, wheel=wheel))
            elif dependency.optional:
                warnings.warn(
                    f"Optional dependency '{dependency.requirement}' could not be"
                    " resolved; the bundle is built without it.",
                    MissingOptionalDependencyWarning,
                    stacklevel=2,
                )
            else:
                missing.append(dependency.requirement)

        if missing:
            raise DependencyResolutionError(missing)

        return resolved
