"""
Bootstrap of a flow bundle.

This module ships inside every bundle and only depends on the standard library
until the isolated loading context is in place: everything else, the runtime and
anyio included, is imported through that context.
"""

import argparse
import importlib
import importlib.machinery
import inspect
import io
import json
import logging
import sys
import tempfile
import threading
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from .exceptions import (
    BundleLoadError,
    EntryPointError,
    MissingManifestAttributeError,
    NestedArchiveError,
)

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable, Sequence
    from types import ModuleType, TracebackType
    from typing import Any

logger = logging.getLogger(__name__)

MANIFEST = "manifest.json"
MAIN_CLASS = "Main-Class"
FLOW_CLASS = "Flow-Class"
CREATED_BY = "Created-By"
DEPENDENCY_DIR = "lib"
CONTEXT_CLASS = "etlgraph.runtime.context.ExecutionContext"

_MODULE_SUFFIXES = tuple(importlib.machinery.all_suffixes())

# sys.modules and sys.path are process-wide, so loading contexts never overlap
_LOADING_LOCK = threading.RLock()


@dataclass(kw_only=True, frozen=True, slots=True)
class BundleManifest:
    main_class: str
    flow_class: str
    created_by: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            MAIN_CLASS: self.main_class,
            FLOW_CLASS: self.flow_class,
            CREATED_BY: self.created_by,
        }


def read_manifest(bundle: str | Path) -> BundleManifest:
    try:
        with zipfile.ZipFile(bundle) as archive:
            try:
                attributes = json.loads(archive.read(MANIFEST))
            except KeyError:
                raise MissingManifestAttributeError(str(bundle), MAIN_CLASS) from None
    except (zipfile.BadZipFile, OSError) as e:
        raise BundleLoadError(f"Cannot open bundle '{bundle}': {e}") from e
    except json.JSONDecodeError as e:
        raise BundleLoadError(f"Manifest of bundle '{bundle}' is not valid JSON: {e}") from e

    if not isinstance(attributes, dict):
        raise BundleLoadError(f"Manifest of bundle '{bundle}' is not a JSON object.")

    for attribute in (MAIN_CLASS, FLOW_CLASS):
        if not attributes.get(attribute):
            raise MissingManifestAttributeError(str(bundle), attribute)

    return BundleManifest(
        main_class=attributes[MAIN_CLASS],
        flow_class=attributes[FLOW_CLASS],
        created_by=attributes.get(CREATED_BY, ""),
    )


def extract_dependencies(bundle: str | Path, scratch: Path) -> list[Path]:
    """Extract every nested wheel of `bundle` into its own directory under `scratch`."""
    extracted: list[Path] = []

    with zipfile.ZipFile(bundle) as archive:
        names = sorted(
            name
            for name in archive.namelist()
            if name.startswith(f"{DEPENDENCY_DIR}/") and name.endswith(".whl")
        )
        for name in names:
            target = scratch / Path(name).stem
            try:
                with zipfile.ZipFile(io.BytesIO(archive.read(name))) as wheel:
                    if (corrupt := wheel.testzip()) is not None:
                        raise NestedArchiveError(
                            str(bundle), name, f"corrupt member '{corrupt}'"
                        )

                    wheel.extractall(target)
            except (zipfile.BadZipFile, OSError) as e:
                raise NestedArchiveError(str(bundle), name, str(e)) from e

            logger.debug("Extracted %s to %s", name, target)
            extracted.append(target)

    return extracted


def _top_level_names(location: Path) -> set[str]:
    """Names of the top-level modules and packages importable from `location`."""
    names: set[str] = set()

    if location.is_dir():
        for path in location.rglob("*"):
            if path.is_file() and path.name.endswith(_MODULE_SUFFIXES):
                names.add(path.relative_to(location).parts[0].split(".")[0])
    else:
        with zipfile.ZipFile(location) as archive:
            for name in archive.namelist():
                if name.endswith(_MODULE_SUFFIXES):
                    names.add(name.split("/")[0].split(".")[0])

    return {name for name in names if name.isidentifier() and name != "__main__"}


class IsolatedLoader:
    """
    An import context layering bundle-local code over nested dependencies over
    the host's own modules.

    While the context is active, every module whose top-level name the bundle or
    one of its dependencies provides is resolved from there, never from the
    host, even when the host already imported a module of the same name. On exit
    the host's modules and search path are put back. Only one loading context is
    active at a time; entering another one from a different thread waits until
    the active one exits.
    """

    def __init__(
        self, bundle: str | Path, dependency_dirs: "Sequence[Path]" = ()
    ) -> None:
        self.bundle = Path(bundle)
        self.locations = [self.bundle, *dependency_dirs]
        self.provided: set[str] = set()
        self._saved_modules: dict[str, "ModuleType"] = {}
        self._saved_path: list[str] | None = None

    def _owned(self, module_name: str) -> bool:
        return module_name.partition(".")[0] in self.provided

    def _forget_importers(self) -> None:
        for location in self.locations:
            sys.path_importer_cache.pop(str(location), None)

        importlib.invalidate_caches()

    def __enter__(self) -> "IsolatedLoader":
        if self._saved_path is not None:
            raise RuntimeError("Isolated loader is already active.")

        provided = set().union(*(_top_level_names(loc) for loc in self.locations))

        _LOADING_LOCK.acquire()
        self.provided = provided
        self._saved_path = list(sys.path)
        self._saved_modules = {
            name: sys.modules.pop(name) for name in list(sys.modules) if self._owned(name)
        }

        sys.path[:0] = [str(location) for location in self.locations]
        self._forget_importers()
        logger.debug(
            "Isolated loading context for %s provides %s",
            self.bundle,
            ", ".join(sorted(self.provided)),
        )
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: "TracebackType | None",
    ) -> None:
        try:
            for name in [name for name in sys.modules if self._owned(name)]:
                del sys.modules[name]

            sys.modules.update(self._saved_modules)
            sys.path[:] = self._saved_path or []
            self._forget_importers()

            self._saved_modules = {}
            self._saved_path = None
        finally:
            _LOADING_LOCK.release()

    def import_module(self, name: str) -> "ModuleType":
        if self._saved_path is None:
            raise RuntimeError("Isolated loader is not active.")

        return importlib.import_module(name)

    def load_class(self, qualified_name: str) -> type:
        module_name, _, class_name = qualified_name.rpartition(".")
        try:
            cls = getattr(self.import_module(module_name), class_name)
        except (ImportError, AttributeError, ValueError) as e:
            raise BundleLoadError(
                f"Cannot load '{qualified_name}' from bundle '{self.bundle}': {e}"
            ) from e

        if not isinstance(cls, type):
            raise BundleLoadError(f"'{qualified_name}' is not a class.")

        return cls


def find_entry_point(flow_class: type) -> "Callable[..., Any]":
    """
    Locate the `execute` coroutine of a flow class. The single parameter is matched
    by the name of its annotated type, since the class was loaded through another
    context than the caller's.
    """
    name = f"{flow_class.__module__}.{flow_class.__qualname__}.execute"

    execute = getattr(flow_class, "execute", None)
    if execute is None or not inspect.iscoroutinefunction(execute):
        raise EntryPointError(name, "no 'execute' coroutine")

    parameters = [
        param
        for param in inspect.signature(execute).parameters.values()
        if param.name != "self"
    ]
    if len(parameters) != 1:
        raise EntryPointError(name, f"expected one parameter, found {len(parameters)}")

    annotation = parameters[0].annotation
    type_name = (
        annotation if isinstance(annotation, str) else getattr(annotation, "__name__", "")
    )
    if type_name.rpartition(".")[2] != "ExecutionContext":
        raise EntryPointError(name, "its parameter is not an ExecutionContext")

    return execute


class BundleLauncher:
    """
    Runs the flow of a bundle: reads the manifest, extracts the nested
    dependencies, then loads the flow and a fresh execution context through one
    isolated loading context and awaits the flow's entry point.
    """

    def __init__(
        self,
        *,
        log_sink: "Callable[[Any], None] | None" = None,
        variables: dict[str, "Any"] | None = None,
        **settings: "Any",
    ) -> None:
        self.log_sink = log_sink
        self.variables = variables
        self.settings = settings

    def run(self, bundle: str | Path) -> "Any":
        bundle = Path(bundle).resolve()
        manifest = read_manifest(bundle)
        logger.debug("Running %s from %s", manifest.flow_class, bundle)

        with tempfile.TemporaryDirectory(prefix="etlgraph-run-") as scratch:
            dependency_dirs = extract_dependencies(bundle, Path(scratch))

            with IsolatedLoader(bundle, dependency_dirs) as loader:
                flow_class = loader.load_class(manifest.flow_class)
                execute = find_entry_point(flow_class)
                flow = flow_class(**self.settings)

                context_class = loader.load_class(CONTEXT_CLASS)
                context = context_class(
                    variables=self.variables,
                    log_sink=self.log_sink,
                    history=flow.config.log_history,
                )

                anyio = loader.import_module("anyio")
                anyio.run(execute, flow, context, backend=flow.config.async_backend)

        return context

    @classmethod
    def main(cls, bundle: str | Path, argv: "Sequence[str] | None" = None) -> int:
        parser = argparse.ArgumentParser(
            prog=Path(bundle).name, description="Run the compiled flow of this bundle."
        )
        parser.add_argument("--verbose", action="store_true", help="log at debug level")
        args = parser.parse_args(argv)

        logging.basicConfig(
            level=logging.DEBUG if args.verbose else logging.INFO,
            format="%(message)s",
            stream=sys.stdout,
        )

        try:
            cls().run(bundle)
        except Exception as e:
            logger.error("Flow failed: %s: %s", type(e).__name__, e)
            logger.debug("Traceback of the failure", exc_info=e)
            return 1

        logger.info("Flow completed successfully")
        return 0
