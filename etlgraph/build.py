import inspect
import json
import logging
import shutil
import sys
import tempfile
import warnings
import zipapp
from pathlib import Path
from typing import TYPE_CHECKING

from .config import Config
from .control_flow import analyze_control_flow
from .data_flow import analyze_data_flow
from .dependencies import DependencyResolver
from .exceptions import BuildError
from .generator import GENERATED_PACKAGE, FlowGenerator
from .launcher import DEPENDENCY_DIR, MANIFEST, BundleLauncher, BundleManifest
from .runtime.registry import ComponentRegistry
from .validator import FlowValidator

if TYPE_CHECKING:  # pragma: no cover
    from typing import Any

    from .dependencies import ResolvedDependency
    from .generator import GeneratedFlow
    from .graph import PipelineGraph

logger = logging.getLogger(__name__)

PACKAGE_ROOT = Path(__file__).parent
CREATED_BY = "etlgraph flow builder"

# bundled as-is, relative to the package root
RUNTIME_MODULES = ("exceptions.py", "config.py", "launcher.py")
RUNTIME_PACKAGES = ("runtime", "components")

BUNDLE_PACKAGE_INIT = '"""Runtime support of a compiled flow bundle."""\n'

BOOTSTRAP = """\
import importlib
import os
import sys

from etlgraph.launcher import read_manifest

bundle = os.path.dirname(os.path.abspath(__file__))
module_name, _, class_name = read_manifest(bundle).main_class.rpartition(".")
launcher = getattr(importlib.import_module(module_name), class_name)
sys.exit(launcher.main(bundle, sys.argv[1:]))
"""


class FlowBuilder:
    """
    Turns a pipeline graph into a self-executing bundle: a zipapp holding the
    generated flow, the runtime it is built against, the modules of the
    components it references and their third-party wheels.
    """

    def __init__(
        self,
        config: Config | None = None,
        registry: ComponentRegistry | None = None,
        resolver: DependencyResolver | None = None,
        **settings: "Any",
    ) -> None:
        self.config = config or Config(**settings)
        self.registry = registry or ComponentRegistry.default()
        self.validator = FlowValidator(self.registry)
        self.generator = FlowGenerator(self.registry)
        self.resolver = resolver or DependencyResolver(self.config)

    def generate(self, graph: "PipelineGraph", verbose: bool = False) -> "GeneratedFlow":
        self.validator.check(graph)

        spine = analyze_control_flow(graph)
        plan = analyze_data_flow(graph)
        if verbose:
            logger.info("Control spine: %s", spine)
            for chain in plan:
                logger.info("Data-flow chain: %s", chain)

        return self.generator.generate(graph, spine, plan)

    def build(
        self, graph: "PipelineGraph", output: str | Path, verbose: bool = False
    ) -> Path:
        generated = self.generate(graph, verbose=verbose)

        sources = self.collect_sources(generated)
        self.compile_sources(sources, generated, verbose=verbose)

        resolved = self.resolver.resolve(
            generated.component_classes,
            include_runtime=self.config.bundle_runtime_dependencies,
        )

        bundle = self.assemble(Path(output), sources, resolved, generated)
        logger.info(
            "Built %s (%s, %d dependenc%s)",
            bundle,
            generated.qualified_name,
            len(resolved),
            "y" if len(resolved) == 1 else "ies",
        )
        return bundle

    ##
    ## sources
    ##

    def collect_sources(self, generated: "GeneratedFlow") -> dict[str, str]:
        """Every module of the bundle, keyed by its path inside the archive."""
        sources: dict[str, str] = {"etlgraph/__init__.py": BUNDLE_PACKAGE_INIT}

        for module in RUNTIME_MODULES:
            sources[f"etlgraph/{module}"] = (PACKAGE_ROOT / module).read_text("utf-8")

        for package in RUNTIME_PACKAGES:
            for path in sorted((PACKAGE_ROOT / package).glob("*.py")):
                sources[f"etlgraph/{package}/{path.name}"] = path.read_text("utf-8")

        generated_package = GENERATED_PACKAGE.replace(".", "/")
        sources[f"{generated_package}/__init__.py"] = ""
        sources[generated.filename] = generated.source

        for cls in generated.component_classes:
            for arcname, path in self._module_files(cls.__module__):
                if arcname not in sources:
                    sources[arcname] = path.read_text("utf-8")

        return sources

    @staticmethod
    def _module_files(module_name: str) -> list[tuple[str, Path]]:
        parts = module_name.split(".")
        files: list[tuple[str, Path]] = []

        for depth in range(1, len(parts) + 1):
            name = ".".join(parts[:depth])
            module = sys.modules.get(name)
            try:
                path = inspect.getsourcefile(module) if module is not None else None
            except TypeError:
                path = None

            if path is None:
                if depth == len(parts):
                    raise BuildError([f"Source of component module '{name}' is not available."])
                # namespace package
                continue

            path = Path(path)
            folder = "/".join(parts[:depth])
            arcname = (
                f"{folder}/__init__.py" if path.name == "__init__.py" else f"{folder}.py"
            )
            files.append((arcname, path))

        return files

    def compile_sources(
        self, sources: dict[str, str], generated: "GeneratedFlow", verbose: bool = False
    ) -> None:
        errors: list[str] = []
        notes: list[str] = []

        for arcname, source in sources.items():
            with warnings.catch_warnings(record=True) as caught:
                warnings.simplefilter("always")
                try:
                    compile(source, arcname, "exec", dont_inherit=True)
                except SyntaxError as e:
                    errors.append(f"{arcname}:{e.lineno}:{e.offset}: error: {e.msg}")
                except ValueError as e:
                    errors.append(f"{arcname}: error: {e}")

            notes.extend(
                f"{arcname}:{w.lineno}: warning: {w.category.__name__}: {w.message}"
                for w in caught
            )

        for note in notes:
            logger.warning("%s", note)

        if errors:
            raise BuildError(
                [*errors, *notes], source=generated.source if verbose else None
            )

    ##
    ## packaging
    ##

    def manifest(self, generated: "GeneratedFlow") -> BundleManifest:
        return BundleManifest(
            main_class=f"{BundleLauncher.__module__}.{BundleLauncher.__qualname__}",
            flow_class=generated.qualified_name,
            created_by=CREATED_BY,
        )

    def assemble(
        self,
        output: Path,
        sources: dict[str, str],
        resolved: list["ResolvedDependency"],
        generated: "GeneratedFlow",
    ) -> Path:
        output.parent.mkdir(parents=True, exist_ok=True)

        with tempfile.TemporaryDirectory(
            prefix="etlgraph-build-", ignore_cleanup_errors=True
        ) as workdir:
            staging = Path(workdir) / "bundle"
            staging.mkdir()

            for arcname, source in sources.items():
                target = staging / arcname
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(source, "utf-8")

            (staging / "__main__.py").write_text(BOOTSTRAP, "utf-8")
            (staging / MANIFEST).write_text(
                json.dumps(self.manifest(generated).to_dict(), indent=2, sort_keys=True),
                "utf-8",
            )

            if resolved:
                (staging / DEPENDENCY_DIR).mkdir()
            for dependency in resolved:
                shutil.copyfile(
                    dependency.wheel, staging / DEPENDENCY_DIR / dependency.archive_name
                )

            archive = Path(workdir) / output.name
            zipapp.create_archive(
                staging, archive, interpreter="/usr/bin/env python3", compressed=True
            )
            shutil.move(archive, output)

        return output
