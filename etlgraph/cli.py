import argparse
import importlib
import logging
import sys
import warnings
from pathlib import Path
from typing import TYPE_CHECKING

from .build import FlowBuilder
from .config import Config
from .exceptions import EtlGraphError
from .graph import PipelineGraph
from .loader import FlowRunner
from .validator import FlowValidator

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Sequence

logger = logging.getLogger(__name__)


def _compile(args: argparse.Namespace) -> int:
    config = Config(offline=True) if args.offline else Config()
    graph = PipelineGraph.load(args.sheet)
    bundle = FlowBuilder(config).build(graph, args.output, verbose=args.verbose)
    print(bundle)
    return 0


def _run(args: argparse.Namespace) -> int:
    report = FlowRunner().run(args.bundle)
    for name, value in sorted(report.variables.items()):
        logger.info("%s = %r", name, value)

    return 0


def _validate(args: argparse.Namespace) -> int:
    result = FlowValidator().validate(PipelineGraph.load(args.sheet))
    if not result:
        print(f"invalid: {result.reason}", file=sys.stderr)
        return 1

    print("ok")
    return 0


def _generate(args: argparse.Namespace) -> int:
    generated = FlowBuilder().generate(
        PipelineGraph.load(args.sheet), verbose=args.verbose
    )
    sys.stdout.write(generated.source)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="etlgraph", description="Compile and run visual ETL pipelines."
    )
    parser.add_argument(
        "-m",
        "--import",
        dest="imports",
        action="append",
        default=[],
        metavar="MODULE",
        help="import MODULE first, e.g. to register third-party components",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    compile_ = sub.add_parser("compile", help="build a runnable bundle from a sheet")
    compile_.add_argument("sheet", type=Path, help="pipeline sheet (JSON)")
    compile_.add_argument("output", type=Path, help="bundle to write (.pyz)")
    compile_.add_argument(
        "--offline", action="store_true", help="never download dependencies"
    )
    compile_.set_defaults(handler=_compile)

    run = sub.add_parser("run", help="run a bundle")
    run.add_argument("bundle", type=Path)
    run.set_defaults(handler=_run)

    validate = sub.add_parser("validate", help="check the structure of a sheet")
    validate.add_argument("sheet", type=Path)
    validate.set_defaults(handler=_validate)

    generate = sub.add_parser("generate", help="print the generated flow source")
    generate.add_argument("sheet", type=Path)
    generate.set_defaults(handler=_generate)

    for command in (compile_, run, validate, generate):
        command.add_argument(
            "-v", "--verbose", action="store_true", help="log at debug level"
        )

    return parser


def main(argv: "Sequence[str] | None" = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    logging.captureWarnings(True)
    warnings.simplefilter("default")

    try:
        for module in args.imports:
            importlib.import_module(module)

        return args.handler(args)
    except (EtlGraphError, ImportError, OSError) as e:
        logger.error("%s", e)
        return 1
