"""Command line entry point: ``mapflow inspect`` and ``mapflow tutorial``."""

import argparse
import logging
import sys
from typing import Optional, Sequence

from mapflow import configure_logging
from mapflow.config import load_config
from mapflow.core.describe import format_summary
from mapflow.errors import MapflowError
from mapflow.io.loaders import load

logger = logging.getLogger("mapflow.cli")


def _inspect(args: argparse.Namespace) -> int:
    gdf = load(args.path, crs=args.crs)
    print(format_summary(gdf))
    return 0


def _tutorial(args: argparse.Namespace) -> int:
    # imported here so `mapflow inspect` does not pull in matplotlib
    from mapflow.tutorial import run_toronto_walkthrough

    config = load_config(args.config)
    result = run_toronto_walkthrough.run(
        collisions_path=args.collisions,
        neighbourhoods_path=args.neighbourhoods,
        output_dir=args.output_dir,
        config=config,
    )
    outputs = result.result
    provenance_path = outputs.report.with_name("toronto_ksi_provenance.json")
    result.save_provenance(provenance_path)

    for path in list(outputs.data_files.values()) + outputs.map_files:
        print(path)
    print(outputs.report)
    print(provenance_path)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mapflow", description="Reproducible spatial data workflows."
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    inspect_cmd = commands.add_parser("inspect", help="Summarise a vector dataset")
    inspect_cmd.add_argument("path", help="GeoJSON, Shapefile, GeoPackage or CSV file")
    inspect_cmd.add_argument("--crs", default=None, help="CRS to assume when the file has none")
    inspect_cmd.set_defaults(handler=_inspect)

    tutorial_cmd = commands.add_parser("tutorial", help="Run the Toronto KSI walkthrough")
    tutorial_cmd.add_argument("--collisions", default=None, help="Collisions CSV (bundled sample if omitted)")
    tutorial_cmd.add_argument("--neighbourhoods", default=None, help="Neighbourhood polygons (bundled sample if omitted)")
    tutorial_cmd.add_argument("--output-dir", default=None, help="Where maps, data and the report go")
    tutorial_cmd.add_argument("--config", default=None, help="YAML configuration file")
    tutorial_cmd.add_argument(
        "-v", "--verbose", action="store_true", default=argparse.SUPPRESS, help="Debug logging"
    )
    tutorial_cmd.set_defaults(handler=_tutorial)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO)
    try:
        return args.handler(args)
    except (MapflowError, FileNotFoundError) as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
