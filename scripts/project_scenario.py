#!/usr/bin/env python3
"""
Query emissions for a geography, fit a model, and project a scenario.

Usage:
    python scripts/project_scenario.py 36109 --year 2030 --set vmt=4.2e9 \
        [--pollutant co2e] [--by overall] [--best] [--seed 1] [--output out.csv]

The projection table is printed, and written to CSV when --output is given.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import moveslite
from moveslite.errors import MovesLiteError

logger = logging.getLogger("project_scenario")


def parse_assignments(items: list[str]) -> dict[str, float]:
    """Parse ``name=value`` pairs into a dict of floats."""
    values = {}
    for item in items:
        name, sep, raw = item.partition("=")
        if not sep or not name:
            raise argparse.ArgumentTypeError(f"Expected name=value, got {item!r}")
        values[name.strip()] = float(raw)
    return values


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__.split("\n\n")[0].strip())
    parser.add_argument("geoid", help="2-digit state or 5-digit county FIPS code")
    parser.add_argument("--pollutant", default="98", help="MOVES pollutant ID or name (default: 98)")
    parser.add_argument("--by", default="overall", help="Aggregation level (default: overall)")
    parser.add_argument("--sourcetype", default=None)
    parser.add_argument("--fueltype", default=None)
    parser.add_argument("--regclass", default=None)
    parser.add_argument("--roadtype", default=None)
    parser.add_argument("--year", type=int, nargs="+", required=True, help="Scenario year(s)")
    parser.add_argument("--set", dest="assignments", action="append", default=[],
                        help="Scenario predictor value, e.g. vmt=4.2e9 (repeatable)")
    parser.add_argument("--formula", default=None, help="Explicit model formula")
    parser.add_argument("--best", action="store_true", help="Pick the best-fitting candidate formula")
    parser.add_argument("--no-context", action="store_true", help="Omit pre/post benchmark rows")
    parser.add_argument("--ci", type=float, default=0.95)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--output", type=Path, default=None, help="CSV output path")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    status = moveslite.check_status()
    if moveslite.is_failure(status):
        logger.error(f"Data API unavailable: {status.message}")
        return 2

    data = moveslite.query(
        args.geoid,
        pollutant=args.pollutant,
        by=args.by,
        sourcetype=args.sourcetype,
        fueltype=args.fueltype,
        regclass=args.regclass,
        roadtype=args.roadtype,
    )
    if moveslite.is_failure(data):
        logger.error(f"Query failed: {data.message}")
        return 2

    scenario = {"year": args.year}
    scenario.update({k: [v] * len(args.year) for k, v in parse_assignments(args.assignments).items()})

    try:
        model = moveslite.estimate(data, formula=args.formula, best=args.best)
        table = moveslite.project(
            model, data, scenario,
            context=not args.no_context, ci=args.ci, seed=args.seed,
        )
    except MovesLiteError as exc:
        logger.error(str(exc))
        return 1

    print(table.to_string(index=False))
    if args.output is not None:
        table.to_csv(args.output, index=False)
        print(f"\n  → {args.output} ({len(table)} rows)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
