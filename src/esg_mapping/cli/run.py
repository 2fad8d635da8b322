# src/esg_mapping/cli/run.py

from __future__ import annotations

import argparse
import logging
from typing import List, Optional

from esg_mapping.compliance.rules import known_standards, load_rule_set
from esg_mapping.config import setup_logging
from esg_mapping.core.errors import ESGMappingError
from esg_mapping.core.types import ColumnConfig
from esg_mapping.pipeline.io_utils import load_rows_from_csv, save_mappings_to_csv, save_result_to_json
from esg_mapping.pipeline.pipeline import build_pipeline

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Map uploaded ESG rows onto canonical KPIs and check compliance."
    )
    parser.add_argument(
        "--input",
        "-i",
        required=True,
        help="Path to a CSV file with one KPI value per row.",
    )
    parser.add_argument(
        "--standard",
        "-s",
        default="issb",
        help=f"Compliance standard ({', '.join(known_standards())}).",
    )
    parser.add_argument(
        "--period",
        "-p",
        default="",
        help="Reporting period, e.g. 2024Q3 or 2024-12.",
    )
    parser.add_argument(
        "--output",
        "-o",
        default="output.json",
        help="Path to output JSON file (default: output.json).",
    )
    parser.add_argument(
        "--csv",
        help="Optional path for a flat CSV of the KPI mappings.",
    )
    parser.add_argument("--kpi-column", default="kpiId")
    parser.add_argument("--value-column", default="value")
    parser.add_argument("--unit-column", default="unit")
    parser.add_argument("--period-column", default=None)
    parser.add_argument(
        "--no-report",
        action="store_true",
        help="Skip the detailed compliance report.",
    )
    parser.add_argument("--log-level", default="INFO")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    logger.info("CLI: Starting KPI mapping on '%s'", args.input)

    column_config = ColumnConfig(
        kpi_column=args.kpi_column,
        value_column=args.value_column,
        unit_column=args.unit_column,
        period_column=args.period_column,
    )

    try:
        rule_set = load_rule_set(args.standard)
        rows = load_rows_from_csv(args.input)
        pipeline = build_pipeline()
        result = pipeline.run(
            rows,
            column_config,
            rule_set,
            period=args.period,
            generate_report=not args.no_report,
        )
    except FileNotFoundError as exc:
        logger.error("CLI: input not found: %s", exc)
        return 2
    except ESGMappingError as exc:
        logger.error("CLI: %s", exc)
        return 2

    save_result_to_json(result, args.output)
    logger.info("CLI: Saved results to %s", args.output)

    if args.csv:
        save_mappings_to_csv(result.mappings, args.csv)
        logger.info("CLI: Saved mappings to %s", args.csv)

    for warning in result.warnings:
        logger.warning("CLI: %s", warning)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
