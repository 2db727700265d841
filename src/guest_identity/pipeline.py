from __future__ import annotations

import argparse
import csv
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

import pandas as pd

from .common import (
    RESOLUTION_ORDER,
    CustomerJourney,
    CustomerProfile,
    PipelineConfig,
    QualityReport,
    Source,
    SourceLayouts,
    SourceQuality,
    SourceTable,
    extract_table,
    load_config,
    read_table,
)
from .journey import build_journeys
from .logging_utils import configure_logging
from .quality import assess_quality
from .resolve import resolve

logger = logging.getLogger(__name__)

INPUT_LABELS = {
    Source.LEDGER: ("ledger_csv", "Guest ledger"),
    Source.LEAD_FORM: ("lead_form_csv", "Lead form"),
    Source.CRM: ("crm_csv", "CRM"),
    Source.RESERVATION: ("reservations_csv", "Reservations"),
}

QUALITY_METRICS = (
    ("total_records", "Total records"),
    ("missing_phones", "Missing phone"),
    ("missing_emails", "Missing email"),
    ("duplicate_phones", "Duplicate phones"),
    ("invalid_phones", "Invalid phones"),
    ("invalid_emails", "Invalid emails"),
    ("non_standard_phones", "Non-standard phones"),
)


@dataclass
class PassResult:
    profiles: List[CustomerProfile]
    journeys: List[CustomerJourney]
    quality: QualityReport


def run_pass(tables: Mapping[Source, SourceTable], config: PipelineConfig) -> PassResult:
    """
    Run one resolution pass over already extracted tables.

    The three stages read the same tables and never mutate them; any
    exception escapes to the caller, who abandons the pass.
    """
    profiles = resolve(tables)
    journeys = build_journeys(tables, include_reservations=config.journey.include_reservations)
    quality = assess_quality(tables, config.quality)
    logger.info(
        "Pass complete: %d profiles, %d journeys", len(profiles), len(journeys)
    )
    return PassResult(profiles=profiles, journeys=journeys, quality=quality)


def load_tables(config: PipelineConfig) -> Dict[Source, SourceTable]:
    layouts = SourceLayouts.from_config(config.layouts)
    tables: Dict[Source, SourceTable] = {}
    for source in RESOLUTION_ORDER:
        attr, label = INPUT_LABELS[source]
        rows = read_table(getattr(config.inputs, attr), label)
        tables[source] = extract_table(source, rows, layouts)
    return tables


def profiles_frame(profiles: List[CustomerProfile]) -> pd.DataFrame:
    rows: List[Dict[str, Any]] = []
    for profile in profiles:
        payload = profile.to_dict()
        rows.append(
            {
                "customer_id": payload["id"],
                "name": payload["name"],
                "phone": payload["phone"],
                "email": payload["email"],
                "visits_count": payload["visits_count"],
                "total_amount": payload["total_amount"],
                "avg_check": round(payload["avg_check"], 2),
                "first_visit_date": payload["first_visit_date"],
                "last_visit_date": payload["last_visit_date"],
                "first_source": payload["first_source"],
                "first_utm_source": payload["first_utm_source"],
                "first_utm_medium": payload["first_utm_medium"],
                "first_utm_campaign": payload["first_utm_campaign"],
                "first_source_date": payload["first_source_date"],
                "crm_deal_count": len(payload["crm_deals"]),
                "reservation_count": len(payload["reservations"]),
                "lead_form_count": len(payload["lead_form_submissions"]),
                "sources": "|".join(payload["sources"]),
                "crm_deals_json": json.dumps(payload["crm_deals"], ensure_ascii=False),
                "reservations_json": json.dumps(payload["reservations"], ensure_ascii=False),
                "lead_forms_json": json.dumps(
                    payload["lead_form_submissions"], ensure_ascii=False
                ),
            }
        )
    return pd.DataFrame(rows)


def journeys_frame(journeys: List[CustomerJourney]) -> pd.DataFrame:
    rows: List[Dict[str, Any]] = []
    for journey in journeys:
        for position, event in enumerate(journey.events):
            payload = event.to_dict()
            rows.append(
                {
                    "customer_id": journey.customer_id,
                    "position": position,
                    "event": payload["type"],
                    "date": payload["date"],
                    "time": payload["time"],
                    "days_since_previous": payload["days_since_previous"],
                    "details_json": json.dumps(payload["details"], ensure_ascii=False),
                }
            )
    return pd.DataFrame(rows)


def quality_frame(report: QualityReport) -> pd.DataFrame:
    rows: List[Dict[str, Any]] = []
    for key, label in QUALITY_METRICS:
        row: Dict[str, Any] = {"metric": label}
        for source in RESOLUTION_ORDER:
            value = getattr(report.sources.get(source) or SourceQuality(), key)
            row[source.value] = value if isinstance(value, int) else len(value)
        rows.append(row)
    for (left, right), count in report.cross_source_matches.items():
        rows.append(
            {
                "metric": f"Shared customers {left.value} & {right.value}",
                left.value: count,
                right.value: count,
            }
        )
    return pd.DataFrame(rows)


def build(args: argparse.Namespace, config: Optional[PipelineConfig] = None) -> PassResult:
    config = config or load_config(args)
    tables = load_tables(config)
    return run_pass(tables, config)


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Resolve customer identities across ledger, lead form, CRM and reservation exports."
    )
    parser.add_argument("--config", type=str, default=None, help="Path to YAML config.")
    parser.add_argument("--ledger-csv", type=str, default=None)
    parser.add_argument("--lead-form-csv", type=str, default=None)
    parser.add_argument("--crm-csv", type=str, default=None)
    parser.add_argument("--reservations-csv", type=str, default=None)
    parser.add_argument("--out-dir", type=str, default=None)
    parser.add_argument("--phone-region", type=str, default=None)
    parser.add_argument(
        "--include-reservations",
        dest="include_reservations",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Add reservation events to customer journeys (default: off).",
    )
    parser.add_argument("--log-level", type=str, default=None, help="Override logging level")
    args = parser.parse_args()

    config = load_config(args)
    configure_logging(config, level_override=args.log_level)
    result = build(args, config=config)

    out_dir = config.outputs.dir
    out_dir.mkdir(parents=True, exist_ok=True)
    outputs = {
        "unified_customers.csv": profiles_frame(result.profiles),
        "customer_journeys.csv": journeys_frame(result.journeys),
        "data_quality.csv": quality_frame(result.quality),
    }
    for filename, frame in outputs.items():
        path = out_dir / filename
        frame.to_csv(str(path), index=False, encoding="utf-8", quoting=csv.QUOTE_ALL)
        logger.info("Saved: %s", path)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
