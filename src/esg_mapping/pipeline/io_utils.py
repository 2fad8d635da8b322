import csv
import json
from pathlib import Path
from typing import Any, Dict, List

from esg_mapping.core.types import KPIMapping, PipelineResult

MAPPING_CSV_COLUMNS = [
    "kpi_identifier",
    "aggregated_value",
    "unit",
    "record_count",
    "suggested_kpi_id",
    "suggested_kpi_name",
    "confidence",
    "original_confidence",
    "status",
    "alternatives",
]


def load_rows_from_csv(in_path: str) -> List[Dict[str, Any]]:
    """
    Read an already tabular CSV export into column-keyed rows.
    """
    path = Path(in_path)
    if not path.exists():
        raise FileNotFoundError(in_path)

    with path.open("r", newline="", encoding="utf-8-sig") as f:
        return [dict(row) for row in csv.DictReader(f)]


def save_mappings_to_csv(mappings: List[KPIMapping], out_path: str) -> None:
    """
    Save KPI mappings to a CSV file with a stable, flat schema.
    """
    path = Path(out_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(MAPPING_CSV_COLUMNS)

        for m in mappings:
            writer.writerow([
                m.group.kpi_identifier,
                m.group.aggregated_value,
                m.group.common_unit,
                m.group.record_count,
                m.best_match.id if m.best_match else "",
                m.best_match.name if m.best_match else "",
                round(m.adjusted_confidence, 4),
                round(m.original_confidence, 4),
                m.status,
                ",".join(c.kpi_definition.id for c in m.alternatives),
            ])


def save_result_to_json(result: PipelineResult, out_path: str) -> None:
    path = Path(out_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(result.to_dict(), indent=2, ensure_ascii=False, default=str),
        encoding="utf-8",
    )
