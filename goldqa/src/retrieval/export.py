"""Tab-separated data export parsing and profiling."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

from goldqa.src.utils.models import DataSummary, Row

UNIQUE_VALUE_CAP = 100
SAMPLE_RECORDS = 10
NUMERIC_RATIO = 0.8


def parse_tsv(content: str) -> List[Row]:
    """First non-blank line is the header; every later non-blank line is a record."""

    lines = [line for line in content.splitlines() if line.strip()]
    if len(lines) < 2:
        return []
    headers = [header.strip() for header in lines[0].split("\t")]
    records: List[Row] = []
    for line in lines[1:]:
        values = line.split("\t")
        records.append({header: (values[i].strip() if i < len(values) else "") for i, header in enumerate(headers)})
    return records


def _is_number(value: str) -> bool:
    try:
        float(value.replace(",", ""))
    except ValueError:
        return False
    return True


def detect_field_type(values: List[str]) -> str:
    present = [value for value in values if value]
    if not present:
        return "string"
    numeric = sum(1 for value in present if _is_number(value))
    return "number" if numeric / len(present) > NUMERIC_RATIO else "string"


@dataclass(slots=True)
class DataExport:
    """One parsed export file."""

    name: str
    rows: List[Row] = field(default_factory=list)

    @property
    def headers(self) -> List[str]:
        return list(self.rows[0].keys()) if self.rows else []

    @classmethod
    def from_text(cls, name: str, content: str) -> "DataExport":
        return cls(name=name, rows=parse_tsv(content))


def load_export(path: Path | str) -> DataExport:
    source = Path(path)
    return DataExport.from_text(source.name, source.read_text(encoding="utf-8"))


def summarize_export(export: DataExport) -> DataSummary:
    headers = export.headers
    field_types: Dict[str, str] = {}
    unique_values: Dict[str, List[str]] = {}
    for header in headers:
        column = [row.get(header, "") for row in export.rows]
        field_types[header] = detect_field_type(column)
        seen: List[str] = []
        for value in column:
            if value and value not in seen:
                seen.append(value)
                if len(seen) >= UNIQUE_VALUE_CAP:
                    break
        unique_values[header] = seen
    return DataSummary(
        source_label=export.name,
        headers=headers,
        record_count=len(export.rows),
        field_types=field_types,
        unique_values=unique_values,
        sample_records=export.rows[:SAMPLE_RECORDS],
    )
