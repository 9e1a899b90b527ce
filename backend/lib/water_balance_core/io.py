# backend/lib/water_balance_core/io.py
import csv
import math
from io import StringIO
from pathlib import Path
from typing import Dict, List, Union

from .models import HierarchyLevel, MeterRecord, Period

REQUIRED_COLUMNS = ("Label", "Acct #")


def _is_period_column(name: str) -> bool:
    try:
        return Period.parse(name).key == name
    except ValueError:
        return False


def _parse_volume(text: str, account_id: str, column: str) -> float:
    try:
        value = float(text.replace(",", ""))
    except ValueError:
        raise ValueError(f"Non-numeric reading {text!r} for {account_id} in {column}")
    if not math.isfinite(value) or value < 0:
        raise ValueError(f"Reading must be a finite number >= 0 ({account_id}, {column})")
    return value


def parse_csv_string(csv_text: str) -> List[MeterRecord]:
    """
    Parse a meter export with header:
    Label,Meter Label,Acct #,Zone,Type,Parent Meter,Jan-24,Feb-24,...

    Columns named like 'Mon-YY' hold readings; blank cells are missing
    readings. Other unknown columns are ignored.
    """
    f = StringIO(csv_text.strip())
    reader = csv.DictReader(f)
    header = [h.strip() for h in (reader.fieldnames or [])]
    missing = [c for c in REQUIRED_COLUMNS if c not in header]
    if missing:
        raise ValueError(f"Missing column(s): {', '.join(missing)}")
    reader.fieldnames = header
    period_columns = [h for h in header if _is_period_column(h)]

    records = []
    for row in reader:
        label = (row.get("Label") or "").strip()
        account_id = (row.get("Acct #") or "").strip()
        if not label and not account_id:
            continue  # blank line
        if not label or not account_id:
            raise ValueError(f"Missing field in row: {row}")
        try:
            level = HierarchyLevel(label.upper())
        except ValueError:
            raise ValueError(f"Unknown hierarchy level {label!r} for account {account_id}")

        readings: Dict[str, float] = {}
        for column in period_columns:
            cell = (row.get(column) or "").strip()
            if cell:
                readings[column] = _parse_volume(cell, account_id, column)

        records.append(MeterRecord(
            level=level,
            account_id=account_id,
            label=(row.get("Meter Label") or "").strip(),
            zone=(row.get("Zone") or "").strip(),
            usage_type=(row.get("Type") or "").strip(),
            parent_meter_label=(row.get("Parent Meter") or "").strip(),
            readings=readings,
        ))
    return records


def load_csv_file(path: Union[str, Path]) -> List[MeterRecord]:
    return parse_csv_string(Path(path).read_text(encoding="utf-8-sig"))
