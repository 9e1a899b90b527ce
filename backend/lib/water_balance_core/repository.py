# backend/lib/water_balance_core/repository.py
import hashlib
import json
from typing import Iterable, Iterator, List, Optional, Tuple

from .models import HierarchyLevel, MeterRecord


class MeterRepository:
    """
    Read-only collection of meter records.

    Records are copied into a tuple on construction and never change
    afterwards, so one repository can be shared between threads.
    """

    def __init__(self, records: Iterable[MeterRecord]):
        if records is None:
            raise TypeError("records must not be None")
        self._records: Tuple[MeterRecord, ...] = tuple(records)
        self._fingerprint: Optional[str] = None

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[MeterRecord]:
        return iter(self._records)

    def get_all(self) -> Tuple[MeterRecord, ...]:
        return self._records

    def find_by_level(self, level: HierarchyLevel) -> List[MeterRecord]:
        level = HierarchyLevel(level)
        return [r for r in self._records if r.level == level]

    def find_by_zone(self, zone: str, level: Optional[HierarchyLevel] = None) -> List[MeterRecord]:
        level = HierarchyLevel(level) if level is not None else None
        return [
            r for r in self._records
            if r.zone == zone and (level is None or r.level == level)
        ]

    def find_by_account(self, account_id: str) -> Optional[MeterRecord]:
        for r in self._records:
            if r.account_id == account_id:
                return r
        return None

    def zones(self) -> List[str]:
        return sorted({r.zone for r in self._records if r.zone})

    def fingerprint(self) -> str:
        """
        Content hash of all records. Two repositories holding the same
        records in the same order share a fingerprint.
        """
        if self._fingerprint is None:
            digest = hashlib.sha256()
            for r in self._records:
                row = r.to_dict()
                row["readings"] = sorted(row["readings"].items())
                digest.update(json.dumps(row, sort_keys=True, default=str).encode("utf-8"))
                digest.update(b"\n")
            self._fingerprint = digest.hexdigest()
        return self._fingerprint
