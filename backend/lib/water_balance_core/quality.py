# backend/lib/water_balance_core/quality.py
import math
from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from .calculator import DEFAULT_EXCLUDED_ACCOUNTS
from .models import MAIN_BULK_ZONE, HierarchyLevel, MeterRecord, Period, PeriodMetrics

HIGH_LOSS_PCT = 20.0
MEDIUM_LOSS_PCT = 10.0

MISSING_L1 = "missing_l1"
MULTIPLE_L1 = "multiple_l1"
NEGATIVE_STAGE1_LOSS = "negative_stage1_loss"


def _excluded(excluded_accounts: Optional[Iterable[str]]) -> frozenset:
    if excluded_accounts is None:
        return DEFAULT_EXCLUDED_ACCOUNTS
    return frozenset(excluded_accounts)


def loss_status(loss_pct: float) -> str:
    if not isinstance(loss_pct, (int, float)) or not math.isfinite(loss_pct):
        return "Unknown"
    if loss_pct > HIGH_LOSS_PCT:
        return "High Loss"
    if loss_pct > MEDIUM_LOSS_PCT:
        return "Medium Loss"
    return "Good"


def rank_zone_losses(metrics: PeriodMetrics, limit: Optional[int] = 5) -> List[Dict]:
    """
    Zones with bulk flow, worst loss percentage first. The Main Bulk
    pseudo-zone is left out.
    """
    if limit is not None and limit < 0:
        raise ValueError("limit must be >= 0")
    rows = [
        {
            "zone": zone,
            "l2Bulk": zm.l2_bulk,
            "l3Sum": zm.l3_sum,
            "loss": zm.loss,
            "lossPercentage": round(zm.loss_percentage, 1),
            "status": loss_status(zm.loss_percentage),
        }
        for zone, zm in metrics.zone_metrics.items()
        if zm.l2_bulk > 0 and zone != MAIN_BULK_ZONE
    ]
    rows.sort(key=lambda row: row["lossPercentage"], reverse=True)
    return rows if limit is None else rows[:limit]


def consumption_by_zone(
    records: Iterable[MeterRecord],
    period: Period,
    excluded_accounts: Optional[Iterable[str]] = None,
) -> Dict[str, float]:
    """Terminal consumption (L3 + DC) per zone; zones with no use are dropped."""
    excluded = _excluded(excluded_accounts)
    totals = defaultdict(float)
    for r in records:
        if r.level not in (HierarchyLevel.L3, HierarchyLevel.DC) or not r.zone:
            continue
        if r.account_id in excluded:
            continue
        totals[r.zone] += r.reading(period)
    return {zone: v for zone, v in totals.items() if v > 0}


def zone_meters(
    records: Iterable[MeterRecord],
    zone: str,
    excluded_accounts: Optional[Iterable[str]] = None,
) -> List[MeterRecord]:
    excluded = _excluded(excluded_accounts)
    return [
        r for r in records
        if r.zone == zone and r.level == HierarchyLevel.L3 and r.account_id not in excluded
    ]


def check_data_quality(records: Iterable[MeterRecord], metrics: PeriodMetrics) -> List[str]:
    """
    Issue codes for conditions the calculator tolerates but a caller may
    want to flag.
    """
    issues = []
    l1_count = sum(1 for r in records if r.level == HierarchyLevel.L1)
    if l1_count == 0:
        issues.append(MISSING_L1)
    elif l1_count > 1:
        issues.append(MULTIPLE_L1)
    if metrics.stage1_loss < 0:
        issues.append(NEGATIVE_STAGE1_LOSS)
    return issues


def _observed_periods(records: Iterable[MeterRecord]) -> List[Period]:
    periods = set()
    for r in records:
        for key in r.readings:
            try:
                periods.add(Period.parse(key))
            except ValueError:
                continue  # not a 'Mon-YY' column
    return sorted(periods, key=lambda p: (p.year, p.month))


def zone_summaries(
    records: Iterable[MeterRecord],
    excluded_accounts: Optional[Iterable[str]] = None,
) -> List[Dict]:
    """
    Per-zone totals over every period in the data: total and monthly
    consumption of all meters in the zone, share of the L1 meter's total,
    and meter counts overall and by usage type. Zones are sorted by name.
    """
    excluded = _excluded(excluded_accounts)
    records = [r for r in records if r.account_id not in excluded]
    periods = _observed_periods(records)

    def total(record: MeterRecord) -> float:
        return sum(record.reading(p) for p in periods)

    l1_records = [r for r in records if r.level == HierarchyLevel.L1]
    main_total = total(l1_records[0]) if l1_records else 0.0

    summaries = []
    for zone in sorted({r.zone for r in records if r.zone}):
        meters = [r for r in records if r.zone == zone]
        monthly = {
            p.key: sum(r.reading(p) for r in meters)
            for p in periods
        }
        zone_total = sum(monthly.values())
        meter_types: Dict[str, int] = defaultdict(int)
        for r in meters:
            if r.usage_type:
                meter_types[r.usage_type] += 1
        summaries.append({
            "zoneId": "-".join(zone.split()).lower(),
            "zoneName": zone,
            "totalConsumption": zone_total,
            "monthlyConsumption": monthly,
            "percentageOfMain": zone_total / main_total * 100 if main_total > 0 else 0.0,
            "meterCount": len(meters),
            "meterTypes": dict(meter_types),
        })
    return summaries
