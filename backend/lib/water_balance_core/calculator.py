# backend/lib/water_balance_core/calculator.py
import logging
from collections import defaultdict
from typing import Dict, FrozenSet, Iterable, List, Optional, Union

from .models import HierarchyLevel, MeterRecord, Period, PeriodMetrics, ZoneMetric

logger = logging.getLogger(__name__)

# Building meter Z3-74(3) is also read through its building bulk meter
DEFAULT_EXCLUDED_ACCOUNTS: FrozenSet[str] = frozenset({"4300322"})


def _pct(part: float, whole: float) -> float:
    return part / whole * 100 if whole > 0 else 0.0


class WaterBalanceCalculator:
    def __init__(self, excluded_accounts: Optional[Iterable[str]] = None):
        """
        excluded_accounts: account ids left out of every sum, zone metric and
        type breakdown. Defaults to DEFAULT_EXCLUDED_ACCOUNTS.
        """
        if excluded_accounts is None:
            excluded_accounts = DEFAULT_EXCLUDED_ACCOUNTS
        self.excluded_accounts = frozenset(str(a) for a in excluded_accounts)

    def compute(self, records: Iterable[MeterRecord], period: Period) -> PeriodMetrics:
        """
        Water balance of one period.

        Missing readings count as 0 and every percentage is 0 when its
        denominator is 0, so this never fails on incomplete data.
        """
        if records is None:
            raise TypeError("records must not be None")
        records = list(records)

        l1_records = [r for r in records if r.level == HierarchyLevel.L1]
        if not l1_records:
            logger.warning("No L1 meter found for %s; supply defaults to 0", period.key)
            total_l1_supply = 0.0
        else:
            if len(l1_records) > 1:
                logger.warning(
                    "%d L1 meters found for %s; using account %s",
                    len(l1_records), period.key, l1_records[0].account_id,
                )
            total_l1_supply = l1_records[0].reading(period)

        l2_native = 0.0
        dc_total = 0.0
        l3_native_excl = 0.0
        consumption_by_type: Dict[str, float] = defaultdict(float)
        # every zone appears even without L2/L3 activity
        l2_bulk: Dict[str, float] = {r.zone: 0.0 for r in records if r.zone}
        l3_sum: Dict[str, float] = dict.fromkeys(l2_bulk, 0.0)

        for r in records:
            if r.account_id in self.excluded_accounts:
                continue
            value = r.reading(period)
            if r.level == HierarchyLevel.L2:
                l2_native += value
                if r.zone:
                    l2_bulk[r.zone] += value
            elif r.level == HierarchyLevel.DC:
                dc_total += value
                if r.usage_type:
                    consumption_by_type[r.usage_type] += value
            elif r.level == HierarchyLevel.L3:
                l3_native_excl += value
                if r.usage_type:
                    consumption_by_type[r.usage_type] += value
                if r.zone:
                    l3_sum[r.zone] += value

        # DC flow bypasses the zone bulk meters and is also terminal use
        total_l2_volume = l2_native + dc_total
        total_l3_volume = l3_native_excl + dc_total

        stage1_loss = total_l1_supply - total_l2_volume
        stage2_loss = l2_native - l3_native_excl
        total_loss = total_l1_supply - total_l3_volume

        zone_metrics = {}
        for zone, bulk in l2_bulk.items():
            loss = bulk - l3_sum[zone]
            zone_metrics[zone] = ZoneMetric(
                l2_bulk=bulk,
                l3_sum=l3_sum[zone],
                loss=loss,
                loss_percentage=_pct(loss, bulk),
            )

        logger.debug(
            "Computed %s: L1=%.1f L2=%.1f L3=%.1f over %d records",
            period.key, total_l1_supply, total_l2_volume, total_l3_volume, len(records),
        )
        return PeriodMetrics(
            period=period,
            total_l1_supply=total_l1_supply,
            total_l2_volume=total_l2_volume,
            total_l3_volume=total_l3_volume,
            stage1_loss=stage1_loss,
            stage2_loss=stage2_loss,
            total_loss=total_loss,
            stage1_loss_percentage=_pct(stage1_loss, total_l1_supply),
            stage2_loss_percentage=_pct(stage2_loss, total_l2_volume),
            total_loss_percentage=_pct(total_loss, total_l1_supply),
            consumption_by_type=dict(consumption_by_type),
            zone_metrics=zone_metrics,
        )


def compute_metrics(
    records: Iterable[MeterRecord],
    month: str,
    year: Union[str, int],
    excluded_accounts: Optional[Iterable[str]] = None,
) -> PeriodMetrics:
    """
    Water balance for the selector (month, year), e.g. ("Mar", "2025").
    """
    period = Period.from_selector(month, year)
    return WaterBalanceCalculator(excluded_accounts).compute(records, period)


def parse_excluded_accounts(text: Optional[str]) -> List[str]:
    """Comma-separated account ids -> list; None means the defaults."""
    if text is None:
        return sorted(DEFAULT_EXCLUDED_ACCOUNTS)
    return [a.strip() for a in text.split(",") if a.strip()]
