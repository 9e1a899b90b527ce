# backend/lib/water_balance_core/trend.py
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, List, Optional, Tuple, Union

from .calculator import WaterBalanceCalculator
from .models import MeterRecord, Period, TrendPoint

# Years whose data window only covers some months
PARTIAL_YEAR_BUCKETS: Dict[int, Tuple[int, ...]] = {
    2025: (1, 2, 3),
}


def periods_for_year(year: Union[str, int]) -> List[Period]:
    """
    Chronological periods of a trend year: the configured months for a
    partial year bucket, otherwise Jan..Dec.
    """
    first = Period.from_selector("Jan", year)
    months = PARTIAL_YEAR_BUCKETS.get(first.year, tuple(range(1, 13)))
    return [Period(year=first.year, month=m) for m in months]


def compute_trend(
    records: Iterable[MeterRecord],
    year: Union[str, int],
    excluded_accounts: Optional[Iterable[str]] = None,
    max_workers: Optional[int] = None,
) -> List[TrendPoint]:
    """
    Loss trend for a year: one TrendPoint per period, in calendar order.

    max_workers > 1 spreads the periods over a thread pool; the result
    order does not change.
    """
    if records is None:
        raise TypeError("records must not be None")
    records = list(records)
    calculator = WaterBalanceCalculator(excluded_accounts)
    periods = periods_for_year(year)

    def point(period: Period) -> TrendPoint:
        return TrendPoint.from_metrics(calculator.compute(records, period))

    if max_workers and max_workers > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            # map() yields in submission order
            return list(pool.map(point, periods))
    return [point(p) for p in periods]
