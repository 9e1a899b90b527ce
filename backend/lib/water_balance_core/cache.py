# backend/lib/water_balance_core/cache.py
import threading
from collections import OrderedDict
from typing import FrozenSet, Iterable, Optional, Tuple, Union

from .calculator import WaterBalanceCalculator
from .models import Period, PeriodMetrics
from .repository import MeterRepository

CacheKey = Tuple[str, str, FrozenSet[str]]


class MetricsCache:
    """
    Bounded LRU memo of PeriodMetrics.

    Keys include the repository fingerprint, so a repository with different
    content never gets another repository's results.
    """

    def __init__(self, max_entries: int = 128):
        self.max_entries = max(1, int(max_entries))
        self._entries: "OrderedDict[CacheKey, PeriodMetrics]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get_metrics(
        self,
        repository: MeterRepository,
        month: str,
        year: Union[str, int],
        excluded_accounts: Optional[Iterable[str]] = None,
    ) -> PeriodMetrics:
        calculator = WaterBalanceCalculator(excluded_accounts)
        period = Period.from_selector(month, year)
        key = (period.key, repository.fingerprint(), calculator.excluded_accounts)

        with self._lock:
            cached = self._entries.get(key)
            if cached is not None:
                self._entries.move_to_end(key)
                self.hits += 1
                return cached
            self.misses += 1

        metrics = calculator.compute(repository.get_all(), period)

        with self._lock:
            self._entries[key] = metrics
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
        return metrics

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0
