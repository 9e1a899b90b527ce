# backend/lib/water_balance_core/models.py
import math
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, Mapping, Union

MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
          "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

# Pseudo-zone holding the L1 and DC meters
MAIN_BULK_ZONE = "Main Bulk"


class HierarchyLevel(str, Enum):
    L1 = "L1"
    L2 = "L2"
    L3 = "L3"
    DC = "DC"


@dataclass(frozen=True)
class Period:
    year: int
    month: int  # 1..12

    def __post_init__(self):
        if not isinstance(self.month, int) or not 1 <= self.month <= 12:
            raise ValueError(f"Month must be 1..12: {self.month!r}")

    @classmethod
    def from_selector(cls, month: str, year: Union[str, int]) -> "Period":
        """
        Build a period from a UI selector such as ("Mar", "2025").
        A 2-digit year is read as 20YY.
        """
        token = str(month).strip().capitalize()
        if token not in MONTHS:
            raise ValueError(f"Unknown month token: {month!r}")
        year_text = str(year).strip()
        if not year_text.isdigit() or len(year_text) not in (2, 4):
            raise ValueError(f"Year must be 2 or 4 digits: {year!r}")
        year_num = int(year_text)
        if len(year_text) == 2:
            year_num += 2000
        return cls(year=year_num, month=MONTHS.index(token) + 1)

    @classmethod
    def parse(cls, key: str) -> "Period":
        """Parse an external period key like 'Mar-25'."""
        month, sep, suffix = str(key).partition("-")
        if not sep:
            raise ValueError(f"Not a period key: {key!r}")
        return cls.from_selector(month, suffix)

    @property
    def month_token(self) -> str:
        return MONTHS[self.month - 1]

    @property
    def key(self) -> str:
        return f"{self.month_token}-{self.year % 100:02d}"

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class MeterRecord:
    level: HierarchyLevel
    account_id: str
    label: str = ""
    zone: str = ""
    usage_type: str = ""
    parent_meter_label: str = ""
    readings: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self):
        # read-only copy, detached from the caller's dict
        object.__setattr__(self, "readings", MappingProxyType(dict(self.readings or {})))

    def reading(self, period: Period) -> float:
        """Volume at the period; absent or unreadable values count as 0."""
        value = self.readings.get(period.key)
        if value is None:
            return 0.0
        try:
            value = float(value)
        except (TypeError, ValueError):
            return 0.0
        return value if math.isfinite(value) else 0.0

    def to_dict(self) -> Dict:
        return {
            "level": self.level.value,
            "accountId": self.account_id,
            "label": self.label,
            "zone": self.zone,
            "usageType": self.usage_type,
            "parentMeterLabel": self.parent_meter_label,
            "readings": dict(self.readings),
        }


@dataclass(frozen=True)
class ZoneMetric:
    l2_bulk: float = 0.0
    l3_sum: float = 0.0
    loss: float = 0.0
    loss_percentage: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "l2Bulk": self.l2_bulk,
            "l3Sum": self.l3_sum,
            "loss": self.loss,
            "lossPercentage": self.loss_percentage,
        }


@dataclass(frozen=True)
class PeriodMetrics:
    period: Period
    total_l1_supply: float
    total_l2_volume: float
    total_l3_volume: float
    stage1_loss: float
    stage2_loss: float
    total_loss: float
    stage1_loss_percentage: float
    stage2_loss_percentage: float
    total_loss_percentage: float
    consumption_by_type: Mapping[str, float]
    zone_metrics: Mapping[str, ZoneMetric]

    def __post_init__(self):
        object.__setattr__(self, "consumption_by_type", MappingProxyType(dict(self.consumption_by_type)))
        object.__setattr__(self, "zone_metrics", MappingProxyType(dict(self.zone_metrics)))

    def to_dict(self) -> Dict:
        return {
            "period": self.period.key,
            "totalL1Supply": self.total_l1_supply,
            "totalL2Volume": self.total_l2_volume,
            "totalL3Volume": self.total_l3_volume,
            "stage1Loss": self.stage1_loss,
            "stage2Loss": self.stage2_loss,
            "totalLoss": self.total_loss,
            "stage1LossPercentage": self.stage1_loss_percentage,
            "stage2LossPercentage": self.stage2_loss_percentage,
            "totalLossPercentage": self.total_loss_percentage,
            "consumptionByType": dict(self.consumption_by_type),
            "zoneMetrics": {z: m.to_dict() for z, m in self.zone_metrics.items()},
        }


@dataclass(frozen=True)
class TrendPoint:
    period: str
    stage1_loss: float
    stage2_loss: float
    total_loss: float
    stage1_loss_pct: float
    stage2_loss_pct: float
    total_loss_pct: float

    @classmethod
    def from_metrics(cls, metrics: PeriodMetrics) -> "TrendPoint":
        return cls(
            period=metrics.period.key,
            stage1_loss=metrics.stage1_loss,
            stage2_loss=metrics.stage2_loss,
            total_loss=metrics.total_loss,
            stage1_loss_pct=metrics.stage1_loss_percentage,
            stage2_loss_pct=metrics.stage2_loss_percentage,
            total_loss_pct=metrics.total_loss_percentage,
        )

    def to_dict(self) -> Dict:
        return {
            "period": self.period,
            "stage1Loss": self.stage1_loss,
            "stage2Loss": self.stage2_loss,
            "totalLoss": self.total_loss,
            "stage1LossPct": self.stage1_loss_pct,
            "stage2LossPct": self.stage2_loss_pct,
            "totalLossPct": self.total_loss_pct,
        }
