"""Sanity ceilings for daily account metrics."""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Mapping

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DroppedValue:
    metric: str
    day: date
    value: float
    ceiling: int


@dataclass
class DailyMetricFilter:
    """Rejects daily values above a per-metric plausible maximum.

    The upstream API has been seen to report a lifetime total under a daily
    label; such values are dropped and logged. Metrics without a ceiling pass.
    """

    ceilings: Mapping[str, int]
    dropped: list[DroppedValue] = field(default_factory=list)

    def accept(self, metric: str, value: float, day: date) -> bool:
        ceiling = self.ceilings.get(metric)
        if ceiling is not None and value > ceiling:
            logger.warning(
                f"Suspicious {metric} value {value} for {day.isoformat()} "
                f"exceeds max {ceiling}, skipping"
            )
            self.dropped.append(DroppedValue(metric, day, value, ceiling))
            return False
        return True
