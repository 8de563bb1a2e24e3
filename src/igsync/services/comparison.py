"""Window consolidation and period-over-period comparison."""

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Iterable, Mapping, Optional

# Daily flows that can be summed over a window. follower_count is a level
# and is reported per day only.
TRACKED_METRICS = (
    "reach",
    "impressions",
    "profile_views",
    "accounts_engaged",
    "website_clicks",
    "email_contacts",
    "phone_call_clicks",
    "text_message_clicks",
    "get_directions_clicks",
)


class InvalidWindowError(ValueError):
    """The requested date window is empty or reversed."""

    pass


@dataclass(frozen=True)
class DateWindow:
    """Inclusive range of calendar days."""

    since: date
    until: date

    def __post_init__(self) -> None:
        if self.since > self.until:
            raise InvalidWindowError(
                f"'since' ({self.since.isoformat()}) is after 'until' ({self.until.isoformat()})"
            )

    @property
    def days(self) -> int:
        return (self.until - self.since).days + 1

    def previous(self) -> "DateWindow":
        """The equal-length window ending the day before ``since``."""
        until = self.since - timedelta(days=1)
        return DateWindow(until - timedelta(days=self.days - 1), until)

    def dates(self) -> list[date]:
        return [self.since + timedelta(days=offset) for offset in range(self.days)]

    def to_dict(self) -> dict[str, str]:
        return {"since": self.since.isoformat(), "until": self.until.isoformat()}


def previous_window(since: date, until: date) -> tuple[date, date]:
    previous = DateWindow(since, until).previous()
    return previous.since, previous.until


def aggregate(rows: Iterable[Mapping[str, Any]], metrics: Iterable[str] = TRACKED_METRICS) -> dict[str, int]:
    """Sum each metric over the rows; a missing or null value contributes zero."""
    rows = list(rows)
    totals = {}
    for metric in metrics:
        totals[metric] = sum(row.get(metric) or 0 for row in rows)
    return totals


@dataclass(frozen=True)
class ComparisonResult:
    current: float
    previous: float

    @property
    def change(self) -> float:
        return self.current - self.previous

    @property
    def change_percent(self) -> float:
        if self.previous == 0:
            return 0
        return round(self.change / self.previous * 100, 2)

    def to_dict(self) -> dict[str, float]:
        return {
            "current": self.current,
            "previous": self.previous,
            "change": self.change,
            "changePercent": self.change_percent,
        }


def compare(current: Mapping[str, float], previous: Mapping[str, float]) -> dict[str, ComparisonResult]:
    return {
        metric: ComparisonResult(current.get(metric, 0), previous.get(metric, 0))
        for metric in current
    }


@dataclass
class Coverage:
    covered_days: int
    expected_days: int

    @property
    def ratio(self) -> float:
        if not self.expected_days:
            return 0.0
        return round(self.covered_days / self.expected_days, 4)

    def to_dict(self) -> dict[str, Any]:
        return {
            "covered_days": self.covered_days,
            "expected_days": self.expected_days,
            "ratio": self.ratio,
        }


def coverage(rows: Iterable[Mapping[str, Any]], window: DateWindow) -> Coverage:
    """Days in the window with at least one tracked metric present."""
    covered = {
        row["insight_date"]
        for row in rows
        if any(row.get(metric) is not None for metric in TRACKED_METRICS)
    }
    return Coverage(len(covered), window.days)


@dataclass
class Consolidation:
    """Both windows, their daily rows, sums, deltas and coverage."""

    window: DateWindow
    previous_window: DateWindow
    current_rows: list[dict[str, Any]] = field(default_factory=list)
    previous_rows: list[dict[str, Any]] = field(default_factory=list)
    current_totals: dict[str, int] = field(default_factory=dict)
    previous_totals: dict[str, int] = field(default_factory=dict)
    comparisons: dict[str, ComparisonResult] = field(default_factory=dict)
    current_coverage: Optional[Coverage] = None
    previous_coverage: Optional[Coverage] = None

    def comparison_metrics(self) -> dict[str, dict[str, float]]:
        metrics = {name: result.to_dict() for name, result in self.comparisons.items()}
        if "impressions" in metrics:
            metrics["views"] = metrics["impressions"]
        return metrics

    def consolidated(self) -> dict[str, int]:
        return {f"consolidated_{metric}": value for metric, value in self.current_totals.items()}

    def coverage_dict(self) -> dict[str, Any]:
        return {
            "current": self.current_coverage.ratio if self.current_coverage else 0.0,
            "previous": self.previous_coverage.ratio if self.previous_coverage else 0.0,
            "covered_days": self.current_coverage.covered_days if self.current_coverage else 0,
            "expected_days": self.window.days,
        }


class ComparisonEngine:
    """Builds consolidations from daily insight rows."""

    def __init__(self, metrics: Iterable[str] = TRACKED_METRICS):
        self.metrics = tuple(metrics)

    def build(
        self,
        window: DateWindow,
        current_rows: list[dict[str, Any]],
        previous_rows: list[dict[str, Any]],
    ) -> Consolidation:
        previous = window.previous()
        current_totals = aggregate(current_rows, self.metrics)
        previous_totals = aggregate(previous_rows, self.metrics)
        return Consolidation(
            window=window,
            previous_window=previous,
            current_rows=current_rows,
            previous_rows=previous_rows,
            current_totals=current_totals,
            previous_totals=previous_totals,
            comparisons=compare(current_totals, previous_totals),
            current_coverage=coverage(current_rows, window),
            previous_coverage=coverage(previous_rows, previous),
        )
