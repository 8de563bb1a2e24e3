"""Tests for window consolidation and period comparison."""

from datetime import date

import pytest

from igsync.services.comparison import (
    ComparisonEngine,
    ComparisonResult,
    DateWindow,
    InvalidWindowError,
    aggregate,
    coverage,
    previous_window,
)


def row(day, **metrics):
    return {"insight_date": day, **metrics}


class TestDateWindow:
    """Tests for DateWindow."""

    def test_previous_window(self):
        """Test the previous window has the same length and ends the day before."""
        assert previous_window(date(2026, 1, 5), date(2026, 1, 11)) == (
            date(2025, 12, 29),
            date(2026, 1, 4),
        )

    def test_single_day(self):
        window = DateWindow(date(2026, 1, 11), date(2026, 1, 11))

        assert window.days == 1
        assert window.previous() == DateWindow(date(2026, 1, 10), date(2026, 1, 10))

    def test_reversed_window_rejected(self):
        """Test since after until is invalid."""
        with pytest.raises(InvalidWindowError):
            DateWindow(date(2026, 1, 12), date(2026, 1, 11))

    def test_dates(self):
        window = DateWindow(date(2025, 12, 30), date(2026, 1, 2))

        assert window.dates() == [
            date(2025, 12, 30),
            date(2025, 12, 31),
            date(2026, 1, 1),
            date(2026, 1, 2),
        ]


class TestComparisonResult:
    """Tests for change and changePercent."""

    def test_zero_previous(self):
        """Test a zero baseline reports 0 percent rather than dividing by zero."""
        result = ComparisonResult(current=150, previous=0)

        assert result.to_dict() == {
            "current": 150,
            "previous": 0,
            "change": 150,
            "changePercent": 0,
        }

    def test_doubling(self):
        """Test a doubled value reports 100 percent."""
        assert ComparisonResult(current=200, previous=100).change_percent == 100

    def test_rounding(self):
        """Test percentages are rounded to two decimals."""
        assert ComparisonResult(current=2, previous=3).change_percent == -33.33


class TestAggregation:
    """Tests for sums and coverage."""

    def test_nulls_count_as_zero(self):
        """Test missing and null values contribute nothing to a sum."""
        rows = [
            row("2026-01-05", reach=100, impressions=None),
            row("2026-01-06", reach=None),
            row("2026-01-07", reach=50, impressions=30),
        ]

        totals = aggregate(rows, ["reach", "impressions", "profile_views"])

        assert totals == {"reach": 150, "impressions": 30, "profile_views": 0}

    def test_coverage(self):
        """Test days with any tracked metric are covered."""
        window = DateWindow(date(2026, 1, 5), date(2026, 1, 8))
        rows = [
            row("2026-01-05", reach=100),
            row("2026-01-06", reach=None, follower_count=1200),
            row("2026-01-07", website_clicks=0),
        ]

        result = coverage(rows, window)

        assert result.covered_days == 2
        assert result.expected_days == 4
        assert result.ratio == 0.5


class TestComparisonEngine:
    """Tests for ComparisonEngine.build."""

    def test_build(self):
        """Test sums, deltas and the views alias over both windows."""
        window = DateWindow(date(2026, 1, 5), date(2026, 1, 11))
        current = [row(f"2026-01-{d:02d}", reach=100, impressions=300) for d in range(5, 12)]
        previous = [row("2026-01-01", reach=350, impressions=2100)]

        consolidation = ComparisonEngine().build(window, current, previous)
        metrics = consolidation.comparison_metrics()

        assert consolidation.previous_window == DateWindow(date(2025, 12, 29), date(2026, 1, 4))
        assert metrics["reach"] == {
            "current": 700,
            "previous": 350,
            "change": 350,
            "changePercent": 100,
        }
        assert metrics["views"] == metrics["impressions"]
        assert metrics["impressions"]["changePercent"] == 0
        assert "follower_count" not in metrics

        consolidated = consolidation.consolidated()
        assert consolidated["consolidated_reach"] == 700
        assert consolidated["consolidated_impressions"] == 2100

        assert consolidation.coverage_dict() == {
            "current": 1.0,
            "previous": pytest.approx(0.1429),
            "covered_days": 7,
            "expected_days": 7,
        }

    def test_empty_windows(self):
        """Test empty windows compare as zeros."""
        window = DateWindow(date(2026, 1, 5), date(2026, 1, 11))

        consolidation = ComparisonEngine().build(window, [], [])

        assert consolidation.comparison_metrics()["reach"]["changePercent"] == 0
        assert consolidation.coverage_dict()["current"] == 0.0
