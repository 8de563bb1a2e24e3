"""Tests for insight payload parsing and derived metrics."""

from datetime import date, datetime, timezone

import pytest

from igsync.services.instagram.insights import (
    IMAGE_METRIC_SETS,
    VIDEO_METRIC_SETS,
    aggregate_stories,
    as_number,
    compute_media_metrics,
    is_reel,
    iter_daily_values,
    media_metric_sets,
    normalize_media_insights,
    normalize_story_insights,
    parse_demographics,
    parse_graph_timestamp,
    parse_insight_values,
    parse_online_followers,
)


class TestParsing:
    """Tests for payload parsers."""

    def test_as_number(self):
        """Test only finite real numbers are accepted."""
        assert as_number(3) == 3
        assert as_number(2.5) == 2.5
        assert as_number(None) is None
        assert as_number("12") is None
        assert as_number(True) is None
        assert as_number(float("nan")) is None

    def test_parse_graph_timestamp(self):
        """Test Graph offsets are normalized to UTC."""
        parsed = parse_graph_timestamp("2026-01-05T08:00:00+0000")
        assert parsed == datetime(2026, 1, 5, 8, 0, tzinfo=timezone.utc)

        shifted = parse_graph_timestamp("2026-01-05T01:00:00-0300")
        assert shifted == datetime(2026, 1, 5, 4, 0, tzinfo=timezone.utc)

        assert parse_graph_timestamp("yesterday") is None
        assert parse_graph_timestamp(None) is None

    def test_parse_insight_values(self):
        """Test values and total_value payloads are both read."""
        payload = {
            "data": [
                {"name": "reach", "values": [{"value": 10}, {"value": 12}]},
                {"name": "views", "total_value": {"value": 40}},
                {"name": "saved", "values": [{"value": "n/a"}]},
            ]
        }

        assert parse_insight_values(payload) == {"reach": 12, "views": 40}

    def test_iter_daily_values(self):
        """Test daily values are keyed by the UTC date of end_time."""
        payload = {
            "data": [
                {
                    "name": "views",
                    "values": [
                        {"value": 300, "end_time": "2026-01-05T08:00:00+0000"},
                        {"value": None, "end_time": "2026-01-06T08:00:00+0000"},
                    ],
                },
                {"name": "reach", "values": [{"value": 90, "end_time": "2026-01-06T08:00:00+0000"}]},
            ]
        }

        assert list(iter_daily_values(payload)) == [
            ("impressions", date(2026, 1, 5), 300),
            ("reach", date(2026, 1, 6), 90),
        ]

    def test_parse_demographics(self):
        """Test breakdown results are flattened."""
        payload = {
            "data": [
                {
                    "name": "follower_demographics",
                    "total_value": {
                        "breakdowns": [
                            {
                                "results": [
                                    {"dimension_values": ["F"], "value": 500},
                                    {"dimension_values": ["M"], "value": 380},
                                    {"dimension_values": ["U"], "value": 0},
                                ]
                            }
                        ]
                    },
                }
            ]
        }

        assert parse_demographics(payload) == {"F": 500, "M": 380}
        assert parse_demographics({"data": []}) == {}

    def test_parse_online_followers(self):
        """Test the hourly map is taken from the latest value."""
        payload = {"data": [{"values": [{"value": {}}, {"value": {"0": 5, "13": 40}}]}]}

        assert parse_online_followers(payload) == {"0": 5, "13": 40}


class TestMediaMetrics:
    """Tests for per-item metric derivation."""

    def test_metric_sets(self):
        """Test carousels have no insights and reels use video metrics."""
        assert media_metric_sets("CAROUSEL_ALBUM") is None
        assert media_metric_sets("VIDEO") is VIDEO_METRIC_SETS
        assert media_metric_sets("IMAGE", "REELS") is VIDEO_METRIC_SETS
        assert media_metric_sets("IMAGE", "FEED") is IMAGE_METRIC_SETS

    def test_is_reel(self):
        assert is_reel({"media_product_type": "REELS"})
        assert not is_reel({"media_product_type": "FEED"})

    def test_normalize_renamed_metrics(self):
        """Test legacy names are folded onto current ones."""
        normalized = normalize_media_insights({"plays": 800, "saves": 3, "engagement": 20})

        assert normalized["views"] == 800
        assert normalized["saved"] == 3
        assert normalized["total_interactions"] == 20

    def test_compute_full_metrics(self):
        """Test engagement, weighted score and rates."""
        media = {"like_count": 40, "comments_count": 5}
        insights = {"reach": 900, "views": 1500, "saved": 10, "shares": 4}

        computed = compute_media_metrics(media, insights, followers_count=1000)

        assert computed["engagement"] == 59
        assert computed["score"] == 40 + 10 + 30 + 16
        assert computed["er"] == pytest.approx(5.9)
        assert computed["reach_rate"] == pytest.approx(90.0)
        assert computed["interactions_per_1000_reach"] == pytest.approx(65.56, abs=0.01)
        assert computed["is_partial"] is False
        assert computed["missing_metrics"] == []

    def test_compute_partial_metrics(self):
        """Test missing insights count as zero but are flagged."""
        media = {"like_count": 60, "comments_count": 8}

        computed = compute_media_metrics(media, {}, followers_count=None)

        assert computed["engagement"] == 68
        assert computed["er"] is None
        assert computed["has_insights"] is False
        assert computed["is_partial"] is True
        assert computed["missing_metrics"] == ["saves", "shares", "reach", "views"]


class TestStories:
    """Tests for story metrics."""

    def test_normalize_story_insights(self):
        """Test completion rate from views and exits."""
        insights = normalize_story_insights({"impressions": 200, "exits": 50, "reach": 150})

        assert insights["views"] == 200
        assert insights["completion_rate"] == 75

    def test_aggregate_stories(self):
        """Test totals across stories."""
        stories = [
            {"insights": {"views": 100, "reach": 80, "exits": 10, "replies": 1}},
            {"insights": {"views": 300, "reach": 200, "exits": 30, "taps_forward": 12}},
        ]

        totals = aggregate_stories(stories)

        assert totals["total_stories"] == 2
        assert totals["total_views"] == 400
        assert totals["total_impressions"] == 400
        assert totals["total_reach"] == 280
        assert totals["total_replies"] == 1
        assert totals["total_taps_forward"] == 12
        assert totals["avg_completion_rate"] == 90

    def test_aggregate_empty(self):
        """Test no stories yields zeros."""
        totals = aggregate_stories([])

        assert totals["total_stories"] == 0
        assert totals["avg_completion_rate"] == 0
