"""Tests for dashboard requests: caching, comparison and error mapping."""

from datetime import date, datetime, timedelta, timezone

import pytest

from igsync.repositories import AccountRepository, SyncMetadataRepository
from igsync.services.comparison import InvalidWindowError
from igsync.services.dashboard_service import (
    NOT_CACHED_MESSAGE,
    SYNC_RUNNING_MESSAGE,
    DashboardService,
    error_response,
    rank_posts,
)
from igsync.services.instagram.credentials import TokenFamily, WrongTokenFamilyError
from igsync.services.sync_service import (
    AccountNotFoundError,
    SyncInProgressError,
    SyncService,
)

from tests.fakes import NOW, fail_path

SINCE = date(2026, 1, 5)
UNTIL = date(2026, 1, 11)


def make_dashboard(session, settings, client_factory, now=NOW):
    sync = SyncService(session, settings, client_factory=client_factory, clock=lambda: now)
    return DashboardService(session, settings, sync_service=sync)


@pytest.fixture
def dashboard(session, settings, client_factory):
    return make_dashboard(session, settings, client_factory)


class TestDashboardEndToEnd:
    """A fresh account requested for one week, then requested again."""

    @pytest.mark.asyncio
    async def test_first_request_syncs(self, dashboard, account):
        """Test the first request fetches live data and compares against an empty week."""
        status, body = await dashboard.handle(account.id, since=SINCE, until=UNTIL)

        assert status == 200
        assert body["success"] is True
        assert body["from_cache"] is False
        assert body["since"] == "2026-01-05"
        assert body["until"] == "2026-01-11"
        assert body["previous_since"] == "2025-12-29"
        assert body["previous_until"] == "2026-01-04"
        assert len(body["daily_insights"]) == 7
        assert body["previous_daily_insights"] == []

        reach = body["comparison_metrics"]["reach"]
        assert reach["current"] == sum(range(100, 107))
        assert reach["previous"] == 0
        assert reach["changePercent"] == 0
        assert body["comparison_metrics"]["views"] == body["comparison_metrics"]["impressions"]
        assert body["consolidated_reach"] == sum(range(100, 107))
        assert body["coverage"]["current"] == 1.0

        assert body["profile"]["followers_count"] == 1200
        assert body["snapshot_date"] == "2026-01-11"
        assert body["token_type"] == "instagram"
        assert body["demographics"]["audience_country"] == {"BR": 700, "US": 90}
        assert body["online_followers"] == {"0": 12, "20": 85}
        assert body["request_id"]

    @pytest.mark.asyncio
    async def test_posts_and_rankings(self, dashboard, account):
        """Test posts in the window with their top lists."""
        _, body = await dashboard.handle(account.id, since=SINCE, until=UNTIL)

        assert body["total_posts"] == 3
        assert [post["id"] for post in body["posts"]] == ["m-image", "m-reel", "m-carousel"]
        assert body["media"] == body["posts"]
        assert [post["id"] for post in body["top_posts_by_score"]] == ["m-image", "m-carousel"]
        assert [post["id"] for post in body["top_reels_by_views"]] == ["m-reel"]
        assert body["total_reach"] == 1800
        assert body["media_type_distribution"] == {"IMAGE": 1, "VIDEO": 1, "CAROUSEL_ALBUM": 1}

    @pytest.mark.asyncio
    async def test_second_request_served_from_cache(self, dashboard, account, fake_graph):
        """Test a repeat request within the TTL makes no upstream calls."""
        await dashboard.handle(account.id, since=SINCE, until=UNTIL)
        calls = len(fake_graph.requests)

        status, body = await dashboard.handle(account.id, since=SINCE, until=UNTIL)

        assert status == 200
        assert len(fake_graph.requests) == calls
        assert body["from_cache"] is True
        assert body["cache_age_hours"] == 0.0
        assert len(body["daily_insights"]) == 7
        assert body["total_posts"] == 3
        assert body["demographics"] is None
        assert body["stories"] == []
        assert NOT_CACHED_MESSAGE in body["messages"]

    @pytest.mark.asyncio
    async def test_force_refreshes(self, dashboard, account, fake_graph):
        """Test force bypasses a fresh cache for today."""
        await dashboard.handle(account.id, since=SINCE, until=UNTIL)
        calls = len(fake_graph.requests)

        _, body = await dashboard.handle(account.id, since=SINCE, until=UNTIL, force=True)

        assert body["from_cache"] is False
        assert len(fake_graph.requests) > calls

    @pytest.mark.asyncio
    async def test_stale_cache_refetched(self, session, settings, client_factory, account, fake_graph):
        """Test a cache older than the TTL is refreshed."""
        await make_dashboard(session, settings, client_factory).handle(
            account.id, since=SINCE, until=UNTIL
        )
        calls = len(fake_graph.requests)

        later = make_dashboard(session, settings, client_factory, now=NOW + timedelta(minutes=61))
        _, body = await later.handle(account.id, since=SINCE, until=UNTIL)

        assert body["from_cache"] is False
        assert len(fake_graph.requests) > calls

    @pytest.mark.asyncio
    async def test_past_window_is_cached_forever(self, session, settings, client_factory, account, fake_graph):
        """Test a fully elapsed window is served from its daily rows."""
        first = make_dashboard(session, settings, client_factory)
        _, body = await first.handle(account.id, since=date(2025, 12, 1), until=date(2025, 12, 7))
        assert body["from_cache"] is False
        calls = len(fake_graph.requests)

        much_later = make_dashboard(session, settings, client_factory, now=NOW + timedelta(days=20))
        _, body = await much_later.handle(
            account.id, since=date(2025, 12, 1), until=date(2025, 12, 7)
        )

        assert body["from_cache"] is True
        assert len(fake_graph.requests) == calls
        assert len(body["daily_insights"]) == 7

    @pytest.mark.asyncio
    async def test_force_refetches_past_window(self, session, settings, client_factory, account, fake_graph):
        """Test force re-syncs a fully elapsed window that is already cached."""
        window = {"since": date(2025, 12, 1), "until": date(2025, 12, 7)}
        await make_dashboard(session, settings, client_factory).handle(account.id, **window)
        calls = len(fake_graph.requests)

        much_later = make_dashboard(session, settings, client_factory, now=NOW + timedelta(days=20))
        _, body = await much_later.handle(account.id, force=True, **window)

        assert body["from_cache"] is False
        assert len(fake_graph.requests) > calls
        assert len(body["daily_insights"]) == 7

    @pytest.mark.asyncio
    async def test_today_cached_without_profile_or_daily_rows(self, dashboard, account, fake_graph):
        """Test a sync that stored only posts still counts as today's cache."""
        fake_graph.interceptors.append(fail_path(f"/{account.business_id}"))
        fake_graph.interceptors.append(fail_path(f"/{account.business_id}/insights"))

        _, body = await dashboard.handle(account.id, since=SINCE, until=UNTIL)
        assert body["from_cache"] is False
        assert body["profile"] is None
        assert body["daily_insights"] == []
        calls = len(fake_graph.requests)

        _, body = await dashboard.handle(account.id, since=SINCE, until=UNTIL)

        assert body["from_cache"] is True
        assert len(fake_graph.requests) == calls
        assert body["total_posts"] == 3

    @pytest.mark.asyncio
    async def test_default_window(self, dashboard, account):
        """Test a request without dates covers the last 30 days."""
        _, body = await dashboard.handle(account.id)

        assert body["until"] == "2026-01-11"
        assert body["since"] == "2025-12-13"
        assert len(body["daily_insights"]) == 30


class TestDashboardErrors:
    """Tests for fatal error responses."""

    @pytest.mark.asyncio
    async def test_unknown_account(self, dashboard):
        """Test a missing account maps to 404."""
        status, body = await dashboard.handle(4242)

        assert status == 404
        assert body["success"] is False
        assert "4242" in body["error"]

    @pytest.mark.asyncio
    async def test_wrong_token_family(self, dashboard, account, fake_graph):
        """Test the wrong dashboard for the token family maps to 400."""
        status, body = await dashboard.handle(account.id, expected_family=TokenFamily.FACEBOOK)

        assert status == 400
        assert body["token_type"] == "instagram"
        assert body["use_other_dashboard"] is True
        assert fake_graph.requests == []

    @pytest.mark.asyncio
    async def test_invalid_window(self, dashboard, account):
        """Test since after until maps to 400."""
        status, body = await dashboard.handle(
            account.id, since=date(2026, 1, 12), until=date(2026, 1, 11)
        )

        assert status == 400
        assert body["success"] is False

    @pytest.mark.asyncio
    async def test_undecryptable_token(self, dashboard, session, sample_account_data):
        """Test a credential that cannot be decrypted maps to 500."""
        data = dict(sample_account_data, access_token="ENCRYPTED:AAAAAAAAAAAAAAAAAAAAAAAAAAAA")
        account = AccountRepository(session).create(**data)
        session.commit()

        status, body = await dashboard.handle(account.id)

        assert status == 500
        assert "decryption" in body["error"].lower()

    @pytest.mark.asyncio
    async def test_sync_running_without_cache(self, dashboard, session, account):
        """Test a concurrent sync with nothing cached maps to 409."""
        SyncMetadataRepository(session).try_acquire(account.id, NOW, timedelta(minutes=10))

        status, body = await dashboard.handle(account.id, since=SINCE, until=UNTIL)

        assert status == 409

    @pytest.mark.asyncio
    async def test_sync_running_with_cache(self, dashboard, session, account):
        """Test a concurrent sync falls back to cached data."""
        await dashboard.handle(account.id, since=SINCE, until=UNTIL)
        SyncMetadataRepository(session).try_acquire(account.id, NOW, timedelta(minutes=10))

        status, body = await dashboard.handle(account.id, since=SINCE, until=UNTIL, force=True)

        assert status == 200
        assert body["from_cache"] is True
        assert SYNC_RUNNING_MESSAGE in body["messages"]
        assert len(body["daily_insights"]) == 7


class TestErrorResponse:
    """Tests for error_response."""

    def test_status_codes(self):
        """Test each fatal error maps to its status."""
        assert error_response(AccountNotFoundError(1))[0] == 404
        assert error_response(InvalidWindowError("bad"))[0] == 400
        assert error_response(SyncInProgressError(1))[0] == 409
        status, body = error_response(
            WrongTokenFamilyError(TokenFamily.INSTAGRAM, TokenFamily.FACEBOOK)
        )
        assert status == 400
        assert body["token_type"] == "facebook"

    def test_unexpected_error_is_opaque(self):
        """Test unknown failures do not leak details."""
        status, body = error_response(RuntimeError("database password is hunter2"))

        assert status == 500
        assert body == {"success": False, "error": "Internal error"}


class TestRankPosts:
    """Tests for rank_posts."""

    def test_separates_reels(self):
        """Test reels and other media are ranked separately."""
        posts = [
            {"id": "a", "media_type": "IMAGE", "computed": {"score": 5, "reach": 50}},
            {"id": "b", "media_type": "IMAGE", "computed": {"score": 9, "reach": None}},
            {
                "id": "r",
                "media_type": "VIDEO",
                "media_product_type": "REELS",
                "computed": {"score": 1, "views": 500, "reach": 300},
            },
        ]

        ranked = rank_posts(posts)

        assert [p["id"] for p in ranked["top_posts_by_score"]] == ["b", "a"]
        assert [p["id"] for p in ranked["top_posts_by_reach"]] == ["a", "b"]
        assert [p["id"] for p in ranked["top_reels_by_score"]] == ["r"]
        assert ranked["total_views"] == 500
        assert ranked["total_reach"] == 350
