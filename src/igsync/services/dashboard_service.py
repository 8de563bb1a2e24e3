"""Dashboard requests: freshness gate, sync, and the JSON response contract."""

import logging
import time
import uuid
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any, Optional

from sqlalchemy.orm import Session

from igsync.config import Settings, get_settings
from igsync.models.base import as_utc
from igsync.repositories import (
    InsightsRepository,
    PostRepository,
    SnapshotRepository,
    SyncMetadataRepository,
)
from igsync.services.comparison import ComparisonEngine, DateWindow, InvalidWindowError
from igsync.services.freshness import CacheDecision, FreshnessPolicy
from igsync.services.instagram.credentials import (
    CredentialError,
    TokenFamily,
    WrongTokenFamilyError,
)
from igsync.services.instagram.insights import aggregate_stories, is_reel
from igsync.services.sync_service import (
    AccountNotFoundError,
    SyncInProgressError,
    SyncReport,
    SyncService,
)

logger = logging.getLogger(__name__)

TOP_POSTS_LIMIT = 20

NOT_CACHED_MESSAGE = (
    "Stories, demographics and online followers are not cached; force a refresh to load them."
)
SYNC_RUNNING_MESSAGE = "A sync is already running for this account; showing cached data."

FATAL_ERRORS = (
    AccountNotFoundError,
    InvalidWindowError,
    SyncInProgressError,
    CredentialError,
)


def error_response(exc: Exception) -> tuple[int, dict[str, Any]]:
    """Map a fatal error to an HTTP-style status and a ``success: false`` body."""
    body: dict[str, Any] = {"success": False, "error": str(exc)}
    if isinstance(exc, AccountNotFoundError):
        return 404, body
    if isinstance(exc, WrongTokenFamilyError):
        body["token_type"] = exc.actual.value
        body["use_other_dashboard"] = True
        return 400, body
    if isinstance(exc, InvalidWindowError):
        return 400, body
    if isinstance(exc, SyncInProgressError):
        return 409, body
    if isinstance(exc, CredentialError):
        return 500, body
    logger.exception("Unexpected dashboard failure")
    return 500, {"success": False, "error": "Internal error"}


def _score(post: dict[str, Any], key: str) -> float:
    value = (post.get("computed") or {}).get(key)
    return value if value is not None else -1


def rank_posts(posts: list[dict[str, Any]]) -> dict[str, Any]:
    """Top lists and totals over media items."""
    reels = [post for post in posts if is_reel(post)]
    others = [post for post in posts if not is_reel(post)]
    distribution: dict[str, int] = {}
    for post in posts:
        media_type = post.get("media_type") or "UNKNOWN"
        distribution[media_type] = distribution.get(media_type, 0) + 1

    def top(items: list[dict[str, Any]], key: str) -> list[dict[str, Any]]:
        return sorted(items, key=lambda post: _score(post, key), reverse=True)[:TOP_POSTS_LIMIT]

    return {
        "total_views": sum((post.get("computed") or {}).get("views") or 0 for post in posts),
        "total_reach": sum((post.get("computed") or {}).get("reach") or 0 for post in posts),
        "media_type_distribution": distribution,
        "top_posts_by_score": top(others, "score"),
        "top_posts_by_reach": top(others, "reach"),
        "top_reels_by_views": top(reels, "views"),
        "top_reels_by_score": top(reels, "score"),
    }


class DashboardService:
    """Serves dashboard data from cache or a fresh sync."""

    def __init__(
        self,
        session: Session,
        settings: Optional[Settings] = None,
        sync_service: Optional[SyncService] = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.sync = sync_service or SyncService(session, self.settings)
        self.policy = FreshnessPolicy.from_minutes(self.settings.cache_ttl_minutes)
        self.engine = ComparisonEngine()

        self.snapshots = SnapshotRepository(session)
        self.insights = InsightsRepository(session)
        self.posts = PostRepository(session)
        self.sync_metadata = SyncMetadataRepository(session)

    def resolve_window(
        self,
        today: date,
        since: Optional[date] = None,
        until: Optional[date] = None,
    ) -> DateWindow:
        """Fill in missing bounds: ``until`` defaults to today, ``since`` to a default-length window."""
        until = until or today
        since = since or until - timedelta(days=self.settings.default_window_days - 1)
        return DateWindow(since, until)

    def cached_at(
        self, account_id: int, day: date, tz: tzinfo = timezone.utc
    ) -> Optional[datetime]:
        """When data for ``day`` was last stored, if at all.

        The profile snapshot of that day is preferred, then the daily insight
        row. A full sync that ran on ``day`` (in ``tz``) also counts, so a
        failing profile fetch does not force a resync on every request.
        """
        snapshot = self.snapshots.get_for_date(account_id, day)
        if snapshot is not None:
            return as_utc(snapshot.fetched_at)
        rows = self.insights.get_range(account_id, day, day)
        if rows:
            return as_utc(rows[0].updated_at)
        meta = self.sync_metadata.get_for_account(account_id)
        last_sync = as_utc(meta.last_posts_sync) if meta is not None else None
        if last_sync is not None and last_sync.astimezone(tz).date() == day:
            return last_sync
        return None

    async def get_dashboard(
        self,
        account_id: int,
        since: Optional[date] = None,
        until: Optional[date] = None,
        force: bool = False,
        expected_family: Optional[TokenFamily] = None,
    ) -> dict[str, Any]:
        """Build the dashboard response, syncing first when the cache is stale.

        Raises:
            AccountNotFoundError, CredentialError, InvalidWindowError: fatal
            SyncInProgressError: another sync is running and nothing is cached
        """
        started = time.monotonic()
        request_id = str(uuid.uuid4())

        account = self.sync.load_account(account_id)
        credential = self.sync.resolve(account)
        credential.require_family(expected_family)

        now = self.sync.clock()
        today = self.sync.account_today(account, now)
        window = self.resolve_window(today, since, until)

        cached_at = self.cached_at(account.id, window.until, self.sync.account_timezone(account))
        decision = self.policy.decide(window.until, today, cached_at, now, force)
        logger.info(
            f"[{request_id}] {account.label} {window.since}..{window.until}: "
            f"{'cache' if decision.serve_cached else 'sync'} ({decision.reason})"
        )

        messages: list[str] = []
        report: Optional[SyncReport] = None
        from_cache = decision.serve_cached
        if not decision.serve_cached:
            try:
                report = await self.sync.sync_account(
                    account.id, window.since, window.until, expected_family
                )
                messages.extend(report.messages)
            except SyncInProgressError:
                if cached_at is None and self.snapshots.get_latest(account.id) is None:
                    raise
                logger.warning(f"[{request_id}] Sync already running for {account.label}")
                messages.append(SYNC_RUNNING_MESSAGE)
                from_cache = True

        response = self._build_response(account.id, window, report, from_cache, decision, messages)
        response.update(
            {
                "request_id": request_id,
                "token_type": credential.family.value,
                "duration_ms": int((time.monotonic() - started) * 1000),
            }
        )
        return response

    def _build_response(
        self,
        account_id: int,
        window: DateWindow,
        report: Optional[SyncReport],
        from_cache: bool,
        decision: CacheDecision,
        messages: list[str],
    ) -> dict[str, Any]:
        snapshot = self.snapshots.get_for_date(account_id, window.until) or self.snapshots.get_latest(
            account_id
        )
        profile = snapshot.to_dict() if snapshot else None
        if report is not None and report.profile:
            profile = {**report.profile, "snapshot_date": snapshot.snapshot_date.isoformat() if snapshot else None}

        posts = [
            post.to_dict()
            for post in self.posts.get_in_range(
                account_id, window.since, window.until, limit=self.settings.max_posts
            )
        ]

        previous = window.previous()
        current_rows = [row.to_dict() for row in self.insights.get_range(account_id, window.since, window.until)]
        previous_rows = [row.to_dict() for row in self.insights.get_range(account_id, previous.since, previous.until)]
        consolidation = self.engine.build(window, current_rows, previous_rows)

        if from_cache:
            stories: list[dict[str, Any]] = []
            stories_aggregate = aggregate_stories([])
            demographics = None
            online_followers = None
            messages.append(NOT_CACHED_MESSAGE)
        else:
            stories = report.stories
            stories_aggregate = report.stories_aggregate
            demographics = report.demographics
            online_followers = report.online_followers

        response: dict[str, Any] = {
            "success": True,
            "from_cache": from_cache,
            "cache_age_hours": decision.age_hours if from_cache else 0.0,
            "snapshot_date": snapshot.snapshot_date.isoformat() if snapshot else None,
            "since": window.since.isoformat(),
            "until": window.until.isoformat(),
            "previous_since": previous.since.isoformat(),
            "previous_until": previous.until.isoformat(),
            "profile": profile,
            "posts": posts,
            "media": posts,
            "total_posts": len(posts),
            "stories": stories,
            "stories_aggregate": stories_aggregate,
            "demographics": demographics,
            "online_followers": online_followers,
            "daily_insights": consolidation.current_rows,
            "previous_daily_insights": consolidation.previous_rows,
            "comparison_metrics": consolidation.comparison_metrics(),
            "coverage": consolidation.coverage_dict(),
            "messages": messages,
        }
        response.update(consolidation.consolidated())
        response.update(rank_posts(posts))
        return response

    async def handle(self, account_id: int, **kwargs: Any) -> tuple[int, dict[str, Any]]:
        """``get_dashboard`` with fatal errors mapped to a status and error body."""
        try:
            return 200, await self.get_dashboard(account_id, **kwargs)
        except FATAL_ERRORS as e:
            logger.error(f"Dashboard request for account {account_id} failed: {e}")
            return error_response(e)
