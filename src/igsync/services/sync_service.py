"""Sync orchestration: fetch everything for an account and persist it."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from igsync.config import Settings, get_settings
from igsync.models.account import ConnectedAccount
from igsync.models.insights import DAILY_METRIC_COLUMNS
from igsync.repositories import (
    AccountRepository,
    InsightsRepository,
    PostRepository,
    SnapshotRepository,
    SyncMetadataRepository,
)
from igsync.services.instagram.client import (
    FETCH_ERRORS,
    GraphClient,
    capture,
    plan_attempts,
)
from igsync.services.instagram.credentials import (
    CredentialError,
    ResolvedCredential,
    TokenFamily,
    resolve_credential,
)
from igsync.services.instagram.insights import (
    DAILY_METRIC_GROUPS,
    DEMOGRAPHIC_BREAKDOWNS,
    DEMOGRAPHIC_METRICS,
    MEDIA_FIELDS,
    PROFILE_FIELDS,
    PROFILE_SAFE_FIELDS,
    STORY_FIELDS,
    STORY_METRIC_SETS,
    aggregate_stories,
    as_number,
    compute_media_metrics,
    iter_daily_values,
    media_metric_sets,
    normalize_media_insights,
    normalize_story_insights,
    parse_demographics,
    parse_graph_timestamp,
    parse_insight_values,
    parse_online_followers,
)
from igsync.services.validation import DailyMetricFilter, DroppedValue

logger = logging.getLogger(__name__)

DAILY_DAYS_BACK_DEFAULT = 2
DAILY_DAYS_BACK_MAX = 30

DEMOGRAPHICS_MESSAGE = "Demographics require 100+ followers and may take up to 48h to appear."
NO_STORIES_MESSAGE = "No active stories in the last 24 hours."


class AccountNotFoundError(Exception):
    """The requested account does not exist or is inactive."""

    def __init__(self, account_id: Any):
        super().__init__(f"Account {account_id} not found")
        self.account_id = account_id


class SyncInProgressError(Exception):
    """Another invocation holds a live sync guard for the account."""

    def __init__(self, account_id: int):
        super().__init__(f"A sync is already running for account {account_id}")
        self.account_id = account_id


@dataclass
class SyncReport:
    """What one sync fetched, stored and could not fetch."""

    account_id: int
    since: date
    until: date
    started_at: datetime
    finished_at: Optional[datetime] = None
    profile: Optional[dict[str, Any]] = None
    posts_synced: int = 0
    insight_days: int = 0
    stories: list[dict[str, Any]] = field(default_factory=list)
    stories_aggregate: dict[str, Any] = field(default_factory=lambda: aggregate_stories([]))
    demographics: Optional[dict[str, Any]] = None
    online_followers: Optional[dict[str, Any]] = None
    dropped_values: list[DroppedValue] = field(default_factory=list)
    messages: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.errors

    def degrade(self, category: str, message: str) -> None:
        """Record a category that could not be fetched."""
        self.errors[category] = message
        self.add_message(message)

    def add_message(self, message: str) -> None:
        if message not in self.messages:
            self.messages.append(message)

    def error_summary(self) -> Optional[str]:
        if not self.errors:
            return None
        return "; ".join(f"{category}: {error}" for category, error in self.errors.items())


@dataclass
class DailySyncResult:
    account: str
    success: bool
    days: int = 0
    error: Optional[str] = None


@dataclass
class DailySyncSummary:
    days_back: int
    results: list[DailySyncResult] = field(default_factory=list)

    @property
    def accounts_synced(self) -> int:
        return sum(1 for result in self.results if result.success)

    @property
    def total_days(self) -> int:
        return sum(result.days for result in self.results)


def date_chunks(since: date, until: date, max_days: int) -> list[tuple[date, date]]:
    """Split an inclusive range into consecutive chunks of at most ``max_days``."""
    chunks = []
    start = since
    while start <= until:
        end = min(until, start + timedelta(days=max_days - 1))
        chunks.append((start, end))
        start = end + timedelta(days=1)
    return chunks


def _as_int(value: Any) -> Optional[int]:
    number = as_number(value)
    return int(number) if number is not None else None


class SyncService:
    """Runs full and daily-only syncs for connected accounts."""

    def __init__(
        self,
        session: Session,
        settings: Optional[Settings] = None,
        client_factory: Callable[..., GraphClient] = GraphClient,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.client_factory = client_factory
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self.accounts = AccountRepository(session)
        self.snapshots = SnapshotRepository(session)
        self.insights = InsightsRepository(session)
        self.posts = PostRepository(session)
        self.sync_metadata = SyncMetadataRepository(session)

    @property
    def lease(self) -> timedelta:
        return timedelta(minutes=self.settings.sync_lease_minutes)

    def load_account(self, account_id: int) -> ConnectedAccount:
        account = self.accounts.get(account_id)
        if account is None or not account.is_active:
            raise AccountNotFoundError(account_id)
        return account

    def resolve(self, account: ConnectedAccount) -> ResolvedCredential:
        """Decrypt and classify the account credential; failures are fatal."""
        credential = resolve_credential(account.access_token, self.settings.encryption_key)
        logger.debug(
            f"Resolved credential for {account.label}: {credential.family.value} ({credential.source})"
        )
        return credential

    def account_timezone(self, account: ConnectedAccount) -> ZoneInfo:
        name = account.timezone or self.settings.default_timezone
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown timezone '{name}' for {account.label}, using {self.settings.default_timezone}")
            return ZoneInfo(self.settings.default_timezone)

    def account_today(self, account: ConnectedAccount, now: Optional[datetime] = None) -> date:
        """Calendar day in the account's timezone."""
        now = now or self.clock()
        return now.astimezone(self.account_timezone(account)).date()

    async def sync_account(
        self,
        account_id: int,
        since: date,
        until: date,
        expected_family: Optional[TokenFamily] = None,
    ) -> SyncReport:
        """Fetch profile, media, insights, daily metrics and stories, then persist.

        Raises:
            AccountNotFoundError: Unknown or inactive account
            CredentialError: The stored token cannot be used
            SyncInProgressError: Another sync holds a live guard
        """
        account = self.load_account(account_id)
        credential = self.resolve(account)
        credential.require_family(expected_family)

        now = self.clock()
        if not self.sync_metadata.try_acquire(account.id, now, self.lease):
            raise SyncInProgressError(account.id)

        logger.info(f"Syncing {account.label} for {since.isoformat()}..{until.isoformat()}")
        report = SyncReport(account_id=account.id, since=since, until=until, started_at=now)
        error: Optional[str] = None
        try:
            async with self.client_factory(credential, settings=self.settings) as client:
                await self._run(client, account, credential, report)
        except Exception as e:
            self.session.rollback()
            error = f"{type(e).__name__}: {e}"
            logger.error(f"Sync of {account.label} failed: {error}")
            raise
        finally:
            self.sync_metadata.release(account.id, error or report.error_summary())

        report.finished_at = self.clock()
        logger.info(
            f"Synced {account.label}: {report.posts_synced} posts, "
            f"{report.insight_days} days, {len(report.errors)} degraded categories"
        )
        return report

    async def _run(
        self,
        client: GraphClient,
        account: ConnectedAccount,
        credential: ResolvedCredential,
        report: SyncReport,
    ) -> None:
        now = report.started_at
        today = self.account_today(account, now)

        profile = await capture("Profile", self._fetch_profile(client, account, credential))
        if profile.ok:
            report.profile = profile.value
            self._store_profile(account, today, profile.value, now)
        else:
            report.degrade("profile", profile.error)
        followers = _as_int((report.profile or {}).get("followers_count"))

        await self._sync_media(client, account, credential, followers, report)

        days = await self._fetch_daily(client, account, credential, report.since, report.until, report)
        if days is not None:
            self._apply_follower_backfill(days, followers, report)
            report.insight_days = self.insights.upsert_days(account.id, list(days.values()))
            self.sync_metadata.mark_synced(account.id, "insights", now)
            self.session.commit()

        stories_from = today - timedelta(days=self.settings.stories_window_days - 1)
        if report.until >= stories_from:
            stories = await capture("Stories", self._fetch_stories(client, account, credential))
            if stories.ok:
                report.stories = stories.value
                report.stories_aggregate = aggregate_stories(stories.value)
                if not stories.value:
                    report.add_message(NO_STORIES_MESSAGE)
                self.sync_metadata.mark_synced(account.id, "stories", now)
            else:
                report.degrade("stories", stories.error)

        demographics = await capture("Demographics", self._fetch_demographics(client, account))
        if not demographics.ok:
            report.degrade("demographics", demographics.error)
        elif demographics.value:
            report.demographics = demographics.value
        else:
            report.add_message(DEMOGRAPHICS_MESSAGE)

        online = await capture("Online followers", self._fetch_online_followers(client, account))
        if online.ok:
            report.online_followers = online.value or None
        else:
            report.degrade("online_followers", online.error)

        self._update_stats(account.id)
        self.session.commit()

    async def _fetch_profile(
        self,
        client: GraphClient,
        account: ConnectedAccount,
        credential: ResolvedCredential,
    ) -> dict[str, Any]:
        attempts = plan_attempts(
            credential.family,
            [PROFILE_FIELDS.split(","), PROFILE_SAFE_FIELDS.split(",")],
            param="fields",
        )
        return await client.get_with_fallback(account.business_id, attempts, label="Profile")

    def _store_profile(
        self,
        account: ConnectedAccount,
        today: date,
        profile: dict[str, Any],
        now: datetime,
    ) -> None:
        self.snapshots.upsert_snapshot(account.id, account.business_id, today, profile, now)
        if profile.get("username") and account.username != profile["username"]:
            account.username = profile["username"]
        if profile.get("name") and not account.name:
            account.name = profile["name"]
        self.sync_metadata.mark_synced(account.id, "profile", now)
        self.session.commit()

    async def _sync_media(
        self,
        client: GraphClient,
        account: ConnectedAccount,
        credential: ResolvedCredential,
        followers: Optional[int],
        report: SyncReport,
    ) -> None:
        params = {"fields": MEDIA_FIELDS, "limit": self.settings.media_page_size}
        path = f"{account.business_id}/media"
        page = await client.paginate(path, params, max_items=self.settings.max_posts)
        if page.error is not None and not page.items:
            logger.warning(f"Media list failed on {client.primary_host.value}, trying the other host")
            page = await client.paginate(
                path, params, host=client.primary_host.other, max_items=self.settings.max_posts
            )

        if page.error is not None and not page.items:
            report.degrade("media", f"Media unavailable: {page.error}")
            return
        if page.error is not None:
            report.add_message(f"Media list incomplete after {page.pages} pages: {page.error}")
        if page.truncated:
            report.add_message(f"Media list stopped at the {self.settings.max_media_pages} page limit.")

        items = page.items
        limit = self.settings.max_insights_posts
        if len(items) > limit:
            report.add_message(f"Detailed insights were fetched only for the {limit} most recent posts.")

        rows: list[dict[str, Any]] = []
        failures = 0
        batch_size = self.settings.insights_batch_size
        for start in range(0, len(items), batch_size):
            batch = items[start:start + batch_size]
            results = await asyncio.gather(
                *(
                    self._media_insights(client, credential, media)
                    if start + offset < limit
                    else self._no_insights()
                    for offset, media in enumerate(batch)
                )
            )
            for media, (insights, error) in zip(batch, results):
                if error:
                    failures += 1
                row = self._post_row(account, media, insights, error, followers, report.started_at)
                if row is not None:
                    rows.append(row)

        if failures:
            report.add_message(f"Post insights failed for {failures} posts")
        partial = sum(1 for row in rows if row["computed_raw"]["is_partial"])
        if partial:
            report.add_message(f"{partial} posts have partial or unavailable metrics.")

        report.posts_synced = self.posts.upsert_posts(rows)
        self.sync_metadata.mark_synced(account.id, "posts", report.started_at)
        self.session.commit()

    async def _no_insights(self) -> tuple[dict[str, float], Optional[str]]:
        return {}, None

    async def _media_insights(
        self,
        client: GraphClient,
        credential: ResolvedCredential,
        media: dict[str, Any],
    ) -> tuple[dict[str, float], Optional[str]]:
        """Insights for one media item; carousels have none."""
        metric_sets = media_metric_sets(media.get("media_type"), media.get("media_product_type"))
        if metric_sets is None:
            return {}, None
        media_id = media.get("id")
        try:
            payload = await client.get_with_fallback(
                f"{media_id}/insights",
                plan_attempts(credential.family, metric_sets),
                label=f"Insights for media {media_id}",
            )
        except FETCH_ERRORS as e:
            return {}, str(e)
        return normalize_media_insights(parse_insight_values(payload)), None

    def _post_row(
        self,
        account: ConnectedAccount,
        media: dict[str, Any],
        insights: dict[str, float],
        error: Optional[str],
        followers: Optional[int],
        now: datetime,
    ) -> Optional[dict[str, Any]]:
        timestamp = parse_graph_timestamp(media.get("timestamp"))
        if not media.get("id") or timestamp is None:
            logger.warning(f"Skipping media without id or timestamp: {media.get('id')}")
            return None

        computed = compute_media_metrics(media, insights, followers)
        stored_insights: dict[str, Any] = {**insights, "engagement": computed["engagement"]}
        if error:
            stored_insights["_error"] = error
        er = computed["er"]

        return {
            "account_id": account.id,
            "media_id": str(media["id"]),
            "caption": media.get("caption"),
            "media_type": media.get("media_type"),
            "media_product_type": media.get("media_product_type"),
            "media_url": media.get("media_url"),
            "permalink": media.get("permalink"),
            "thumbnail_url": media.get("thumbnail_url"),
            "timestamp": timestamp,
            "like_count": _as_int(media.get("like_count")),
            "comments_count": _as_int(media.get("comments_count")),
            "views": _as_int(computed["views"]),
            "reach": _as_int(computed["reach"]),
            "saved": _as_int(computed["saves"]),
            "shares": _as_int(computed["shares"]),
            "engagement": _as_int(computed["engagement"]),
            "engagement_rate": round(er, 2) if er is not None else None,
            "insights_raw": stored_insights,
            "computed_raw": computed,
            "last_fetched_at": now,
        }

    async def _fetch_daily(
        self,
        client: GraphClient,
        account: ConnectedAccount,
        credential: ResolvedCredential,
        since: date,
        until: date,
        report: SyncReport,
    ) -> Optional[dict[date, dict[str, Any]]]:
        """Daily account metrics keyed by day, or None when every group failed.

        Values above their sanity ceiling are dropped without affecting the
        other metrics of the same day.
        """
        metric_filter = DailyMetricFilter(self.settings.daily_metric_ceilings)
        days: dict[date, dict[str, Any]] = {}
        succeeded = 0
        path = f"{account.business_id}/insights"

        for group, metric_sets in DAILY_METRIC_GROUPS.items():
            attempts = plan_attempts(credential.family, metric_sets)
            for chunk_since, chunk_until in date_chunks(since, until, self.settings.max_insights_window_days):
                params = {
                    "period": "day",
                    "since": chunk_since.isoformat(),
                    "until": (chunk_until + timedelta(days=1)).isoformat(),
                }
                try:
                    payload = await client.get_with_fallback(
                        path, attempts, label=f"Daily {group}", params=params
                    )
                except FETCH_ERRORS as e:
                    report.errors[f"daily_{group}"] = str(e)
                    report.add_message(f"Daily {group} metrics unavailable: {e}")
                    continue

                succeeded += 1
                for metric, day, value in iter_daily_values(payload):
                    if metric not in DAILY_METRIC_COLUMNS or not since <= day <= until:
                        continue
                    if metric_filter.accept(metric, value, day):
                        days.setdefault(day, {"insight_date": day})[metric] = _as_int(value)

        report.dropped_values.extend(metric_filter.dropped)
        if not succeeded:
            return None
        return days

    def _apply_follower_backfill(
        self,
        days: dict[date, dict[str, Any]],
        followers: Optional[int],
        report: SyncReport,
    ) -> None:
        """Write the profile's follower count onto the most recent day."""
        if followers is None or not days:
            return
        latest = max(days)
        metric_filter = DailyMetricFilter(self.settings.daily_metric_ceilings)
        if metric_filter.accept("follower_count", followers, latest):
            days[latest]["follower_count"] = followers
        report.dropped_values.extend(metric_filter.dropped)

    async def _fetch_stories(
        self,
        client: GraphClient,
        account: ConnectedAccount,
        credential: ResolvedCredential,
    ) -> list[dict[str, Any]]:
        payload = await client.get_with_fallback(
            f"{account.business_id}/stories",
            plan_attempts(credential.family),
            label="Stories",
            params={"fields": STORY_FIELDS, "limit": self.settings.max_stories},
        )
        stories = [s for s in payload.get("data") or [] if isinstance(s, dict)]

        async def with_insights(story: dict[str, Any]) -> dict[str, Any]:
            try:
                insights_payload = await client.get_with_fallback(
                    f"{story.get('id')}/insights",
                    plan_attempts(credential.family, STORY_METRIC_SETS),
                    label=f"Insights for story {story.get('id')}",
                )
            except FETCH_ERRORS as e:
                return {**story, "insights": {**normalize_story_insights({}), "_error": str(e)}}
            raw = parse_insight_values(insights_payload)
            return {**story, "insights": normalize_story_insights(raw)}

        return list(await asyncio.gather(*(with_insights(story) for story in stories)))

    async def _fetch_demographics(
        self,
        client: GraphClient,
        account: ConnectedAccount,
    ) -> dict[str, dict[str, float]]:
        """Audience breakdowns; the engaged audience is used when follower data is empty."""
        path = f"{account.business_id}/insights"
        demographics: dict[str, dict[str, float]] = {}
        last_error: Optional[Exception] = None

        for metric in DEMOGRAPHIC_METRICS:
            for breakdown in DEMOGRAPHIC_BREAKDOWNS:
                params = {
                    "metric": metric,
                    "period": "lifetime",
                    "metric_type": "total_value",
                    "breakdown": breakdown,
                }
                try:
                    payload = await client.get_with_retry(path, params)
                except FETCH_ERRORS as e:
                    logger.info(f"{metric} by {breakdown} failed: {e}")
                    last_error = e
                    continue
                values = parse_demographics(payload)
                if values:
                    demographics[f"audience_{breakdown}"] = values
            if demographics:
                return demographics

        if last_error is not None:
            raise last_error
        return demographics

    async def _fetch_online_followers(
        self,
        client: GraphClient,
        account: ConnectedAccount,
    ) -> dict[str, float]:
        payload = await client.get_with_retry(
            f"{account.business_id}/insights",
            {"metric": "online_followers", "period": "lifetime"},
        )
        return parse_online_followers(payload)

    def _update_stats(self, account_id: int) -> None:
        oldest, newest = self.posts.date_bounds(account_id)
        self.sync_metadata.update_stats(
            account_id,
            total_posts_cached=self.posts.count_by_account(account_id),
            total_insights_days=self.insights.count_days(account_id),
            oldest_post_date=oldest,
            newest_post_date=newest,
        )

    async def sync_daily_insights(
        self,
        account_id: Optional[int] = None,
        days_back: int = DAILY_DAYS_BACK_DEFAULT,
    ) -> DailySyncSummary:
        """Refresh only the daily account metrics for one or all active accounts.

        Each account is handled independently; one failing account is reported
        in the summary and does not stop the others.
        """
        days_back = max(1, min(DAILY_DAYS_BACK_MAX, days_back))
        if account_id is not None:
            accounts = [self.load_account(account_id)]
        else:
            accounts = self.accounts.get_active_accounts()

        summary = DailySyncSummary(days_back=days_back)
        logger.info(f"Starting daily sync of {len(accounts)} account(s), {days_back} days back")
        for account in accounts:
            summary.results.append(await self._sync_account_daily(account, days_back))

        logger.info(
            f"Daily sync completed: {summary.accounts_synced}/{len(summary.results)} accounts, "
            f"{summary.total_days} day rows"
        )
        return summary

    async def _sync_account_daily(self, account: ConnectedAccount, days_back: int) -> DailySyncResult:
        try:
            credential = self.resolve(account)
        except CredentialError as e:
            logger.error(f"Daily sync of {account.label} skipped: {e}")
            return DailySyncResult(account=account.label, success=False, error=str(e))

        now = self.clock()
        if not self.sync_metadata.try_acquire(account.id, now, self.lease):
            return DailySyncResult(
                account=account.label, success=False, error=str(SyncInProgressError(account.id))
            )

        until = self.account_today(account, now)
        since = until - timedelta(days=days_back)
        report = SyncReport(account_id=account.id, since=since, until=until, started_at=now)
        error: Optional[str] = None
        try:
            async with self.client_factory(credential, settings=self.settings) as client:
                days = await self._fetch_daily(client, account, credential, since, until, report)
                if days is None:
                    error = report.error_summary()
                    return DailySyncResult(account=account.label, success=False, error=error)

                followers = await capture(
                    "Profile followers",
                    client.get_with_retry(account.business_id, {"fields": "followers_count"}),
                )
                if followers.ok:
                    self._apply_follower_backfill(
                        days, _as_int(followers.value.get("followers_count")), report
                    )

            written = self.insights.upsert_days(account.id, list(days.values()))
            self.sync_metadata.mark_synced(account.id, "insights", now)
            self._update_stats(account.id)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            error = f"{type(e).__name__}: {e}"
            logger.error(f"Daily sync of {account.label} failed: {error}")
            return DailySyncResult(account=account.label, success=False, error=error)
        finally:
            self.sync_metadata.release(account.id, error)

        logger.info(f"Saved {written} daily insight rows for {account.label}")
        return DailySyncResult(account=account.label, success=True, days=written)
