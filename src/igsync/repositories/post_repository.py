"""Repository for cached media items."""

from datetime import date, datetime, time, timezone
from typing import Any, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from igsync.models.base import as_utc
from igsync.models.post_cache import PostCache
from igsync.repositories.base_repository import BaseRepository

POST_COLUMNS = (
    "account_id",
    "media_id",
    "caption",
    "media_type",
    "media_product_type",
    "media_url",
    "permalink",
    "thumbnail_url",
    "timestamp",
    "like_count",
    "comments_count",
    "views",
    "reach",
    "saved",
    "shares",
    "engagement",
    "engagement_rate",
    "insights_raw",
    "computed_raw",
    "last_fetched_at",
)


class PostRepository(BaseRepository[PostCache]):
    """Repository for post cache operations."""

    def __init__(self, session: Session):
        super().__init__(session, PostCache)

    def get_by_media_id(self, media_id: str) -> Optional[PostCache]:
        """Get a cached post by its Graph media ID."""
        stmt = select(PostCache).where(PostCache.media_id == media_id)
        result = self.session.execute(stmt)
        return result.scalar_one_or_none()

    def get_in_range(
        self,
        account_id: int,
        since: date,
        until: date,
        limit: Optional[int] = None,
    ) -> list[PostCache]:
        """Posts published within an inclusive date range, newest first."""
        start = datetime.combine(since, time.min, tzinfo=timezone.utc)
        end = datetime.combine(until, time.max, tzinfo=timezone.utc)
        stmt = (
            select(PostCache)
            .where(
                PostCache.account_id == account_id,
                PostCache.timestamp >= start,
                PostCache.timestamp <= end,
            )
            .order_by(PostCache.timestamp.desc())
        )
        if limit:
            stmt = stmt.limit(limit)
        result = self.session.execute(stmt)
        return list(result.scalars().all())

    def count_by_account(self, account_id: int) -> int:
        """Count cached posts for an account."""
        stmt = select(func.count(PostCache.id)).where(PostCache.account_id == account_id)
        return self.session.execute(stmt).scalar_one()

    def date_bounds(self, account_id: int) -> tuple[Optional[date], Optional[date]]:
        """Oldest and newest publication dates cached for an account."""
        stmt = select(func.min(PostCache.timestamp), func.max(PostCache.timestamp)).where(
            PostCache.account_id == account_id
        )
        oldest, newest = self.session.execute(stmt).one()
        oldest, newest = as_utc(oldest), as_utc(newest)
        return (
            oldest.date() if oldest else None,
            newest.date() if newest else None,
        )

    def upsert_posts(self, rows: Sequence[dict[str, Any]]) -> int:
        """Write posts keyed by media ID; metrics of known posts are overwritten."""
        normalized = [{column: row.get(column) for column in POST_COLUMNS} for row in rows]
        update_columns = [
            column for column in POST_COLUMNS if column not in ("media_id", "account_id")
        ]
        return self.upsert(
            normalized,
            conflict_columns=("media_id",),
            update_columns=update_columns,
        )
