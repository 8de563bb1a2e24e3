"""Repository for per-account sync bookkeeping."""

from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from igsync.models.sync_metadata import SyncMetadata
from igsync.repositories.base_repository import BaseRepository

SYNC_CATEGORIES = ("profile", "posts", "insights", "stories")


class SyncMetadataRepository(BaseRepository[SyncMetadata]):
    """Repository for sync metadata and the sync guard."""

    def __init__(self, session: Session):
        super().__init__(session, SyncMetadata)

    def get_for_account(self, account_id: int) -> Optional[SyncMetadata]:
        """Get the bookkeeping row for an account."""
        stmt = select(SyncMetadata).where(SyncMetadata.account_id == account_id)
        result = self.session.execute(stmt)
        return result.scalar_one_or_none()

    def ensure(self, account_id: int) -> SyncMetadata:
        """Get the bookkeeping row, creating it on first use."""
        self.insert_ignore({"account_id": account_id}, conflict_columns=("account_id",))
        return self.get_for_account(account_id)

    def try_acquire(self, account_id: int, now: datetime, lease: timedelta) -> bool:
        """Atomically take the sync guard.

        Succeeds when no sync is running or the running one started more than
        ``lease`` ago. The claim is committed so concurrent callers see it.
        """
        self.ensure(account_id)
        stale_before = now - lease
        stmt = (
            update(SyncMetadata)
            .where(
                SyncMetadata.account_id == account_id,
                or_(
                    SyncMetadata.is_syncing == False,
                    SyncMetadata.sync_started_at.is_(None),
                    SyncMetadata.sync_started_at < stale_before,
                ),
            )
            .values(is_syncing=True, sync_started_at=now)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        self.session.commit()
        return result.rowcount == 1

    def release(self, account_id: int, error: Optional[str] = None) -> None:
        """Clear the sync guard and record the outcome of the run."""
        stmt = (
            update(SyncMetadata)
            .where(SyncMetadata.account_id == account_id)
            .values(is_syncing=False, last_sync_error=error)
            .execution_options(synchronize_session=False)
        )
        self.session.execute(stmt)
        self.session.commit()
        self.session.expire_all()

    def mark_synced(self, account_id: int, category: str, at: datetime) -> None:
        """Record a successful sync of one data category."""
        if category not in SYNC_CATEGORIES:
            raise ValueError(f"Unknown sync category: {category}")
        meta = self.ensure(account_id)
        setattr(meta, f"last_{category}_sync", at)
        self.session.flush()

    def update_stats(
        self,
        account_id: int,
        total_posts_cached: int,
        total_insights_days: int,
        oldest_post_date: Optional[date],
        newest_post_date: Optional[date],
    ) -> SyncMetadata:
        """Refresh the cached-data statistics."""
        meta = self.ensure(account_id)
        meta.total_posts_cached = total_posts_cached
        meta.total_insights_days = total_insights_days
        meta.oldest_post_date = oldest_post_date
        meta.newest_post_date = newest_post_date
        self.session.flush()
        return meta
