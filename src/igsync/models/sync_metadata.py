"""Per-account sync bookkeeping model."""

from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Date, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from igsync.models.base import Base, TimestampMixin, as_utc

if TYPE_CHECKING:
    from igsync.models.account import ConnectedAccount


class SyncMetadata(Base, TimestampMixin):
    """Last sync times, statistics and the cooperative sync guard."""

    __tablename__ = "sync_metadata"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        ForeignKey("connected_accounts.id"), unique=True, nullable=False
    )

    # Last successful sync per category
    last_profile_sync: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    last_posts_sync: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    last_insights_sync: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    last_stories_sync: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    # Guard with lease
    is_syncing: Mapped[bool] = mapped_column(default=False, nullable=False)
    sync_started_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    last_sync_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Statistics
    total_posts_cached: Mapped[int] = mapped_column(default=0, nullable=False)
    total_insights_days: Mapped[int] = mapped_column(default=0, nullable=False)
    oldest_post_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    newest_post_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    account: Mapped["ConnectedAccount"] = relationship(
        "ConnectedAccount",
        back_populates="sync_metadata",
    )

    def __repr__(self) -> str:
        return f"<SyncMetadata(account_id={self.account_id}, is_syncing={self.is_syncing})>"

    def guard_is_live(self, now: datetime, lease: timedelta) -> bool:
        """True while another sync holds an unexpired guard."""
        if not self.is_syncing:
            return False
        started = as_utc(self.sync_started_at)
        if started is None:
            return False
        return now - started < lease
