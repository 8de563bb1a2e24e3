"""Daily profile snapshot model."""

from datetime import date, datetime
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import Date, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from igsync.models.base import Base, TimestampMixin, as_utc

if TYPE_CHECKING:
    from igsync.models.account import ConnectedAccount


class ProfileSnapshot(Base, TimestampMixin):
    """Profile counters captured at most once per account per day."""

    __tablename__ = "profile_snapshots"
    __table_args__ = (
        UniqueConstraint("account_id", "snapshot_date", name="uq_profile_snapshots_account_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("connected_accounts.id"), nullable=False)
    business_id: Mapped[str] = mapped_column(String(50), nullable=False)
    snapshot_date: Mapped[date] = mapped_column(Date, nullable=False)

    username: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    biography: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    followers_count: Mapped[Optional[int]] = mapped_column(nullable=True)
    follows_count: Mapped[Optional[int]] = mapped_column(nullable=True)
    media_count: Mapped[Optional[int]] = mapped_column(nullable=True)
    profile_picture_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    website: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # When the upstream profile was last fetched into this row
    fetched_at: Mapped[datetime] = mapped_column(nullable=False)

    account: Mapped["ConnectedAccount"] = relationship(
        "ConnectedAccount",
        back_populates="profile_snapshots",
    )

    def __repr__(self) -> str:
        return f"<ProfileSnapshot(account_id={self.account_id}, date={self.snapshot_date})>"

    @property
    def fetched_at_utc(self) -> Optional[datetime]:
        return as_utc(self.fetched_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.business_id,
            "username": self.username,
            "name": self.name,
            "biography": self.biography,
            "followers_count": self.followers_count,
            "follows_count": self.follows_count,
            "media_count": self.media_count,
            "profile_picture_url": self.profile_picture_url,
            "website": self.website,
            "snapshot_date": self.snapshot_date.isoformat(),
        }


Index(
    "ix_profile_snapshots_account_date",
    ProfileSnapshot.account_id,
    ProfileSnapshot.snapshot_date.desc(),
)
