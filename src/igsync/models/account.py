"""Connected Instagram account model."""

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from igsync.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from igsync.models.insights import DailyInsight
    from igsync.models.post_cache import PostCache
    from igsync.models.snapshot import ProfileSnapshot
    from igsync.models.sync_metadata import SyncMetadata


class ConnectedAccount(Base, TimestampMixin):
    """Instagram business account whose analytics are synced."""

    __tablename__ = "connected_accounts"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    provider: Mapped[str] = mapped_column(String(20), default="instagram", nullable=False)
    business_id: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    username: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Stored credential: raw, legacy base64 or "ENCRYPTED:" prefixed
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    token_expires_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    timezone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)

    # Relationships
    profile_snapshots: Mapped[list["ProfileSnapshot"]] = relationship(
        "ProfileSnapshot",
        back_populates="account",
        cascade="all, delete-orphan",
    )
    daily_insights: Mapped[list["DailyInsight"]] = relationship(
        "DailyInsight",
        back_populates="account",
        cascade="all, delete-orphan",
    )
    posts: Mapped[list["PostCache"]] = relationship(
        "PostCache",
        back_populates="account",
        cascade="all, delete-orphan",
    )
    sync_metadata: Mapped[Optional["SyncMetadata"]] = relationship(
        "SyncMetadata",
        back_populates="account",
        cascade="all, delete-orphan",
        uselist=False,
    )

    def __repr__(self) -> str:
        return f"<ConnectedAccount(id={self.id}, business_id='{self.business_id}')>"

    @property
    def label(self) -> str:
        """Human-readable handle for logs and CLI output."""
        return f"@{self.username}" if self.username else f"account {self.id}"

    @property
    def is_token_expired(self) -> bool:
        """Check if the access token is expired."""
        if self.token_expires_at is None:
            return False
        return datetime.now(self.token_expires_at.tzinfo) >= self.token_expires_at
