"""Cached media item model."""

from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import JSON, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from igsync.models.base import Base, TimestampMixin, as_utc

if TYPE_CHECKING:
    from igsync.models.account import ConnectedAccount


class PostCache(Base, TimestampMixin):
    """Latest known state of a media item, keyed by its Graph media id."""

    __tablename__ = "post_cache"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("connected_accounts.id"), nullable=False)
    media_id: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)

    # Post metadata
    caption: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    media_type: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    media_product_type: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    media_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    permalink: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    thumbnail_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(nullable=False)

    # Counters
    like_count: Mapped[Optional[int]] = mapped_column(nullable=True)
    comments_count: Mapped[Optional[int]] = mapped_column(nullable=True)
    views: Mapped[Optional[int]] = mapped_column(nullable=True)
    reach: Mapped[Optional[int]] = mapped_column(nullable=True)
    saved: Mapped[Optional[int]] = mapped_column(nullable=True)
    shares: Mapped[Optional[int]] = mapped_column(nullable=True)
    engagement: Mapped[Optional[int]] = mapped_column(nullable=True)
    engagement_rate: Mapped[Optional[float]] = mapped_column(Numeric(7, 2, asdecimal=False), nullable=True)

    # Raw payloads
    insights_raw: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    computed_raw: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    last_fetched_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    account: Mapped["ConnectedAccount"] = relationship(
        "ConnectedAccount",
        back_populates="posts",
    )

    def __repr__(self) -> str:
        return f"<PostCache(media_id='{self.media_id}', type='{self.media_type}')>"

    def to_dict(self) -> dict[str, Any]:
        """Media item in the same shape the live sync returns."""
        return {
            "id": self.media_id,
            "caption": self.caption,
            "media_type": self.media_type,
            "media_product_type": self.media_product_type,
            "media_url": self.media_url,
            "permalink": self.permalink,
            "thumbnail_url": self.thumbnail_url,
            "timestamp": as_utc(self.timestamp).isoformat(),
            "like_count": self.like_count,
            "comments_count": self.comments_count,
            "insights": self.insights_raw or {},
            "computed": self.computed_raw or {},
        }


Index(
    "ix_post_cache_account_timestamp",
    PostCache.account_id,
    PostCache.timestamp.desc(),
)
