"""Daily account-level insight model."""

from datetime import date
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import Date, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from igsync.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from igsync.models.account import ConnectedAccount

# Nullable metric columns, in display order
DAILY_METRIC_COLUMNS = (
    "reach",
    "impressions",
    "profile_views",
    "accounts_engaged",
    "website_clicks",
    "follower_count",
    "email_contacts",
    "phone_call_clicks",
    "text_message_clicks",
    "get_directions_clicks",
)


class DailyInsight(Base, TimestampMixin):
    """One row of account metrics per account per calendar day."""

    __tablename__ = "daily_insights"
    __table_args__ = (
        UniqueConstraint("account_id", "insight_date", name="uq_daily_insights_account_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("connected_accounts.id"), nullable=False)
    insight_date: Mapped[date] = mapped_column(Date, nullable=False)

    reach: Mapped[Optional[int]] = mapped_column(nullable=True)
    # Graph API "views"; older API versions called it impressions
    impressions: Mapped[Optional[int]] = mapped_column(nullable=True)
    profile_views: Mapped[Optional[int]] = mapped_column(nullable=True)
    accounts_engaged: Mapped[Optional[int]] = mapped_column(nullable=True)
    website_clicks: Mapped[Optional[int]] = mapped_column(nullable=True)
    follower_count: Mapped[Optional[int]] = mapped_column(nullable=True)
    email_contacts: Mapped[Optional[int]] = mapped_column(nullable=True)
    phone_call_clicks: Mapped[Optional[int]] = mapped_column(nullable=True)
    text_message_clicks: Mapped[Optional[int]] = mapped_column(nullable=True)
    get_directions_clicks: Mapped[Optional[int]] = mapped_column(nullable=True)

    account: Mapped["ConnectedAccount"] = relationship(
        "ConnectedAccount",
        back_populates="daily_insights",
    )

    def __repr__(self) -> str:
        return f"<DailyInsight(account_id={self.account_id}, date={self.insight_date})>"

    def to_dict(self) -> dict[str, Any]:
        row: dict[str, Any] = {"insight_date": self.insight_date.isoformat()}
        for column in DAILY_METRIC_COLUMNS:
            row[column] = getattr(self, column)
        return row


Index(
    "ix_daily_insights_account_date",
    DailyInsight.account_id,
    DailyInsight.insight_date.desc(),
)
