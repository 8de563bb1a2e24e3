"""Repository for daily account insights."""

from datetime import date
from typing import Any, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from igsync.models.insights import DAILY_METRIC_COLUMNS, DailyInsight
from igsync.repositories.base_repository import BaseRepository


class InsightsRepository(BaseRepository[DailyInsight]):
    """Repository for daily insight operations."""

    def __init__(self, session: Session):
        super().__init__(session, DailyInsight)

    def get_range(self, account_id: int, since: date, until: date) -> list[DailyInsight]:
        """Get daily rows within an inclusive date range, oldest first."""
        stmt = (
            select(DailyInsight)
            .where(
                DailyInsight.account_id == account_id,
                DailyInsight.insight_date >= since,
                DailyInsight.insight_date <= until,
            )
            .order_by(DailyInsight.insight_date.asc())
        )
        result = self.session.execute(stmt)
        return list(result.scalars().all())

    def count_days(self, account_id: int) -> int:
        """Count stored days for an account."""
        stmt = select(func.count(DailyInsight.id)).where(DailyInsight.account_id == account_id)
        return self.session.execute(stmt).scalar_one()

    def upsert_days(self, account_id: int, days: Sequence[dict[str, Any]]) -> int:
        """Write one row per day.

        A metric missing from this write keeps its stored value; on a new row it is NULL.
        Each entry needs an ``insight_date`` plus any subset of the metric columns.
        """
        rows = []
        for day in days:
            row = {"account_id": account_id, "insight_date": day["insight_date"]}
            for column in DAILY_METRIC_COLUMNS:
                row[column] = day.get(column)
            rows.append(row)
        return self.upsert(
            rows,
            conflict_columns=("account_id", "insight_date"),
            keep_existing_on_null=True,
        )
