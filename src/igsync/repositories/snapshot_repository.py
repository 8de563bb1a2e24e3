"""Repository for daily profile snapshots."""

from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from igsync.models.snapshot import ProfileSnapshot
from igsync.repositories.base_repository import BaseRepository

PROFILE_FIELDS = (
    "username",
    "name",
    "biography",
    "followers_count",
    "follows_count",
    "media_count",
    "profile_picture_url",
    "website",
)


class SnapshotRepository(BaseRepository[ProfileSnapshot]):
    """Repository for profile snapshot operations."""

    def __init__(self, session: Session):
        super().__init__(session, ProfileSnapshot)

    def get_for_date(self, account_id: int, snapshot_date: date) -> Optional[ProfileSnapshot]:
        """Get the snapshot stored for a specific day."""
        stmt = select(ProfileSnapshot).where(
            ProfileSnapshot.account_id == account_id,
            ProfileSnapshot.snapshot_date == snapshot_date,
        )
        result = self.session.execute(stmt)
        return result.scalar_one_or_none()

    def get_latest(self, account_id: int) -> Optional[ProfileSnapshot]:
        """Get the most recent snapshot for an account."""
        stmt = (
            select(ProfileSnapshot)
            .where(ProfileSnapshot.account_id == account_id)
            .order_by(ProfileSnapshot.snapshot_date.desc())
            .limit(1)
        )
        result = self.session.execute(stmt)
        return result.scalar_one_or_none()

    def upsert_snapshot(
        self,
        account_id: int,
        business_id: str,
        snapshot_date: date,
        profile: dict[str, Any],
        fetched_at: datetime,
    ) -> Optional[ProfileSnapshot]:
        """Store the profile for a day, replacing an earlier capture of that day."""
        row = {
            "account_id": account_id,
            "business_id": business_id,
            "snapshot_date": snapshot_date,
            "fetched_at": fetched_at,
        }
        for field in PROFILE_FIELDS:
            row[field] = profile.get(field)

        self.upsert([row], conflict_columns=("account_id", "snapshot_date"))
        return self.get_for_date(account_id, snapshot_date)
