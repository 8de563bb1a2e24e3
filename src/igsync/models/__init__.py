"""SQLAlchemy models for igsync."""

from igsync.models.account import ConnectedAccount
from igsync.models.base import Base
from igsync.models.insights import DAILY_METRIC_COLUMNS, DailyInsight
from igsync.models.post_cache import PostCache
from igsync.models.snapshot import ProfileSnapshot
from igsync.models.sync_metadata import SyncMetadata

__all__ = [
    "Base",
    "ConnectedAccount",
    "DAILY_METRIC_COLUMNS",
    "DailyInsight",
    "PostCache",
    "ProfileSnapshot",
    "SyncMetadata",
]
