"""Repository layer for database operations."""

from igsync.repositories.account_repository import AccountRepository
from igsync.repositories.base_repository import BaseRepository
from igsync.repositories.insights_repository import InsightsRepository
from igsync.repositories.post_repository import PostRepository
from igsync.repositories.snapshot_repository import SnapshotRepository
from igsync.repositories.sync_metadata_repository import SyncMetadataRepository

__all__ = [
    "AccountRepository",
    "BaseRepository",
    "InsightsRepository",
    "PostRepository",
    "SnapshotRepository",
    "SyncMetadataRepository",
]
