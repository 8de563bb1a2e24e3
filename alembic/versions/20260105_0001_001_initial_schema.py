"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-01-05 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            onupdate=sa.func.now(),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    # Create connected_accounts table
    op.create_table(
        "connected_accounts",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("provider", sa.String(20), nullable=False, server_default="instagram"),
        sa.Column("business_id", sa.String(50), nullable=False),
        sa.Column("username", sa.String(100), nullable=True),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("timezone", sa.String(64), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("business_id"),
    )

    # Create profile_snapshots table
    op.create_table(
        "profile_snapshots",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("business_id", sa.String(50), nullable=False),
        sa.Column("snapshot_date", sa.Date(), nullable=False),
        sa.Column("username", sa.String(100), nullable=True),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("biography", sa.Text(), nullable=True),
        sa.Column("followers_count", sa.Integer(), nullable=True),
        sa.Column("follows_count", sa.Integer(), nullable=True),
        sa.Column("media_count", sa.Integer(), nullable=True),
        sa.Column("profile_picture_url", sa.Text(), nullable=True),
        sa.Column("website", sa.Text(), nullable=True),
        sa.Column("fetched_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["account_id"], ["connected_accounts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("account_id", "snapshot_date", name="uq_profile_snapshots_account_date"),
    )
    op.create_index(
        "ix_profile_snapshots_account_date",
        "profile_snapshots",
        ["account_id", sa.text("snapshot_date DESC")],
    )

    # Create daily_insights table
    op.create_table(
        "daily_insights",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("insight_date", sa.Date(), nullable=False),
        sa.Column("reach", sa.Integer(), nullable=True),
        sa.Column("impressions", sa.Integer(), nullable=True),
        sa.Column("profile_views", sa.Integer(), nullable=True),
        sa.Column("accounts_engaged", sa.Integer(), nullable=True),
        sa.Column("website_clicks", sa.Integer(), nullable=True),
        sa.Column("follower_count", sa.Integer(), nullable=True),
        sa.Column("email_contacts", sa.Integer(), nullable=True),
        sa.Column("phone_call_clicks", sa.Integer(), nullable=True),
        sa.Column("text_message_clicks", sa.Integer(), nullable=True),
        sa.Column("get_directions_clicks", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["account_id"], ["connected_accounts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("account_id", "insight_date", name="uq_daily_insights_account_date"),
    )
    op.create_index(
        "ix_daily_insights_account_date",
        "daily_insights",
        ["account_id", sa.text("insight_date DESC")],
    )

    # Create post_cache table
    op.create_table(
        "post_cache",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("media_id", sa.String(50), nullable=False),
        sa.Column("caption", sa.Text(), nullable=True),
        sa.Column("media_type", sa.String(30), nullable=True),
        sa.Column("media_product_type", sa.String(30), nullable=True),
        sa.Column("media_url", sa.Text(), nullable=True),
        sa.Column("permalink", sa.Text(), nullable=True),
        sa.Column("thumbnail_url", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("like_count", sa.Integer(), nullable=True),
        sa.Column("comments_count", sa.Integer(), nullable=True),
        sa.Column("views", sa.Integer(), nullable=True),
        sa.Column("reach", sa.Integer(), nullable=True),
        sa.Column("saved", sa.Integer(), nullable=True),
        sa.Column("shares", sa.Integer(), nullable=True),
        sa.Column("engagement", sa.Integer(), nullable=True),
        sa.Column("engagement_rate", sa.Numeric(7, 2), nullable=True),
        sa.Column("insights_raw", sa.JSON(), nullable=True),
        sa.Column("computed_raw", sa.JSON(), nullable=True),
        sa.Column("last_fetched_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["account_id"], ["connected_accounts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("media_id"),
    )
    op.create_index(
        "ix_post_cache_account_timestamp",
        "post_cache",
        ["account_id", sa.text("timestamp DESC")],
    )

    # Create sync_metadata table
    op.create_table(
        "sync_metadata",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("last_profile_sync", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_posts_sync", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_insights_sync", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_stories_sync", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_syncing", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sync_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_sync_error", sa.Text(), nullable=True),
        sa.Column("total_posts_cached", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_insights_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("oldest_post_date", sa.Date(), nullable=True),
        sa.Column("newest_post_date", sa.Date(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["account_id"], ["connected_accounts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("account_id"),
    )


def downgrade() -> None:
    op.drop_table("sync_metadata")
    op.drop_index("ix_post_cache_account_timestamp", table_name="post_cache")
    op.drop_table("post_cache")
    op.drop_index("ix_daily_insights_account_date", table_name="daily_insights")
    op.drop_table("daily_insights")
    op.drop_index("ix_profile_snapshots_account_date", table_name="profile_snapshots")
    op.drop_table("profile_snapshots")
    op.drop_table("connected_accounts")
