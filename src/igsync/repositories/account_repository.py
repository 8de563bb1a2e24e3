"""Repository for connected account operations."""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from igsync.models.account import ConnectedAccount
from igsync.repositories.base_repository import BaseRepository


class AccountRepository(BaseRepository[ConnectedAccount]):
    """Repository for connected account CRUD operations."""

    def __init__(self, session: Session):
        super().__init__(session, ConnectedAccount)

    def get_by_business_id(self, business_id: str) -> Optional[ConnectedAccount]:
        """Get account by Instagram business account ID."""
        stmt = select(ConnectedAccount).where(ConnectedAccount.business_id == business_id)
        result = self.session.execute(stmt)
        return result.scalar_one_or_none()

    def get_by_username(self, username: str) -> Optional[ConnectedAccount]:
        """Get account by username."""
        stmt = select(ConnectedAccount).where(ConnectedAccount.username == username)
        result = self.session.execute(stmt)
        return result.scalar_one_or_none()

    def get_active_accounts(self) -> list[ConnectedAccount]:
        """Get all active accounts."""
        stmt = (
            select(ConnectedAccount)
            .where(ConnectedAccount.is_active == True)
            .order_by(ConnectedAccount.id.asc())
        )
        result = self.session.execute(stmt)
        return list(result.scalars().all())

    def create_account(
        self,
        business_id: str,
        access_token: str,
        provider: str = "instagram",
        username: Optional[str] = None,
        name: Optional[str] = None,
        timezone: Optional[str] = None,
    ) -> ConnectedAccount:
        """Register a connected account."""
        return self.create(
            business_id=business_id,
            access_token=access_token,
            provider=provider,
            username=username,
            name=name,
            timezone=timezone,
        )

    def deactivate(self, id: int) -> Optional[ConnectedAccount]:
        """Deactivate an account."""
        return self.update(id, is_active=False)

    def update_token(
        self,
        id: int,
        access_token: str,
        token_expires_at=None,
    ) -> Optional[ConnectedAccount]:
        """Update account access token."""
        return self.update(
            id,
            access_token=access_token,
            token_expires_at=token_expires_at,
        )
