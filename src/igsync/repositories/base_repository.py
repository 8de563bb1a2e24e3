"""Base repository with common CRUD and upsert operations."""

from typing import Any, Generic, Optional, Sequence, TypeVar

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from igsync.models.base import Base

ModelT = TypeVar("ModelT", bound=Base)

UPSERT_BATCH_SIZE = 100


class BaseRepository(Generic[ModelT]):
    """Base repository with common CRUD operations."""

    def __init__(self, session: Session, model_class: type[ModelT]):
        self.session = session
        self.model_class = model_class

    def get(self, id: int) -> Optional[ModelT]:
        """Get a record by ID."""
        return self.session.get(self.model_class, id)

    def get_all(self, limit: int = 100, offset: int = 0) -> list[ModelT]:
        """Get all records with pagination."""
        stmt = select(self.model_class).limit(limit).offset(offset)
        result = self.session.execute(stmt)
        return list(result.scalars().all())

    def create(self, **kwargs) -> ModelT:
        """Create a new record."""
        instance = self.model_class(**kwargs)
        self.session.add(instance)
        self.session.flush()
        return instance

    def update(self, id: int, **kwargs) -> Optional[ModelT]:
        """Update a record by ID."""
        instance = self.get(id)
        if instance:
            for key, value in kwargs.items():
                if hasattr(instance, key):
                    setattr(instance, key, value)
            self.session.flush()
        return instance

    def upsert(
        self,
        rows: Sequence[dict[str, Any]],
        conflict_columns: Sequence[str],
        update_columns: Optional[Sequence[str]] = None,
        keep_existing_on_null: bool = False,
    ) -> int:
        """Insert rows, updating in place when the unique key already exists.

        Every row must carry the same keys. On conflict the incoming values
        overwrite the stored ones (last write wins) and ``updated_at`` is bumped.
        With ``keep_existing_on_null`` an incoming NULL leaves the stored value.
        Returns the number of rows written.
        """
        if not rows:
            return 0

        self.session.flush()
        keys = list(rows[0].keys())
        if update_columns is None:
            update_columns = [key for key in keys if key not in conflict_columns]

        insert = self._insert_for_dialect()
        for start in range(0, len(rows), UPSERT_BATCH_SIZE):
            batch = list(rows[start:start + UPSERT_BATCH_SIZE])
            stmt = insert(self.model_class).values(batch)
            table = self.model_class.__table__
            if keep_existing_on_null:
                set_ = {
                    column: func.coalesce(stmt.excluded[column], table.c[column])
                    for column in update_columns
                }
            else:
                set_ = {column: stmt.excluded[column] for column in update_columns}
            if hasattr(self.model_class, "updated_at"):
                set_["updated_at"] = func.now()
            stmt = stmt.on_conflict_do_update(index_elements=list(conflict_columns), set_=set_)
            self.session.execute(stmt)

        # Core statements bypass the identity map
        self.session.expire_all()
        return len(rows)

    def insert_ignore(self, row: dict[str, Any], conflict_columns: Sequence[str]) -> None:
        """Insert a row unless its unique key already exists."""
        self.session.flush()
        insert = self._insert_for_dialect()
        stmt = insert(self.model_class).values(**row)
        stmt = stmt.on_conflict_do_nothing(index_elements=list(conflict_columns))
        self.session.execute(stmt)

    def _insert_for_dialect(self):
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert
        if dialect == "sqlite":
            return sqlite.insert
        raise NotImplementedError(f"Upsert is not supported on '{dialect}'")

    def commit(self) -> None:
        """Commit the current transaction."""
        self.session.commit()

    def rollback(self) -> None:
        """Rollback the current transaction."""
        self.session.rollback()
