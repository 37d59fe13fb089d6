from typing import Any, Dict, Generic, List, Optional, Type, TypeVar
import uuid

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.base_class import Base

ModelType = TypeVar("ModelType", bound=Base)


def dialect_insert(db: AsyncSession, model: Type[Base]) -> Any:
    """
    Returns an INSERT construct that supports ``on_conflict_do_nothing`` /
    ``on_conflict_do_update`` for the dialect the session is bound to.
    """
    if db.get_bind().dialect.name == "sqlite":
        return sqlite.insert(model)
    return postgresql.insert(model)


class CRUDTenantScoped(Generic[ModelType]):
    def __init__(self, model: Type[ModelType]):
        """
        CRUD object with tenant-scoped read helpers.

        **Parameters**

        * `model`: A SQLAlchemy model class with a ``tenant_id`` column
        """
        self.model = model

    async def get(self, db: AsyncSession, *, tenant_id: uuid.UUID, id: Any) -> Optional[ModelType]:
        statement = select(self.model).where(self.model.tenant_id == tenant_id, self.model.id == id)
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    def _equals(self, filters: Optional[Dict[str, Any]]) -> List[Any]:
        return [getattr(self.model, name) == value for name, value in (filters or {}).items()]

    async def get_multi(
        self,
        db: AsyncSession,
        *,
        tenant_id: uuid.UUID,
        skip: int = 0,
        limit: int = 100,
        filters: Optional[Dict[str, Any]] = None,
    ) -> List[ModelType]:
        """Newest first. ``filters`` are equality matches on column names."""
        statement = (
            select(self.model)
            .where(self.model.tenant_id == tenant_id)
            .where(*self._equals(filters))
            .order_by(self.model.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await db.execute(statement)
        return list(result.scalars().all())

    async def count(
        self, db: AsyncSession, *, tenant_id: uuid.UUID, filters: Optional[Dict[str, Any]] = None
    ) -> int:
        statement = (
            select(func.count())
            .select_from(self.model)
            .where(self.model.tenant_id == tenant_id)
            .where(*self._equals(filters))
        )
        result = await db.execute(statement)
        return int(result.scalar() or 0)
