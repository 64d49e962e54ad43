import uuid as uuid_pkg
from typing import Any, Generic, TypeVar, cast

from sqlalchemy import select
from sqlalchemy.engine import CursorResult, Result
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel

ModelType = TypeVar("ModelType", bound=SQLModel)


def affected_rows(result: Result[Any]) -> int:
    """Row count of an UPDATE/DELETE result."""
    return cast(CursorResult[tuple[()]], result).rowcount


class BaseOperations(Generic[ModelType]):
    """Base operations shared by the pipeline models."""

    def __init__(self, model: type[ModelType]):
        self.model = model

    async def get(self, db: AsyncSession, id: uuid_pkg.UUID) -> ModelType | None:
        """Get a single record by ID."""
        statement = select(self.model).where(self.model.id == id)  # type: ignore[attr-defined]
        result = await db.execute(statement)
        return result.scalar_one_or_none()
