"""Read access to orders and their quiz briefs."""

import uuid as uuid_pkg

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.base_operations import BaseOperations
from app.models.order import Order, Quiz


class OrderOperations(BaseOperations[Order]):
    """Queries for Order model."""

    def __init__(self) -> None:
        super().__init__(Order)

    async def get_with_quiz(
        self, db: AsyncSession, order_id: uuid_pkg.UUID
    ) -> tuple[Order, Quiz] | None:
        """Get an order together with its quiz brief."""
        statement = (
            select(Order, Quiz)
            .join(Quiz, Quiz.id == Order.quiz_id)  # type: ignore[arg-type]
            .where(Order.id == order_id)  # type: ignore[arg-type]
        )
        row = (await db.execute(statement)).first()
        if row is None:
            return None
        return row[0], row[1]

    async def get_quiz(self, db: AsyncSession, quiz_id: uuid_pkg.UUID) -> Quiz | None:
        result = await db.execute(select(Quiz).where(Quiz.id == quiz_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()


order_ops = OrderOperations()
