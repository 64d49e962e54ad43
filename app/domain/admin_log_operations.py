"""Append-only audit log writes."""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.admin_log import AdminLog


class AdminLogOperations:
    """Write operations for AdminLog model."""

    async def record(
        self,
        db: AsyncSession,
        action: str,
        target_table: str,
        target_id: object,
        details: dict[str, Any] | None = None,
        actor: str = "system",
    ) -> AdminLog:
        """Add an audit row to the current transaction."""
        entry = AdminLog(
            action=action,
            target_table=target_table,
            target_id=str(target_id),
            actor=actor,
            details=details,
        )
        db.add(entry)
        await db.flush()
        return entry


admin_log_ops = AdminLogOperations()
