"""
Best-effort audit trail for account lifecycle actions.

Events are written on their own session in a background task. Callers never
await the write and never see its failure; errors only reach the log.
"""
import asyncio
from typing import Any, Dict, Optional, Set

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from team_access.features.team.models import AuditLog
from team_access.utils import get_logger


log = get_logger(__name__)


class AuditTrail:
    """Fire-and-forget writer of ``AuditLog`` rows."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        # Strong references so pending tasks are not garbage collected
        self._pending: Set[asyncio.Task] = set()

    async def record(
        self,
        action: str,
        actor_id: Optional[str],
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        """Write one audit entry and return it."""
        async with self.session_factory() as session:
            entry = AuditLog(
                actor_id=actor_id,
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                details=details,
            )
            session.add(entry)
            await session.commit()
        log.info(f"Audit: actor={actor_id} action={action} resource={resource_type}:{resource_id}")
        return entry

    def fire(
        self,
        action: str,
        actor_id: Optional[str],
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> asyncio.Task:
        """Schedule ``record`` without waiting for it."""
        task = asyncio.create_task(
            self.record(action, actor_id, resource_type, resource_id, details),
            name=f"audit:{action}:{resource_id}",
        )
        self._pending.add(task)
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            log.warning(f"Audit task {task.get_name()} was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            log.error(f"Failed to write audit event {task.get_name()}: {exc!r}", exc_info=exc)

    async def drain(self) -> None:
        """Wait for every scheduled write; used on shutdown and in tests."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
