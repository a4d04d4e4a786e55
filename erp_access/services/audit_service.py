"""Audit service — best-effort batched audit trail for business mutations.

record() is fire-and-forget: it enriches the entry, queues it and returns.
A single background flush writes queued entries after a short delay. Writer
failures are logged and the entry is dropped; nothing is ever raised back to
the business operation that called record().
"""

import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from erp_access.core.config import settings
from erp_access.core.exceptions import PersistenceError
from erp_access.db.session import SessionLocal
from erp_access.models.audit_log import AuditLog
from erp_access.models.user import User
from erp_access.schemas.schemas import ActorIdentity, AuditAction, AuditEntry, AuditLogOut
from erp_access.services.audit_summary import summarize_changes
from erp_access.services.identity import get_client_context, get_current_actor

logger = logging.getLogger("erp_access.audit")

# One id per process, attached to every entry it emits.
SESSION_ID = uuid.uuid4().hex

Writer = Callable[[AuditEntry], Awaitable[None]]
IdentityProvider = Callable[[], Optional[ActorIdentity]]


def _snapshot(value: Any) -> Any:
    """Detached JSON-safe copy, so later mutation by the caller is not recorded."""
    if value is None:
        return None
    return json.loads(json.dumps(value, default=str))


def _dumps(value: Any) -> Optional[str]:
    return json.dumps(value, default=str) if value is not None else None


def audit_log_row(entry: AuditEntry) -> AuditLog:
    """Map an enriched entry onto the append-only audit_logs table."""
    metadata = entry.metadata
    return AuditLog(
        action=entry.action.value,
        resource_type=entry.resource,
        resource_id=entry.record_id,
        actor_id=entry.actor_id,
        actor_email=metadata.get("actor_email"),
        actor_name=metadata.get("actor_name"),
        old_value_json=_dumps(entry.before),
        new_value_json=_dumps(entry.after),
        summary=(metadata.get("summary") or "")[:500] or None,
        session_id=metadata.get("session_id"),
        metadata_json=_dumps(metadata),
        created_at=entry.created_at,
    )


async def persist_audit_entry(entry: AuditEntry) -> None:
    """Default writer: one row, own session, commits immediately."""
    async with SessionLocal() as db:
        db.add(audit_log_row(entry))
        await db.commit()


class AuditTrail:
    """Records audit entries and delivers them in the background."""

    def __init__(
        self,
        writer: Optional[Writer] = None,
        flush_delay_ms: Optional[int] = None,
        identity_provider: Optional[IdentityProvider] = None,
        session_id: Optional[str] = None,
    ):
        self._writer = writer or persist_audit_entry
        self.flush_delay_ms = (
            settings.AUDIT_FLUSH_DELAY_MS if flush_delay_ms is None else flush_delay_ms
        )
        self._identity_provider = identity_provider or get_current_actor
        self.session_id = session_id or SESSION_ID
        self._queue: List[AuditEntry] = []
        self._flushing = False
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> int:
        return len(self._queue)

    def record(
        self,
        action: Union[AuditAction, str],
        resource: str,
        record_id: Optional[Any] = None,
        actor_id: Optional[Any] = None,
        before: Optional[Any] = None,
        after: Optional[Any] = None,
        extra_metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Queue one audit entry. Never raises.

        Args:
            action: create, update or delete (case-insensitive).
            resource: Resource collection name, e.g. "tasks".
            before: Snapshot before the mutation; None for creations.
            after: Snapshot after the mutation; None for deletions.
            extra_metadata: Merged last, wins over generated metadata.
        """
        try:
            entry = self._build_entry(
                action, resource, record_id, actor_id, before, after, extra_metadata
            )
        except Exception as exc:
            logger.warning("Audit entry for %s could not be built: %s", resource, exc)
            return

        self._queue.append(entry)
        self._schedule_flush()

    def _build_entry(
        self,
        action: Union[AuditAction, str],
        resource: str,
        record_id: Optional[Any],
        actor_id: Optional[Any],
        before: Optional[Any],
        after: Optional[Any],
        extra_metadata: Optional[Dict[str, Any]],
    ) -> AuditEntry:
        if not isinstance(action, AuditAction):
            action = AuditAction(str(action).lower())
        before = _snapshot(before)
        after = _snapshot(after)
        actor = str(actor_id) if actor_id is not None else None
        created_at = datetime.now(timezone.utc)

        metadata: Dict[str, Any] = {
            "session_id": self.session_id,
            "summary": summarize_changes(action.value, resource, before, after),
            "timestamp": created_at.isoformat(),
        }

        identity = self._identity_provider()
        if identity is not None and actor is not None and identity.id == actor:
            if identity.email:
                metadata["actor_email"] = identity.email
            if identity.display_name:
                metadata["actor_name"] = identity.display_name

        client = get_client_context()
        if client is not None:
            metadata.update(client.model_dump(exclude_none=True))

        if extra_metadata:
            metadata.update(_snapshot(extra_metadata))

        return AuditEntry(
            action=action,
            resource=resource,
            record_id=str(record_id) if record_id is not None else None,
            actor_id=actor,
            before=before,
            after=after,
            metadata=metadata,
            created_at=created_at,
        )

    def _schedule_flush(self) -> None:
        if self._flushing:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Stays queued until the next record() or flush() inside a loop.
            return
        self._flushing = True
        self._task = loop.create_task(self._flush_after_delay())

    async def _flush_after_delay(self) -> None:
        try:
            await asyncio.sleep(self.flush_delay_ms / 1000)
            await self._drain()
        finally:
            self._flushing = False
            self._task = None
            if self._queue:
                self._schedule_flush()

    async def _drain(self) -> None:
        batch, self._queue = self._queue, []
        if batch:
            await asyncio.gather(*(self._deliver(entry) for entry in batch))

    async def _deliver(self, entry: AuditEntry) -> None:
        try:
            await self._writer(entry)
        except Exception as exc:
            logger.warning(
                "Audit entry dropped (%s %s/%s): %s",
                entry.action.value,
                entry.resource,
                entry.record_id,
                exc,
            )

    async def flush(self) -> None:
        """Wait for the in-flight cycle, then deliver whatever is still queued."""
        while self._task is not None and not self._task.done():
            await asyncio.gather(self._task, return_exceptions=True)
        await self._drain()

    @staticmethod
    async def query_logs(
        db: AsyncSession,
        action: Optional[Union[AuditAction, str]] = None,
        resource_type: Optional[str] = None,
        actor_id: Optional[Any] = None,
        limit: int = 100,
    ) -> List[AuditLogOut]:
        """Newest-first audit logs, with actor name/email filled from users."""
        query = select(AuditLog)
        if action:
            value = action.value if isinstance(action, AuditAction) else str(action).lower()
            query = query.where(AuditLog.action == value)
        if resource_type:
            query = query.where(AuditLog.resource_type == resource_type)
        if actor_id is not None:
            query = query.where(AuditLog.actor_id == str(actor_id))

        result = await db.execute(
            query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit)
        )
        logs = [AuditLogOut.model_validate(row) for row in result.scalars().all()]

        user_ids = {int(log.actor_id) for log in logs if log.actor_id and log.actor_id.isdigit()}
        if not user_ids:
            return logs

        try:
            users = await db.execute(select(User).where(User.id.in_(user_ids)))
            directory = {str(user.id): user for user in users.scalars().all()}
        except SQLAlchemyError as exc:
            logger.error("Error loading users for audit logs: %s", exc)
            return logs

        for log in logs:
            user = directory.get(log.actor_id or "")
            if user is None:
                continue
            if not log.actor_name:
                log.actor_name = user.full_name or user.email
            if not log.actor_email:
                log.actor_email = user.email
        return logs

    @staticmethod
    async def delete_actor_logs(db: AsyncSession, actor_id: Any) -> int:
        """Delete every audit log of one actor in capped batches. Returns rows deleted."""
        deleted = 0
        try:
            while True:
                result = await db.execute(
                    select(AuditLog.id)
                    .where(AuditLog.actor_id == str(actor_id))
                    .limit(settings.WRITE_BATCH_SIZE)
                )
                ids = list(result.scalars().all())
                if not ids:
                    break
                await db.execute(delete(AuditLog).where(AuditLog.id.in_(ids)))
                await db.commit()
                deleted += len(ids)
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.error("Error deleting audit logs of %s: %s", actor_id, exc)
            raise PersistenceError("Audit logs could not be deleted") from exc

        logger.info("Deleted %d audit logs of actor %s", deleted, actor_id)
        return deleted


audit_trail = AuditTrail()
