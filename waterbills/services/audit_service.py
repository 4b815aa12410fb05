import logging
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession

from waterbills.database.models import AuditLog


async def _write_audit_entry(session: AsyncSession, entry: AuditLog) -> None:
    # Own session: a failed audit insert must not poison the caller's transaction
    async with AsyncSession(session.bind, expire_on_commit=False) as audit_session:
        audit_session.add(entry)
        await audit_session.commit()


async def log_audit(
    session: AsyncSession,
    entity_type: str,
    entity_id: int,
    action: str,
    changes: Optional[dict] = None,
    performed_by: str = "system"
) -> bool:
    """
    Append an audit record. Best effort: failures are logged and discarded.
    Call after the business change has been committed.

    Returns:
        True if the entry was written
    """
    entry = AuditLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        changes=changes or {},
        performed_by=performed_by
    )
    try:
        await _write_audit_entry(session, entry)
        return True
    except Exception as e:
        logging.warning(f"Failed to write audit log for {entity_type}#{entity_id} {action}: {e}")
        return False
