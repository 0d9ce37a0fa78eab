"""Audit trail for order lifecycle, captures, plan edits and migrations."""

from typing import Any

from app.models.audit_log import AuditLog


async def log_event(
    user_id: str | None,
    event_type: str,
    entity_type: str,
    entity_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    session=None,
) -> AuditLog:
    """Append one entry. user_id is None for gateway and sweep actions."""
    entry = AuditLog(
        user_id=user_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        metadata=metadata or {},
    )
    await entry.insert(session=session)
    return entry


async def trail(entity_type: str, entity_id: str) -> list[AuditLog]:
    """Every entry for one entity, oldest first."""
    return (
        await AuditLog.find(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
        .sort(+AuditLog.created_at)
        .to_list()
    )
