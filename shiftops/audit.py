from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from shiftops.models import AuditActorType, AuditLog

logger = logging.getLogger("shiftops.audit")


def log_audit(
    db: Session,
    *,
    actor_type: AuditActorType,
    actor_id: str,
    action: str,
    success: bool = True,
    entity_type: str | None = None,
    entity_id: str | None = None,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditLog | None:
    """Append an audit row for an admin action on schedules, in its own commit.

    ``request_id`` ties the row to the HTTP request that caused it. A failed
    write is rolled back and logged and returns ``None``; it never fails the
    schedule operation that triggered it.
    """
    entry = AuditLog(
        ts_utc=datetime.now(timezone.utc),
        actor_type=actor_type,
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        request_id=request_id[:128] if request_id else None,
        success=success,
        details=details or {},
    )
    context = {
        "request_id": request_id,
        "action": action,
        "actor_type": actor_type.value,
        "actor_id": actor_id,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "success": success,
    }
    db.add(entry)
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("audit_log_write_failed", extra=context)
        return None

    logger.info("audit_event", extra={**context, "details": entry.details})
    return entry
