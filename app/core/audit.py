import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from loguru import logger
from sqlmodel import Session

from app.db.core import engine
from app.db.schema import AuditLog, AuditAction


def _perform_audit_log(
    user_id: uuid.UUID,
    entity_type: str,
    entity_id: uuid.UUID,
    action: AuditAction,
    changes: Dict[str, Any],
    ip_address: Optional[str] = None
):
    """
    Background worker.
    Creates its OWN session using the global engine, since the request
    session is closed by the time background tasks run.
    """
    try:
        with Session(engine) as session:
            log_entry = AuditLog(
                actor_user_id=user_id,
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                changes=changes,
                ip_address=ip_address,
                timestamp=datetime.utcnow()
            )
            session.add(log_entry)
            session.commit()

    except Exception:
        # An audit failure must not fail the request that triggered it
        logger.exception(f"Audit log failed for {entity_type} {entity_id}")
