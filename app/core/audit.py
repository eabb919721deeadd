import uuid
from typing import Any, Dict, Optional

from fastapi import BackgroundTasks
from loguru import logger
from sqlmodel import Session

from app.db.core import engine
from app.db.schema import AuditLog, AuditAction
from app.utils.dates import utcnow


def _perform_audit_log(
    organization_id: Optional[uuid.UUID],
    user_id: Optional[uuid.UUID],
    entity_type: str,
    entity_id: uuid.UUID,
    action: AuditAction,
    changes: Dict[str, Any],
    ip_address: Optional[str] = None
):
    """
    Background worker.
    Creates its OWN session using the global engine.
    """
    try:
        with Session(engine) as session:
            log_entry = AuditLog(
                organization_id=organization_id,
                actor_user_id=user_id,
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                changes=changes,
                ip_address=ip_address,
                timestamp=utcnow()
            )
            session.add(log_entry)
            session.commit()

    except Exception:
        # An audit failure must never fail the business operation
        logger.exception(
            f"Audit log failed for {entity_type} {entity_id} ({action.value})")


def record_audit(
    background_tasks: Optional[BackgroundTasks],
    organization_id: Optional[uuid.UUID],
    user_id: Optional[uuid.UUID],
    entity_type: str,
    entity_id: uuid.UUID,
    action: AuditAction,
    changes: Dict[str, Any],
):
    """
    Queues the audit entry after the response when running inside a request,
    writes it inline otherwise (CLI, sweeps).
    """
    kwargs = dict(
        organization_id=organization_id,
        user_id=user_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        changes=changes,
    )
    if background_tasks is not None:
        background_tasks.add_task(_perform_audit_log, **kwargs)
    else:
        _perform_audit_log(**kwargs)
