"""Audit hook - emits moderation/ledger events for the external audit log.

Persisting the audit trail belongs to the activity-log collaborator; this
module only publishes records on the ``callgate.audit`` logger, which that
collaborator (or a log shipper) consumes.
"""

import logging
from typing import Any
from uuid import UUID

audit_logger = logging.getLogger("callgate.audit")
logger = logging.getLogger(__name__)


def log_event(
    event_type: str,
    *,
    actor_id: UUID | str | None = None,
    target_id: UUID | str | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    """Publish an audit event. Never raises."""
    try:
        audit_logger.info(
            event_type,
            extra={
                "audit_event": event_type,
                "actor_id": str(actor_id) if actor_id else "system",
                "target_id": str(target_id) if target_id else None,
                "details": details or {},
            },
        )
    except Exception:
        logger.exception("Failed to publish audit event %s", event_type)
