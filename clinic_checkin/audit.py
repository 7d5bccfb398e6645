"""
audit.py
========
Append-only audit sink for check-in lifecycle changes.

Entries are written in their own database session after the lifecycle
transaction has committed, so a failed audit write never undoes a transition.
"""

import datetime
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from .db import SessionLocal
from .errors import AuditWriteFailure
from .models import AuditLog, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    """Staff member performing an operation."""
    id: str = "system"
    role: str = "staff"


@dataclass
class AuditEntry:
    actor: Actor
    action: str
    target_id: Optional[int]
    before_state: Optional[str]
    after_state: Optional[str]
    timestamp: datetime.datetime = field(default_factory=utcnow)
    metadata: Dict[str, Any] = field(default_factory=dict)


class DatabaseAuditSink:
    """Stores audit entries in the audit_logs table."""

    def __init__(self, session_factory=None):
        self._session_factory = session_factory or SessionLocal

    def write(self, entry: AuditEntry) -> None:
        db = self._session_factory()
        try:
            db.add(AuditLog(
                actor=entry.actor.id,
                actor_role=entry.actor.role,
                action=entry.action,
                target_id=entry.target_id,
                before_state=entry.before_state,
                after_state=entry.after_state,
                timestamp=entry.timestamp,
                details=entry.metadata,
            ))
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise AuditWriteFailure(
                f"Could not store audit record '{entry.action}' for session {entry.target_id}: {exc}"
            ) from exc
        finally:
            db.close()


def emit(sink, entry: AuditEntry) -> bool:
    """
    Write `entry` through `sink` without letting a failure propagate.
    Returns False when the record could not be stored.
    """
    try:
        sink.write(entry)
    except AuditWriteFailure as exc:
        logger.error(
            "Audit write failed: %s", exc.message,
            extra={"audit_action": entry.action, "session_id": entry.target_id},
        )
        return False
    return True
