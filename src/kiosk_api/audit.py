"""
Audit events and the database-backed audit sink.

Audit logging is fire-and-forget: sinks never raise and never retry.
A failed write is logged and dropped.
"""

import logging
import uuid
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field

from .errors import AuditLogFailure
from .models import EventLog

logger = logging.getLogger(__name__)

ALLOWED_LEVELS = {"audit", "info", "warn", "error", "debug"}
ALLOWED_SOURCES = {"client", "server", "trigger"}


class AuditActor(BaseModel):
    type: Optional[str] = None
    id: Optional[Union[int, str]] = None
    name: Optional[str] = None
    department_id: Optional[int] = None
    department_name: Optional[str] = None


class AuditResource(BaseModel):
    type: Optional[str] = None
    id: Optional[Union[int, str]] = None


# PUBLIC_INTERFACE
class AuditEvent(BaseModel):
    """Structured audit record accepted by every sink."""
    event_type: str
    level: str = "info"
    action: Optional[str] = None
    actor: AuditActor = Field(default_factory=AuditActor)
    resource: AuditResource = Field(default_factory=AuditResource)
    source: str = "client"
    correlation_id: Optional[str] = None
    context: Optional[Dict[str, Any]] = None


def _str_or_none(value):
    return value if isinstance(value, str) else None


def _id_or_none(value):
    if isinstance(value, bool):
        return None
    if isinstance(value, (str, int)):
        return str(value)
    return None


# PUBLIC_INTERFACE
def normalize_event(raw: Dict[str, Any], ip_address=None, user_agent=None) -> Dict[str, Any]:
    """
    Coerces an untrusted event payload into EventLog column values.
    Unknown levels fall back to "info", unknown sources to "client".

    Raises:
        ValueError: when event_type is missing or not a string.
    """
    event_type = _str_or_none(raw.get("event_type"))
    if not event_type:
        raise ValueError("Missing event_type")

    level = _str_or_none(raw.get("level")) or "info"
    source = _str_or_none(raw.get("source")) or "client"
    actor = raw.get("actor") if isinstance(raw.get("actor"), dict) else {}
    resource = raw.get("resource") if isinstance(raw.get("resource"), dict) else {}
    department_id = actor.get("department_id")
    context = raw.get("context")

    return {
        "event_type": event_type,
        "level": level if level in ALLOWED_LEVELS else "info",
        "action": _str_or_none(raw.get("action")),
        "actor_type": _str_or_none(actor.get("type")),
        "actor_id": _id_or_none(actor.get("id")),
        "actor_name": _str_or_none(actor.get("name")),
        "department_id": department_id if isinstance(department_id, int) and not isinstance(department_id, bool) else None,
        "department_name": _str_or_none(actor.get("department_name")),
        "resource_type": _str_or_none(resource.get("type")),
        "resource_id": _id_or_none(resource.get("id")),
        "source": source if source in ALLOWED_SOURCES else "client",
        "ip_address": ip_address,
        "user_agent": user_agent,
        "correlation_id": _str_or_none(raw.get("correlation_id")) or str(uuid.uuid4()),
        "context": context if isinstance(context, dict) else None,
    }


def _as_payload(event: Union[AuditEvent, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(event, AuditEvent):
        return event.model_dump(mode="json")
    return dict(event)


# PUBLIC_INTERFACE
class DatabaseAuditSink:
    """
    Writes audit events to the event_logs table using its own short-lived
    database session, so a failed audit write never disturbs the caller's
    transaction.
    """

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def _insert(self, values: Dict[str, Any]) -> None:
        db = self._session_factory()
        try:
            db.add(EventLog(**values))
            db.commit()
        except Exception as e:  # noqa: BLE001
            db.rollback()
            raise AuditLogFailure(str(e)) from e
        finally:
            db.close()

    def record(self, event: Union[AuditEvent, Dict[str, Any]], ip_address=None, user_agent=None) -> None:
        """
        Records one event.

        Raises:
            ValueError: the event has no event_type.
            AuditLogFailure: the insert failed.
        """
        self._insert(normalize_event(_as_payload(event), ip_address, user_agent))

    # PUBLIC_INTERFACE
    def log_event(self, event: Union[AuditEvent, Dict[str, Any]], ip_address=None, user_agent=None) -> None:
        """Records one event. Never raises."""
        try:
            self.record(event, ip_address, user_agent)
        except (AuditLogFailure, ValueError) as e:
            logger.warning("Dropping audit event: %s", e)


def actor_from_identity(identity) -> AuditActor:
    return AuditActor(
        type="employee",
        id=identity.id,
        name=identity.name,
        department_name=identity.department,
    )
