"""
Append-only audit trail.

Every mutating service call writes one ``AuditEvent``; the history endpoints
read them back per entity, newest first.
"""
import json
from typing import Any

from flask import g, has_request_context, request
from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from app.qms.models import AuditEvent, User


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    in_request = has_request_context()
    rid = request_id or (getattr(g, "request_id", None) if in_request else None)
    ev = AuditEvent(
        request_id=rid,
        actor_user_id=actor.id if actor else None,
        actor_user_email=actor.email if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
        client_ip=request.remote_addr if in_request else None,
    )
    s.add(ev)
    return ev


def entity_history(s: Session, entities: list[tuple[str, Any]], *, limit: int = 200) -> list[AuditEvent]:
    """Events for any of the given (entity_type, entity_id) pairs."""
    if not entities:
        return []
    clauses = [and_(AuditEvent.entity_type == etype, AuditEvent.entity_id == str(eid)) for etype, eid in entities]
    return (
        s.query(AuditEvent)
        .filter(or_(*clauses))
        .order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc())
        .limit(limit)
        .all()
    )


def serialize_event(ev: AuditEvent) -> dict[str, Any]:
    return {
        "id": ev.id,
        "created_at": ev.created_at.isoformat() if ev.created_at else None,
        "action": ev.action,
        "entity_type": ev.entity_type,
        "entity_id": ev.entity_id,
        "actor_email": ev.actor_user_email,
        "reason": ev.reason,
        "metadata": json.loads(ev.metadata_json) if ev.metadata_json else None,
        "request_id": ev.request_id,
    }
