import logging

from fastapi import Request
from sqlalchemy.orm import Session

from polihub.core.metrics import increment_counter
from polihub.core.observability import log_business_event
from polihub.core.utils import client_ip, utc_now_naive
from polihub.db.models.staff import Staff
from polihub.db.models.staff_audit_log import StaffAuditLog

logger = logging.getLogger(__name__)


def log_staff_action(
    db: Session,
    request: Request,
    actor: Staff | None,
    action: str,
    target_ref: str | None = None,
    meta_json: dict | None = None,
) -> StaffAuditLog:
    """Append an audit row in the caller's transaction."""
    entry = StaffAuditLog(
        actor_staff_id=actor.id if actor else None,
        action=action,
        target_ref=target_ref,
        meta_json=meta_json,
        ip=client_ip(request),
        user_agent=request.headers.get("user-agent", "")[:255] or None,
        created_at=utc_now_naive(),
    )
    db.add(entry)
    db.flush()
    increment_counter("staff_action_total", action=action)
    log_business_event(
        logger,
        request,
        event="staff.action",
        action=action,
        actor_email=actor.email if actor else "-",
        target=target_ref or "-",
    )
    return entry


def list_audit_query(db: Session, *, action: str = "", actor_staff_id: int | None = None, sort_dir: str = "desc"):
    query = db.query(StaffAuditLog)
    if action:
        query = query.filter(StaffAuditLog.action == action)
    if actor_staff_id is not None:
        query = query.filter(StaffAuditLog.actor_staff_id == actor_staff_id)
    order = StaffAuditLog.id.asc() if sort_dir == "asc" else StaffAuditLog.id.desc()
    return query.order_by(order)


def serialize_audit_entry(entry: StaffAuditLog) -> dict:
    return {
        "id": entry.id,
        "actor_staff_id": entry.actor_staff_id,
        "action": entry.action,
        "target_ref": entry.target_ref,
        "meta": entry.meta_json or {},
        "ip": entry.ip,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }
