import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from polihub.api.moderation import get_user_by_uuid_or_404
from polihub.core.api_response import success_response_payload
from polihub.core.identity import serialize_user
from polihub.core.security import require_permission
from polihub.db.models.staff import Staff
from polihub.db.session import get_db
from polihub.schemas.content import TrustEventCreate
from polihub.services import trust
from polihub.services.audit import log_staff_action

router = APIRouter(prefix="/api/trust", tags=["trust"])
logger = logging.getLogger(__name__)


@router.post("/events")
def create_trust_event(
    payload: TrustEventCreate,
    request: Request,
    db: Session = Depends(get_db),
    staff: Staff = Depends(require_permission("trust.manage")),
):
    user = get_user_by_uuid_or_404(db, payload.user_uuid)
    adjustment = trust.adjust(
        db,
        user.id,
        payload.delta,
        trust.CAUSE_MANUAL,
        cause_ref=payload.cause_ref,
        reason=payload.reason,
        actor_staff_id=staff.id,
    )
    log_staff_action(
        db,
        request,
        staff,
        "trust.adjust",
        target_ref=f"user:{user.uuid}",
        meta_json={"delta": payload.delta, "applied": adjustment.event.applied_delta},
    )
    db.commit()
    db.refresh(user)
    return success_response_payload(request, data={
        "event": trust.serialize_event(adjustment.event),
        "applied": adjustment.applied,
        "user": serialize_user(user),
    })


@router.get("/users/{user_uuid}/events")
def list_trust_events(
    user_uuid: str,
    request: Request,
    limit: int = 100,
    db: Session = Depends(get_db),
    _staff: Staff = Depends(require_permission("trust.manage")),
):
    user = get_user_by_uuid_or_404(db, user_uuid)
    events = trust.list_events(db, user.id, limit=max(1, min(limit, 500)))
    return success_response_payload(request, data={
        "user": serialize_user(user),
        "items": [trust.serialize_event(event) for event in events],
    })
