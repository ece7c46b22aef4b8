import logging
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from polihub.core.api_response import success_response_payload
from polihub.core.identity import serialize_user
from polihub.core.paging import paged_payload
from polihub.core.security import require_permission
from polihub.db.models.moderation_flag import ModerationFlag
from polihub.db.models.staff import Staff
from polihub.db.models.user import User
from polihub.db.session import get_db
from polihub.schemas.content import FlagResolve, StandingUpdate
from polihub.services import moderation, trust
from polihub.services.audit import log_staff_action

router = APIRouter(prefix="/api/moderation", tags=["moderation"])
logger = logging.getLogger(__name__)


def get_user_by_uuid_or_404(db: Session, user_uuid: str) -> User:
    user = db.query(User).filter(User.uuid == user_uuid).first()
    if not user or user.is_deleted:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.get("/flags")
def list_moderation_flags(
    request: Request,
    status: Literal["pending", "cleared", "upheld", "all"] = "pending",
    page: int = 1,
    page_size: int = 50,
    db: Session = Depends(get_db),
    _staff: Staff = Depends(require_permission("moderation.review")),
):
    query = moderation.list_flags(db, status)
    return success_response_payload(
        request,
        data=paged_payload(query, page=page, page_size=page_size, serializer=moderation.serialize_flag),
    )


@router.post("/flags/{flag_id}/resolve")
def resolve_moderation_flag(
    flag_id: int,
    payload: FlagResolve,
    request: Request,
    db: Session = Depends(get_db),
    staff: Staff = Depends(require_permission("moderation.review")),
):
    flag = db.get(ModerationFlag, flag_id)
    if not flag:
        raise HTTPException(status_code=404, detail="Flag not found")
    log_staff_action(
        db,
        request,
        staff,
        "moderation.resolve",
        target_ref=f"flag:{flag.id}",
        meta_json={"outcome": payload.outcome, "note": payload.note},
    )
    flag = moderation.resolve_flag(
        db,
        flag,
        moderation.FlagStatus(payload.outcome),
        staff,
        note=payload.note,
    )
    return success_response_payload(request, data=moderation.serialize_flag(flag))


@router.post("/users/{user_uuid}/standing")
def update_user_standing(
    user_uuid: str,
    payload: StandingUpdate,
    request: Request,
    db: Session = Depends(get_db),
    staff: Staff = Depends(require_permission("trust.manage")),
):
    user = get_user_by_uuid_or_404(db, user_uuid)
    previous = user.standing
    user = trust.set_standing(
        db,
        user.id,
        trust.Standing(payload.standing),
        actor_staff_id=staff.id,
        reason=payload.reason,
    )
    log_staff_action(
        db,
        request,
        staff,
        "trust.standing",
        target_ref=f"user:{user.uuid}",
        meta_json={"old": previous, "new": user.standing, "reason": payload.reason},
    )
    db.commit()
    db.refresh(user)
    return success_response_payload(request, data=serialize_user(user))
