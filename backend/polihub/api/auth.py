import logging

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from polihub.core.api_response import success_response_payload
from polihub.core.errors import Unauthenticated
from polihub.core.identity import generate_identity, serialize_user
from polihub.core.metrics import increment_counter
from polihub.core.observability import log_business_event
from polihub.core.permissions import parse_permission_set, permissions_catalog_payload
from polihub.core.rate_limit import auth_limiter, limit_by_ip
from polihub.core.security import (
    Principal,
    create_staff_token,
    create_user_token,
    get_current_principal,
    get_current_staff,
    get_current_user,
    global_logout,
    oauth2_scheme,
    require_permission,
    resolve_principal,
)
from polihub.db.models.staff import Staff
from polihub.db.models.user import User
from polihub.db.session import get_db
from polihub.services.audit import log_staff_action
from polihub.services.staff import revoke_staff_sessions, serialize_staff, staff_login

router = APIRouter(prefix="/api", tags=["auth"])
logger = logging.getLogger(__name__)


class IdentityIn(BaseModel):
    nickname: str | None = None
    emoji: str | None = None
    county: str | None = None


class StaffLoginIn(BaseModel):
    email: str
    password: str


def _token_payload(user: User, token: str) -> dict:
    return {"user": serialize_user(user), "access_token": token, "token_type": "bearer"}


@router.post("/auth/identity", dependencies=[Depends(limit_by_ip(auth_limiter))])
def create_or_resume_identity(
    request: Request,
    payload: IdentityIn | None = None,
    token: str | None = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
):
    if token:
        principal = resolve_principal(db, token)
        if principal.kind != "user":
            raise Unauthenticated("Visitor identity required")
        request.state.principal = principal
        user = db.get(User, principal.subject_id)
        log_business_event(logger, request, event="identity.resume", uuid=user.uuid)
        return success_response_payload(request, data=_token_payload(user, token))

    payload = payload or IdentityIn()
    user = generate_identity(db, nickname=payload.nickname, emoji=payload.emoji, county=payload.county)
    log_business_event(logger, request, event="identity.create", uuid=user.uuid)
    return success_response_payload(request, data=_token_payload(user, create_user_token(db, user)))


@router.get("/users/me")
def me(request: Request, user: User = Depends(get_current_user)):
    return success_response_payload(request, data=serialize_user(user))


@router.post("/auth/staff/login", dependencies=[Depends(limit_by_ip(auth_limiter))])
def login_staff(payload: StaffLoginIn, request: Request, db: Session = Depends(get_db)):
    staff = staff_login(db, payload.email, payload.password)
    log_staff_action(db, request, staff, "staff.login", target_ref=f"staff:{staff.id}")
    db.commit()
    token = create_staff_token(db, staff)
    return success_response_payload(request, data={
        "access_token": token,
        "token_type": "bearer",
        "staff": serialize_staff(staff),
    })


@router.post("/auth/staff/logout")
def logout_staff(request: Request, db: Session = Depends(get_db), staff: Staff = Depends(get_current_staff)):
    log_staff_action(db, request, staff, "staff.logout", target_ref=f"staff:{staff.id}")
    revoke_staff_sessions(db, staff)
    return success_response_payload(request, data={"ok": True})


@router.get("/auth/staff/me")
def staff_me(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    staff: Staff = Depends(get_current_staff),
):
    data = serialize_staff(staff)
    data["permissions"] = principal.permissions.names()
    return success_response_payload(request, data=data)


@router.get("/auth/permissions")
def permissions_catalog(request: Request, staff: Staff = Depends(get_current_staff)):
    data = permissions_catalog_payload()
    data["granted"] = parse_permission_set(staff.permissions_raw).names()
    return success_response_payload(request, data=data)


@router.post("/auth/global-logout")
def logout_everyone(
    request: Request,
    db: Session = Depends(get_db),
    staff: Staff = Depends(require_permission("sessions.global_logout")),
):
    log_staff_action(db, request, staff, "sessions.global_logout")
    marker = global_logout(db, actor_staff_id=staff.id)
    increment_counter("global_logout_total")
    return success_response_payload(request, data={
        "version": marker.version,
        "invalidated_at": marker.invalidated_at.isoformat(),
    })
