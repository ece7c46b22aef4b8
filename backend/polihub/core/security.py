import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Literal

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from polihub.core.errors import Unauthenticated, Unauthorized
from polihub.core.permissions import (
    NO_PERMISSIONS,
    PermissionSet,
    community_permission_set,
    has_permission,
    parse_permission_set,
)
from polihub.core.utils import env_int, utc_now_naive
from polihub.db.models.global_logout_marker import GlobalLogoutMarker
from polihub.db.models.staff import Staff
from polihub.db.models.user import User
from polihub.db.session import get_db

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
USER_TOKEN_EXPIRE_DAYS = env_int("USER_TOKEN_EXPIRE_DAYS", 30)
STAFF_TOKEN_EXPIRE_MINUTES = env_int("STAFF_TOKEN_EXPIRE_MINUTES", 1440)
TRUST_HIGH_THRESHOLD = env_int("TRUST_HIGH_THRESHOLD", 80)

TokenKind = Literal["user", "staff"]

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/staff/login", auto_error=False)


@dataclass
class Principal:
    kind: TokenKind
    subject_id: int
    role: str
    permissions: PermissionSet = field(default=NO_PERMISSIONS)
    uuid: str | None = None
    email: str | None = None
    trust_score: int | None = None
    standing: str | None = None

    @property
    def is_staff(self) -> bool:
        return self.kind == "staff"


def _get_secret_key() -> str:
    secret = os.getenv("SECRET_KEY")
    if not secret:
        raise RuntimeError("SECRET_KEY is not set")
    return secret


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    try:
        return pwd_context.verify(password, hashed)
    except ValueError:
        # unrecognized or corrupted hash
        return False


def get_logout_marker(db: Session) -> GlobalLogoutMarker | None:
    return db.query(GlobalLogoutMarker).order_by(GlobalLogoutMarker.id.asc()).first()


def current_logout_version(db: Session) -> int:
    marker = get_logout_marker(db)
    return int(marker.version) if marker else 0


def global_logout(db: Session, *, actor_staff_id: int | None = None) -> GlobalLogoutMarker:
    """Invalidate every token issued so far by bumping the global logout version."""
    marker = (
        db.query(GlobalLogoutMarker)
        .order_by(GlobalLogoutMarker.id.asc())
        .with_for_update()
        .first()
    )
    now = utc_now_naive()
    if marker is None:
        marker = GlobalLogoutMarker(version=0, invalidated_at=None)
        db.add(marker)
    if marker.invalidated_at is not None and now <= marker.invalidated_at:
        # clock went backwards; keep the marker monotonic
        now = marker.invalidated_at + timedelta(microseconds=1)
    marker.version = int(marker.version or 0) + 1
    marker.invalidated_at = now
    marker.actor_staff_id = actor_staff_id
    db.commit()
    db.refresh(marker)
    logger.warning("global_logout version=%s actor_staff_id=%s", marker.version, actor_staff_id)
    return marker


def _encode(payload: dict, expires_in: timedelta) -> str:
    issued_at = datetime.now(timezone.utc)
    to_encode = payload.copy()
    to_encode.update({"iat": issued_at, "exp": issued_at + expires_in})
    return jwt.encode(to_encode, _get_secret_key(), algorithm=ALGORITHM)


def create_user_token(db: Session, user: User) -> str:
    return _encode(
        {"sub": user.uuid, "kind": "user", "gv": current_logout_version(db)},
        timedelta(days=USER_TOKEN_EXPIRE_DAYS),
    )


def create_staff_token(db: Session, staff: Staff) -> str:
    return _encode(
        {
            "sub": str(staff.id),
            "kind": "staff",
            "role": staff.role,
            "tv": int(staff.token_version or 0),
            "gv": current_logout_version(db),
        },
        timedelta(minutes=STAFF_TOKEN_EXPIRE_MINUTES),
    )


def _decode(token: str) -> dict:
    try:
        return jwt.decode(token, _get_secret_key(), algorithms=[ALGORITHM])
    except JWTError as exc:
        raise Unauthenticated("Invalid or expired token") from exc


def principal_for_user(user: User) -> Principal:
    return Principal(
        kind="user",
        subject_id=user.id,
        role="anonymous",
        permissions=community_permission_set(user.standing, int(user.trust_score or 0), TRUST_HIGH_THRESHOLD),
        uuid=user.uuid,
        trust_score=int(user.trust_score or 0),
        standing=user.standing,
    )


def principal_for_staff(staff: Staff) -> Principal:
    return Principal(
        kind="staff",
        subject_id=staff.id,
        role=staff.role,
        permissions=parse_permission_set(staff.permissions_raw),
        email=staff.email,
    )


def resolve_principal(db: Session, token: str | None) -> Principal:
    if not token:
        raise Unauthenticated("Authentication required")
    payload = _decode(token)

    kind = payload.get("kind")
    subject = payload.get("sub")
    global_version = payload.get("gv")
    if kind not in {"user", "staff"} or not subject or not isinstance(global_version, int):
        raise Unauthenticated("Malformed token")
    if global_version < current_logout_version(db):
        raise Unauthenticated("Session has been invalidated, please re-authenticate")

    if kind == "user":
        user = db.query(User).filter(User.uuid == str(subject)).first()
        if not user or user.is_deleted:
            raise Unauthenticated("User not found")
        return principal_for_user(user)

    try:
        staff_id = int(subject)
    except (TypeError, ValueError) as exc:
        raise Unauthenticated("Malformed token") from exc
    staff = db.get(Staff, staff_id)
    if not staff or not staff.is_active:
        raise Unauthenticated("Staff user not found")
    token_version = payload.get("tv")
    if token_version is None or int(token_version) != int(staff.token_version or 0):
        raise Unauthenticated("Session has been invalidated, please re-authenticate")
    return principal_for_staff(staff)


def get_current_principal(
    request: Request,
    token: str | None = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> Principal:
    principal = resolve_principal(db, token)
    request.state.principal = principal
    return principal


def get_current_user(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> User:
    if principal.kind != "user":
        raise Unauthenticated("Visitor identity required")
    user = db.get(User, principal.subject_id)
    if not user:
        raise Unauthenticated("User not found")
    return user


def get_current_staff(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> Staff:
    if principal.kind != "staff":
        raise Unauthenticated("Staff authentication required")
    staff = db.get(Staff, principal.subject_id)
    if not staff:
        raise Unauthenticated("Staff user not found")
    return staff


def require_permission(permission: str):
    def _dependency(
        principal: Principal = Depends(get_current_principal),
        staff: Staff = Depends(get_current_staff),
    ) -> Staff:
        if not has_permission(principal.permissions, permission):
            logger.info("permission_denied staff_id=%s permission=%s", staff.id, permission)
            raise Unauthorized(permission)
        return staff

    return _dependency
