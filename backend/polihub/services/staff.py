import logging
import re
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.orm import Session

from polihub.core.errors import AccountLocked, InputValidationError, Unauthenticated
from polihub.core.metrics import increment_counter
from polihub.core.permissions import (
    AllPermissions,
    PermissionSet,
    normalize_role,
    parse_permission_set,
    permission_set_from_names,
    role_template,
    serialize_permission_set,
)
from polihub.core.security import hash_password, verify_password
from polihub.core.utils import env_int, utc_now_naive
from polihub.db.models.staff import Staff

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
STAFF_MAX_FAILED_LOGINS = env_int("STAFF_MAX_FAILED_LOGINS", 5)
STAFF_LOCK_MINUTES = env_int("STAFF_LOCK_MINUTES", 15)
MIN_PASSWORD_LENGTH = 8


def normalize_email(value: str) -> str:
    return value.strip().lower()


def parse_admin_emails(raw: str) -> list[str]:
    emails = [normalize_email(x) for x in raw.split(",") if x.strip()]
    return sorted(set(emails))


def validate_email(email: str) -> None:
    if not EMAIL_RE.match(email):
        raise InputValidationError("Invalid email format")


def get_staff_by_email(db: Session, email: str) -> Staff | None:
    return db.query(Staff).filter(Staff.email == normalize_email(email)).first()


def provision_staff(
    db: Session,
    *,
    email: str,
    password: str,
    role: str,
    permissions: list[str] | None = None,
) -> Staff:
    """Create a staff account; without explicit permissions the role template is copied in."""
    email = normalize_email(email)
    validate_email(email)
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise InputValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if get_staff_by_email(db, email) is not None:
        raise InputValidationError("Staff email already exists")

    role = normalize_role(role)
    permission_set = role_template(role) if permissions is None else permission_set_from_names(permissions)
    staff = Staff(
        email=email,
        hashed_password=hash_password(password),
        role=role,
        permissions_raw=serialize_permission_set(permission_set),
        is_active=True,
        token_version=0,
        failed_logins=0,
        locked_until=None,
        last_login_at=None,
        created_at=utc_now_naive(),
    )
    db.add(staff)
    db.commit()
    db.refresh(staff)
    logger.info("staff_provisioned staff_id=%s role=%s", staff.id, role)
    return staff


def set_staff_permissions(db: Session, staff: Staff, permissions: PermissionSet) -> Staff:
    staff.permissions_raw = serialize_permission_set(permissions)
    db.commit()
    db.refresh(staff)
    return staff


def set_staff_role(db: Session, staff: Staff, role: str) -> Staff:
    staff.role = normalize_role(role)
    db.commit()
    db.refresh(staff)
    return staff


def revoke_staff_sessions(db: Session, staff: Staff) -> Staff:
    staff.token_version = int(staff.token_version or 0) + 1
    db.commit()
    db.refresh(staff)
    return staff


def deactivate_staff(db: Session, staff: Staff) -> Staff:
    staff.is_active = False
    staff.token_version = int(staff.token_version or 0) + 1
    db.commit()
    db.refresh(staff)
    logger.info("staff_deactivated staff_id=%s", staff.id)
    return staff


def staff_login(db: Session, email: str, password: str) -> Staff:
    """Check staff credentials with lockout after repeated failures."""
    staff = get_staff_by_email(db, email)
    if staff is None or not staff.is_active:
        increment_counter("staff_login_total", result="unknown")
        raise Unauthenticated("Invalid credentials")

    now = utc_now_naive()
    if staff.locked_until and staff.locked_until > now:
        increment_counter("staff_login_total", result="locked")
        raise AccountLocked(staff.locked_until.isoformat())

    if not verify_password(password, staff.hashed_password):
        staff.failed_logins = int(staff.failed_logins or 0) + 1
        if staff.failed_logins >= STAFF_MAX_FAILED_LOGINS:
            staff.locked_until = now + timedelta(minutes=STAFF_LOCK_MINUTES)
            staff.failed_logins = 0
            db.commit()
            increment_counter("staff_login_total", result="locked")
            logger.warning("staff_locked staff_id=%s until=%s", staff.id, staff.locked_until.isoformat())
            raise AccountLocked(staff.locked_until.isoformat())
        db.commit()
        increment_counter("staff_login_total", result="bad_password")
        raise Unauthenticated("Invalid credentials")

    staff.failed_logins = 0
    staff.locked_until = None
    staff.last_login_at = now
    db.commit()
    db.refresh(staff)
    increment_counter("staff_login_total", result="success")
    return staff


@dataclass
class AdminSyncResult:
    created: int = 0
    promoted: int = 0
    skipped_create_without_password: int = 0


def sync_admin_staff(db: Session, admin_emails: list[str], admin_password: str | None) -> AdminSyncResult:
    """Make sure every bootstrap admin email has an active wildcard admin account."""
    result = AdminSyncResult()
    wildcard = serialize_permission_set(AllPermissions())
    by_email = {s.email.lower(): s for s in db.query(Staff).filter(Staff.email.in_(admin_emails)).all()}

    for email in admin_emails:
        existing = by_email.get(email)
        if existing:
            changed = False
            if existing.role != "admin":
                existing.role = "admin"
                changed = True
            if existing.permissions_raw != wildcard:
                existing.permissions_raw = wildcard
                changed = True
            if not existing.is_active:
                existing.is_active = True
                changed = True
            if changed:
                result.promoted += 1
            continue

        if not admin_password:
            result.skipped_create_without_password += 1
            continue

        db.add(
            Staff(
                email=email,
                hashed_password=hash_password(admin_password),
                role="admin",
                permissions_raw=wildcard,
                is_active=True,
                token_version=0,
                failed_logins=0,
                created_at=utc_now_naive(),
            )
        )
        result.created += 1

    db.commit()
    return result


def serialize_staff(staff: Staff) -> dict:
    return {
        "id": staff.id,
        "email": staff.email,
        "role": staff.role,
        "permissions": parse_permission_set(staff.permissions_raw).names(),
        "is_active": staff.is_active,
        "locked_until": staff.locked_until.isoformat() if staff.locked_until else None,
        "last_login_at": staff.last_login_at.isoformat() if staff.last_login_at else None,
        "created_at": staff.created_at.isoformat() if staff.created_at else None,
    }
