import logging
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from polihub.core.api_response import success_response_payload
from polihub.core.errors import InputValidationError
from polihub.core.identity import normalize_county
from polihub.core.paging import paged_payload
from polihub.core.permissions import permission_set_from_names
from polihub.core.security import require_permission
from polihub.core.utils import utc_now_naive
from polihub.db.models.politician import Politician
from polihub.db.models.staff import Staff
from polihub.db.session import get_db
from polihub.services.audit import list_audit_query, log_staff_action, serialize_audit_entry
from polihub.services.staff import (
    deactivate_staff,
    provision_staff,
    serialize_staff,
    set_staff_permissions,
    set_staff_role,
)

router = APIRouter(prefix="/api/admin", tags=["admin"])
logger = logging.getLogger(__name__)


class StaffCreateIn(BaseModel):
    email: str
    password: str
    role: str = "viewer"
    permissions: list[str] | None = None


class StaffPermissionsIn(BaseModel):
    permissions: list[str]
    role: str | None = None


class PoliticianIn(BaseModel):
    name: str
    party: str
    position: str
    county: str | None = None


class PoliticianUpdateIn(BaseModel):
    name: str | None = None
    party: str | None = None
    position: str | None = None
    county: str | None = None


def _get_staff_or_404(db: Session, staff_id: int) -> Staff:
    staff = db.get(Staff, staff_id)
    if not staff:
        raise HTTPException(status_code=404, detail="Staff user not found")
    return staff


def _get_politician_or_404(db: Session, politician_id: int) -> Politician:
    politician = db.get(Politician, politician_id)
    if not politician or politician.is_deleted:
        raise HTTPException(status_code=404, detail="Politician not found")
    return politician


def _serialize_politician(politician: Politician) -> dict:
    return {
        "id": politician.id,
        "name": politician.name,
        "party": politician.party,
        "position": politician.position,
        "county": politician.county,
        "updated_at": politician.updated_at.isoformat() if politician.updated_at else None,
    }


def _require_text(value: str | None, field: str) -> str:
    text = (value or "").strip()
    if not text:
        raise InputValidationError(f"{field} is required")
    return text


@router.get("/staff")
def list_staff(
    request: Request,
    page: int = 1,
    page_size: int = 50,
    db: Session = Depends(get_db),
    _admin: Staff = Depends(require_permission("staff.manage")),
):
    query = db.query(Staff).order_by(Staff.id.asc())
    return success_response_payload(
        request,
        data=paged_payload(query, page=page, page_size=page_size, serializer=serialize_staff),
    )


@router.post("/staff")
def create_staff(
    payload: StaffCreateIn,
    request: Request,
    db: Session = Depends(get_db),
    admin: Staff = Depends(require_permission("staff.manage")),
):
    staff = provision_staff(
        db,
        email=payload.email,
        password=payload.password,
        role=payload.role,
        permissions=payload.permissions,
    )
    log_staff_action(
        db,
        request,
        admin,
        "staff.create",
        target_ref=f"staff:{staff.id}",
        meta_json={"role": staff.role},
    )
    db.commit()
    return success_response_payload(request, data=serialize_staff(staff))


@router.put("/staff/{staff_id}/permissions")
def update_staff_permissions(
    staff_id: int,
    payload: StaffPermissionsIn,
    request: Request,
    db: Session = Depends(get_db),
    admin: Staff = Depends(require_permission("staff.manage")),
):
    staff = _get_staff_or_404(db, staff_id)
    previous = serialize_staff(staff)["permissions"]
    if payload.role is not None:
        staff = set_staff_role(db, staff, payload.role)
    staff = set_staff_permissions(db, staff, permission_set_from_names(payload.permissions))
    log_staff_action(
        db,
        request,
        admin,
        "staff.permissions",
        target_ref=f"staff:{staff.id}",
        meta_json={"old": previous, "new": serialize_staff(staff)["permissions"], "role": staff.role},
    )
    db.commit()
    return success_response_payload(request, data=serialize_staff(staff))


@router.post("/staff/{staff_id}/deactivate")
def deactivate_staff_account(
    staff_id: int,
    request: Request,
    db: Session = Depends(get_db),
    admin: Staff = Depends(require_permission("staff.manage")),
):
    staff = _get_staff_or_404(db, staff_id)
    if staff.id == admin.id:
        raise InputValidationError("You cannot deactivate your own account")
    staff = deactivate_staff(db, staff)
    log_staff_action(db, request, admin, "staff.deactivate", target_ref=f"staff:{staff.id}")
    db.commit()
    return success_response_payload(request, data=serialize_staff(staff))


@router.get("/audit")
def list_audit_logs(
    request: Request,
    page: int = 1,
    page_size: int = 50,
    action: str = "",
    actor_staff_id: int | None = None,
    sort_dir: Literal["desc", "asc"] = "desc",
    db: Session = Depends(get_db),
    _admin: Staff = Depends(require_permission("audit.view")),
):
    query = list_audit_query(db, action=action, actor_staff_id=actor_staff_id, sort_dir=sort_dir)
    return success_response_payload(
        request,
        data=paged_payload(query, page=page, page_size=page_size, serializer=serialize_audit_entry),
    )


@router.post("/politicians")
def create_politician(
    payload: PoliticianIn,
    request: Request,
    db: Session = Depends(get_db),
    staff: Staff = Depends(require_permission("create_politician")),
):
    politician = Politician(
        name=_require_text(payload.name, "name"),
        party=_require_text(payload.party, "party"),
        position=_require_text(payload.position, "position"),
        county=normalize_county(payload.county),
        is_deleted=False,
        updated_at=utc_now_naive(),
    )
    db.add(politician)
    db.flush()
    log_staff_action(db, request, staff, "politician.create", target_ref=f"politician:{politician.id}")
    db.commit()
    db.refresh(politician)
    return success_response_payload(request, data=_serialize_politician(politician))


@router.put("/politicians/{politician_id}")
def update_politician(
    politician_id: int,
    payload: PoliticianUpdateIn,
    request: Request,
    db: Session = Depends(get_db),
    staff: Staff = Depends(require_permission("edit_politician")),
):
    politician = _get_politician_or_404(db, politician_id)
    changes = payload.model_dump(exclude_unset=True)
    for field in ("name", "party", "position"):
        if field in changes:
            setattr(politician, field, _require_text(changes[field], field))
    if "county" in changes:
        politician.county = normalize_county(changes["county"])
    politician.updated_at = utc_now_naive()
    log_staff_action(
        db,
        request,
        staff,
        "politician.update",
        target_ref=f"politician:{politician.id}",
        meta_json={"fields": sorted(changes)},
    )
    db.commit()
    db.refresh(politician)
    return success_response_payload(request, data=_serialize_politician(politician))


@router.delete("/politicians/{politician_id}")
def delete_politician(
    politician_id: int,
    request: Request,
    db: Session = Depends(get_db),
    staff: Staff = Depends(require_permission("delete_politician")),
):
    politician = _get_politician_or_404(db, politician_id)
    politician.is_deleted = True
    politician.updated_at = utc_now_naive()
    log_staff_action(db, request, staff, "politician.delete", target_ref=f"politician:{politician.id}")
    db.commit()
    return success_response_payload(request, data={"ok": True, "id": politician.id})
