from datetime import timedelta

import pytest

from polihub.core.errors import AccountLocked, InputValidationError, Unauthenticated
from polihub.core.permissions import AllPermissions, parse_permission_set
from polihub.core.utils import utc_now_naive
from polihub.services import staff as staff_service


def test_provision_copies_role_template_and_validates(db_session):
    staff = staff_service.provision_staff(
        db_session, email=" Editor@Test.local ", password="password123", role="editor"
    )
    assert staff.email == "editor@test.local"
    assert parse_permission_set(staff.permissions_raw).names() == [
        "create_politician",
        "edit_politician",
        "manage_content",
    ]

    with pytest.raises(InputValidationError):
        staff_service.provision_staff(db_session, email="editor@test.local", password="password123", role="editor")
    with pytest.raises(InputValidationError):
        staff_service.provision_staff(db_session, email="not-an-email", password="password123", role="editor")
    with pytest.raises(InputValidationError):
        staff_service.provision_staff(db_session, email="short@test.local", password="short", role="editor")


def test_explicit_permissions_override_template(db_session):
    staff = staff_service.provision_staff(
        db_session,
        email="ed@test.local",
        password="password123",
        role="editor",
        permissions=["edit_politician"],
    )
    assert parse_permission_set(staff.permissions_raw).names() == ["edit_politician"]


def test_login_success_resets_counters(db_session):
    staff = staff_service.provision_staff(db_session, email="mod@test.local", password="password123", role="moderator")
    staff.failed_logins = 2
    db_session.commit()

    logged_in = staff_service.staff_login(db_session, "MOD@test.local", "password123")
    assert logged_in.id == staff.id
    assert logged_in.failed_logins == 0
    assert logged_in.last_login_at is not None


def test_repeated_failures_lock_the_account(db_session, monkeypatch):
    monkeypatch.setattr(staff_service, "STAFF_MAX_FAILED_LOGINS", 3)
    staff_service.provision_staff(db_session, email="mod@test.local", password="password123", role="moderator")

    for _ in range(2):
        with pytest.raises(Unauthenticated):
            staff_service.staff_login(db_session, "mod@test.local", "wrong-password")
    with pytest.raises(AccountLocked):
        staff_service.staff_login(db_session, "mod@test.local", "wrong-password")
    with pytest.raises(AccountLocked):
        staff_service.staff_login(db_session, "mod@test.local", "password123")


def test_lock_expires(db_session):
    staff = staff_service.provision_staff(db_session, email="mod@test.local", password="password123", role="moderator")
    staff.locked_until = utc_now_naive() - timedelta(minutes=1)
    db_session.commit()
    assert staff_service.staff_login(db_session, "mod@test.local", "password123").locked_until is None


def test_unknown_and_inactive_accounts_get_generic_error(db_session):
    with pytest.raises(Unauthenticated):
        staff_service.staff_login(db_session, "ghost@test.local", "password123")

    staff = staff_service.provision_staff(db_session, email="mod@test.local", password="password123", role="moderator")
    staff_service.deactivate_staff(db_session, staff)
    assert staff.token_version == 1
    with pytest.raises(Unauthenticated):
        staff_service.staff_login(db_session, "mod@test.local", "password123")


def test_sync_admin_staff_creates_and_promotes(db_session):
    existing = staff_service.provision_staff(
        db_session, email="boss@test.local", password="password123", role="viewer"
    )
    staff_service.deactivate_staff(db_session, existing)

    result = staff_service.sync_admin_staff(
        db_session,
        staff_service.parse_admin_emails("boss@test.local, NEW@test.local"),
        "bootstrap-pw",
    )
    assert result.created == 1
    assert result.promoted == 1

    db_session.refresh(existing)
    assert existing.is_active is True
    assert existing.role == "admin"
    assert isinstance(parse_permission_set(existing.permissions_raw), AllPermissions)
    assert staff_service.get_staff_by_email(db_session, "new@test.local") is not None


def test_sync_admin_staff_skips_creation_without_password(db_session):
    result = staff_service.sync_admin_staff(db_session, ["solo@test.local"], None)
    assert result.skipped_create_without_password == 1
    assert staff_service.get_staff_by_email(db_session, "solo@test.local") is None


def test_set_staff_role_keeps_account_permissions(db_session):
    staff = staff_service.provision_staff(
        db_session, email="mod@test.local", password="password123", role="moderator"
    )
    before = staff.permissions_raw

    staff = staff_service.set_staff_role(db_session, staff, " Editor ")
    assert staff.role == "editor"
    assert staff.permissions_raw == before

    staff = staff_service.set_staff_role(db_session, staff, "superuser")
    assert staff.role == "viewer"
