import json
from collections.abc import Generator
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from polihub.core.security import create_staff_token, create_user_token, hash_password
from polihub.db import models  # noqa: F401
from polihub.db.base import Base
from polihub.db.models.politician import Politician
from polihub.db.models.staff import Staff
from polihub.db.models.staff_audit_log import StaffAuditLog
from polihub.db.models.trust_score_event import TrustScoreEvent
from polihub.db.models.user import User
from polihub.db.session import get_db
from polihub.main import app


def _make_staff(
    *,
    email: str,
    role: str = "viewer",
    permissions=None,
    password_hash: str = "x",
    is_active: bool = True,
) -> Staff:
    return Staff(
        email=email,
        hashed_password=password_hash,
        role=role,
        permissions_raw=permissions if isinstance(permissions, str) or permissions is None else json.dumps(permissions),
        is_active=is_active,
        token_version=0,
        failed_logins=0,
        created_at=datetime(2026, 1, 1),
    )


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _extract_error_payload(response):
    payload = response.json()
    assert payload["ok"] is False
    assert "error" in payload
    assert "request_id" in payload
    return payload


def _extract_success_data(response):
    payload = response.json()
    assert payload["ok"] is True
    assert "data" in payload
    assert "request_id" in payload
    return payload["data"]


def _get_session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine, sessionmaker(bind=engine, autocommit=False, autoflush=False)


def _override_get_db(session_factory):
    def _get_db() -> Generator[Session, None, None]:
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    return _get_db


@pytest.fixture()
def api():
    engine, SessionLocal = _get_session_factory()
    app.router.on_startup.clear()
    app.router.on_shutdown.clear()
    app.dependency_overrides[get_db] = _override_get_db(SessionLocal)
    try:
        yield TestClient(app), SessionLocal
    finally:
        app.dependency_overrides.clear()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


def _staff_token(SessionLocal, **kwargs) -> tuple[int, str]:
    with SessionLocal() as db:
        staff = _make_staff(**kwargs)
        db.add(staff)
        db.commit()
        db.refresh(staff)
        return staff.id, create_staff_token(db, staff)


def _new_identity(client: TestClient) -> tuple[dict, str]:
    response = client.post("/api/auth/identity")
    assert response.status_code == 200
    data = _extract_success_data(response)
    return data["user"], data["access_token"]


def test_identity_created_once_and_resumed(api):
    client, SessionLocal = api

    user, token = _new_identity(client)
    assert user["trust_score"] == 50
    assert user["standing"] == "normal"
    assert len(user["uuid"]) == 36

    me = client.get("/api/users/me", headers=_bearer(token))
    assert _extract_success_data(me)["uuid"] == user["uuid"]

    again = client.post("/api/auth/identity", headers=_bearer(token))
    assert _extract_success_data(again)["user"]["uuid"] == user["uuid"]

    with SessionLocal() as db:
        assert db.query(User).count() == 1
        events = db.query(TrustScoreEvent).all()
        assert [(e.cause, e.applied_delta) for e in events] == [("baseline", 50)]


def test_identity_with_chosen_nickname_and_county(api):
    client, _ = api
    response = client.post("/api/auth/identity", json={"nickname": "Mwananchi Mzalendo", "county": "nairobi"})
    user = _extract_success_data(response)["user"]
    assert user["nickname"] == "Mwananchi Mzalendo"
    assert user["county"] == "Nairobi"

    bad = client.post("/api/auth/identity", json={"county": "Atlantis"})
    assert bad.status_code == 400
    assert _extract_error_payload(bad)["error"]["code"] == "validation_error"


def test_invalid_token_is_unauthenticated(api):
    client, _ = api
    response = client.post("/api/auth/identity", headers=_bearer("not-a-token"))
    assert response.status_code == 401
    assert _extract_error_payload(response)["error"]["code"] == "unauthenticated"

    missing = client.get("/api/users/me")
    assert missing.status_code == 401


def test_global_logout_invalidates_existing_tokens(api):
    client, SessionLocal = api
    _, user_token = _new_identity(client)
    _, admin_token = _staff_token(SessionLocal, email="root@test.local", role="admin", permissions="*")

    assert client.get("/api/users/me", headers=_bearer(user_token)).status_code == 200

    response = client.post("/api/auth/global-logout", headers=_bearer(admin_token))
    data = _extract_success_data(response)
    assert data["version"] == 1

    after = client.get("/api/users/me", headers=_bearer(user_token))
    assert after.status_code == 401
    assert _extract_error_payload(after)["error"]["code"] == "unauthenticated"
    assert client.get("/api/auth/staff/me", headers=_bearer(admin_token)).status_code == 401

    _, fresh_token = _new_identity(client)
    assert client.get("/api/users/me", headers=_bearer(fresh_token)).status_code == 200


def test_global_logout_requires_permission(api):
    client, SessionLocal = api
    _, token = _staff_token(SessionLocal, email="mod@test.local", role="moderator", permissions=["moderation.review"])
    response = client.post("/api/auth/global-logout", headers=_bearer(token))
    assert response.status_code == 403
    assert _extract_error_payload(response)["error"]["code"] == "unauthorized"


def test_explicit_permission_list_is_authoritative(api):
    client, SessionLocal = api
    _, token = _staff_token(SessionLocal, email="editor@test.local", role="editor", permissions=["edit_politician"])
    with SessionLocal() as db:
        politician = Politician(
            name="Jane Doe",
            party="Independent",
            position="Senator",
            is_deleted=False,
            updated_at=datetime(2026, 1, 1),
        )
        db.add(politician)
        db.commit()
        politician_id = politician.id

    updated = client.put(
        f"/api/admin/politicians/{politician_id}",
        json={"position": "Governor"},
        headers=_bearer(token),
    )
    assert _extract_success_data(updated)["position"] == "Governor"

    denied = client.delete(f"/api/admin/politicians/{politician_id}", headers=_bearer(token))
    assert denied.status_code == 403
    payload = _extract_error_payload(denied)
    assert payload["error"]["code"] == "unauthorized"
    assert "delete_politician" in payload["error"]["message"]

    created = client.post(
        "/api/admin/politicians",
        json={"name": "John Doe", "party": "Independent", "position": "MP"},
        headers=_bearer(token),
    )
    assert created.status_code == 403


def test_legacy_wildcard_staff_can_delete(api):
    client, SessionLocal = api
    _, token = _staff_token(SessionLocal, email="root@test.local", role="admin", permissions='"*"')
    created = client.post(
        "/api/admin/politicians",
        json={"name": "John Doe", "party": "Independent", "position": "MP", "county": "Kisumu"},
        headers=_bearer(token),
    )
    politician_id = _extract_success_data(created)["id"]
    deleted = client.delete(f"/api/admin/politicians/{politician_id}", headers=_bearer(token))
    assert _extract_success_data(deleted)["ok"] is True

    with SessionLocal() as db:
        assert db.get(Politician, politician_id).is_deleted is True
        actions = [row.action for row in db.query(StaffAuditLog).order_by(StaffAuditLog.id).all()]
        assert actions == ["politician.create", "politician.delete"]


def test_user_token_cannot_reach_staff_routes(api):
    client, _ = api
    _, user_token = _new_identity(client)
    response = client.get("/api/admin/staff", headers=_bearer(user_token))
    assert response.status_code == 401


def test_sixth_login_attempt_is_rate_limited(api):
    client, _ = api
    for _ in range(5):
        response = client.post("/api/auth/staff/login", json={"email": "nobody@test.local", "password": "wrong"})
        assert response.status_code == 401

    limited = client.post("/api/auth/staff/login", json={"email": "nobody@test.local", "password": "wrong"})
    assert limited.status_code == 429
    payload = _extract_error_payload(limited)
    assert payload["error"]["code"] == "rate_limited"
    assert payload["error"]["details"]["retry_after"] > 0
    assert int(limited.headers["Retry-After"]) > 0


def test_forwarded_for_header_does_not_reset_login_limit(api):
    client, _ = api
    codes = []
    for i in range(6):
        response = client.post(
            "/api/auth/staff/login",
            json={"email": "nobody@test.local", "password": "wrong"},
            headers={"X-Forwarded-For": f"203.0.113.{i}"},
        )
        codes.append(response.status_code)
    assert codes == [401, 401, 401, 401, 401, 429]


def test_staff_login_logout_revokes_token(api):
    client, SessionLocal = api
    with SessionLocal() as db:
        db.add(_make_staff(
            email="mod@test.local",
            role="moderator",
            permissions=["moderation.review"],
            password_hash=hash_password("correct-horse"),
        ))
        db.commit()

    login = client.post("/api/auth/staff/login", json={"email": "MOD@test.local", "password": "correct-horse"})
    token = _extract_success_data(login)["access_token"]

    me = client.get("/api/auth/staff/me", headers=_bearer(token))
    assert _extract_success_data(me)["permissions"] == ["moderation.review"]

    assert client.post("/api/auth/staff/logout", headers=_bearer(token)).status_code == 200
    assert client.get("/api/auth/staff/me", headers=_bearer(token)).status_code == 401


def test_deactivated_staff_token_is_rejected(api):
    client, SessionLocal = api
    _, admin_token = _staff_token(SessionLocal, email="root@test.local", role="admin", permissions="*")
    target_id, target_token = _staff_token(SessionLocal, email="ed@test.local", role="editor", permissions=["edit_politician"])

    response = client.post(f"/api/admin/staff/{target_id}/deactivate", headers=_bearer(admin_token))
    assert _extract_success_data(response)["is_active"] is False
    assert client.get("/api/auth/staff/me", headers=_bearer(target_token)).status_code == 401


def test_admin_provisions_staff_from_role_template(api):
    client, SessionLocal = api
    _, admin_token = _staff_token(SessionLocal, email="root@test.local", role="admin", permissions="*")
    response = client.post(
        "/api/admin/staff",
        json={"email": "New.Mod@test.local", "password": "long-enough-pw", "role": "moderator"},
        headers=_bearer(admin_token),
    )
    data = _extract_success_data(response)
    assert data["email"] == "new.mod@test.local"
    assert data["permissions"] == ["moderation.review", "trust.manage"]

    updated = client.put(
        f"/api/admin/staff/{data['id']}/permissions",
        json={"permissions": ["trust.manage"]},
        headers=_bearer(admin_token),
    )
    assert _extract_success_data(updated)["permissions"] == ["trust.manage"]

    duplicate = client.post(
        "/api/admin/staff",
        json={"email": "new.mod@test.local", "password": "long-enough-pw", "role": "moderator"},
        headers=_bearer(admin_token),
    )
    assert duplicate.status_code == 400


def test_rejected_post_penalises_author(api):
    client, _ = api
    _, token = _new_identity(client)

    response = client.post("/api/posts", json={"body": "They want to kill the bill"}, headers=_bearer(token))
    assert response.status_code == 422
    payload = _extract_error_payload(response)
    assert payload["error"]["code"] == "content_rejected"
    assert "banned_term" in payload["error"]["details"]["reasons"]

    me = _extract_success_data(client.get("/api/users/me", headers=_bearer(token)))
    assert me["trust_score"] == 40

    listing = _extract_success_data(client.get("/api/posts"))
    assert listing["total"] == 0


def test_clean_post_is_listed(api):
    client, _ = api
    _, token = _new_identity(client)
    created = client.post(
        "/api/posts",
        json={"title": "Water", "body": "Borehole project finished in Kitui", "county": "Kitui"},
        headers=_bearer(token),
    )
    data = _extract_success_data(created)
    assert data["decision"] == "allow"
    assert data["trust_score"] == 51

    listing = _extract_success_data(client.get("/api/posts?county=kitui"))
    assert [item["id"] for item in listing["items"]] == [data["post"]["id"]]
    assert listing["has_more"] is False


def test_throttled_user_hits_reduced_posting_limit(api):
    client, SessionLocal = api
    user, token = _new_identity(client)
    with SessionLocal() as db:
        row = db.query(User).filter(User.uuid == user["uuid"]).first()
        row.standing = "throttled"
        row.violation_count = 3
        db.commit()

    for i in range(3):
        ok = client.post("/api/posts", json={"body": f"Update number {i} on county budgets"}, headers=_bearer(token))
        assert ok.status_code == 200

    limited = client.post("/api/posts", json={"body": "One more budget update"}, headers=_bearer(token))
    assert limited.status_code == 429
    assert "Retry-After" in limited.headers

    with SessionLocal() as db:
        assert db.query(User).filter(User.uuid == user["uuid"]).first().violation_count == 4


def test_moderator_resolves_held_post(api):
    client, SessionLocal = api
    _, user_token = _new_identity(client)
    _, mod_token = _staff_token(SessionLocal, email="mod@test.local", role="moderator", permissions=["moderation.review"])

    held = _extract_success_data(
        client.post("/api/posts", json={"body": "Greaaaaaaaat turnout in Kisumu"}, headers=_bearer(user_token))
    )
    assert held["decision"] == "hold"

    flags = _extract_success_data(client.get("/api/moderation/flags", headers=_bearer(mod_token)))
    assert [f["id"] for f in flags["items"]] == [held["flag"]["id"]]

    resolved = client.post(
        f"/api/moderation/flags/{held['flag']['id']}/resolve",
        json={"outcome": "cleared", "note": "fine"},
        headers=_bearer(mod_token),
    )
    assert _extract_success_data(resolved)["status"] == "cleared"
    listing = _extract_success_data(client.get("/api/posts"))
    assert listing["items"][0]["status"] == "published"


def test_trust_manager_adjusts_and_lists_events(api):
    client, SessionLocal = api
    user, _ = _new_identity(client)
    _, token = _staff_token(SessionLocal, email="mod@test.local", role="moderator", permissions=["trust.manage"])

    response = client.post(
        "/api/trust/events",
        json={"user_uuid": user["uuid"], "delta": -25, "reason": "spam ring", "cause_ref": "case-7"},
        headers=_bearer(token),
    )
    data = _extract_success_data(response)
    assert data["user"]["trust_score"] == 25
    assert data["user"]["standing"] == "throttled"

    repeat = client.post(
        "/api/trust/events",
        json={"user_uuid": user["uuid"], "delta": -25, "reason": "spam ring", "cause_ref": "case-7"},
        headers=_bearer(token),
    )
    assert _extract_success_data(repeat)["applied"] is False

    events = _extract_success_data(client.get(f"/api/trust/users/{user['uuid']}/events", headers=_bearer(token)))
    assert [e["cause"] for e in events["items"]] == ["baseline", "manual"]

    standing = client.post(
        f"/api/moderation/users/{user['uuid']}/standing",
        json={"standing": "normal"},
        headers=_bearer(token),
    )
    assert _extract_success_data(standing)["standing"] == "normal"


def test_metrics_endpoints(api):
    client, SessionLocal = api
    client.get("/health")
    _, token = _staff_token(SessionLocal, email="root@test.local", role="admin", permissions="*")
    assert client.get("/metrics", headers=_bearer(token)).status_code == 200
    text = client.get("/metrics/prometheus").text
    assert "# TYPE http_requests_total counter" in text


def test_blocked_user_posting_does_not_count_against_limits(api):
    client, SessionLocal = api
    user, token = _new_identity(client)
    with SessionLocal() as db:
        row = db.query(User).filter(User.uuid == user["uuid"]).first()
        row.standing = "blocked"
        db.commit()

    codes = [
        client.post("/api/posts", json={"body": f"County budget note {i}"}, headers=_bearer(token)).status_code
        for i in range(21)
    ]
    assert set(codes) == {422}

    me = _extract_success_data(client.get("/api/users/me", headers=_bearer(token)))
    assert me["standing"] == "blocked"
    with SessionLocal() as db:
        assert db.query(User).filter(User.uuid == user["uuid"]).first().violation_count == 0
