import asyncio
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from slotbook.api.app import JwtIdentityResolver, create_app, issue_jwt
from slotbook.app.domain.errors import Internal, Unavailable
from slotbook.app.domain.models import UserRole

from .conftest import MONDAY

SECRET = "test-secret-for-slotbook-api-0123456789"


@pytest.fixture
def api(world_factory):
    async def _seed():
        w = await world_factory()
        await w.engine.grant_points(w.client_id, 10, "signup_bonus")
        await w.engine.grant_points(w.other_id, 3, "signup_bonus")
        return w

    w = asyncio.run(_seed())
    app = create_app(w.engine, jwt_secret=SECRET)
    with TestClient(app) as client:
        yield client, w
    asyncio.run(w.dispose())


def _auth(user_id, role=UserRole.CLIENT):
    return {"Authorization": f"Bearer {issue_jwt(user_id, role, SECRET)}"}


def test_requests_without_valid_token_are_rejected(api):
    client, w = api
    body = {"barber_id": w.barber_id, "date": MONDAY, "time": "10:00"}
    assert client.post("/api/bookings", json=body).json()["detail"] == "missing_authorization"
    resp = client.post("/api/bookings", json=body, headers={"Authorization": "Bearer nope"})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "invalid_token"
    expired = issue_jwt(w.client_id, UserRole.CLIENT, SECRET, ttl_seconds=-10)
    resp = client.get("/api/me/points", headers={"Authorization": f"Bearer {expired}"})
    assert resp.json()["detail"] == "token_expired"


def test_availability_lists_slots_with_labels(api):
    client, w = api
    resp = client.get("/api/availability", params={"barberId": w.barber_id, "date": MONDAY})
    assert resp.status_code == 200
    data = resp.json()
    assert len(data["slots"]) == 16
    assert data["slots"][0] == "09:00"
    assert data["labels"][-1] == "4:30 PM"
    assert data["timezone"] == "America/Los_Angeles"
    assert data["from_cache"] is False
    again = client.get("/api/availability", params={"barberId": w.barber_id, "date": MONDAY})
    assert again.json()["from_cache"] is True


def test_availability_input_errors(api):
    client, w = api
    bad = client.get("/api/availability", params={"barberId": w.barber_id, "date": "19-10-2026"})
    assert bad.status_code == 400
    assert bad.json()["detail"] == "invalid_date"
    missing = client.get("/api/availability", params={"barberId": 9999, "date": MONDAY})
    assert missing.status_code == 404


def test_booking_flow_with_idempotency_key(api):
    client, w = api
    body = {"barber_id": w.barber_id, "date": MONDAY, "time": "10:00 AM"}
    headers = {**_auth(w.client_id), "Idempotency-Key": "req-42"}

    first = client.post("/api/bookings", json=body, headers=headers)
    assert first.status_code == 200
    appt = first.json()
    assert appt["local_time"] == "10:00"
    assert appt["starts_at"] == "2026-10-19T17:00:00+00:00"
    assert appt["status"] == "BOOKED"

    replay = client.post("/api/bookings", json=body, headers=headers)
    assert replay.json()["id"] == appt["id"]
    assert client.get("/api/me/points", headers=_auth(w.client_id)).json()["balance"] == 5

    taken = client.post("/api/bookings", json=body, headers=_auth(w.other_id))
    assert taken.status_code == 409
    assert taken.json()["detail"] == "slot_unavailable"


def test_insufficient_points_maps_to_402(api):
    client, w = api
    body = {"barber_id": w.barber_id, "date": MONDAY, "time": "11:00"}
    resp = client.post("/api/bookings", json=body, headers=_auth(w.other_id))
    assert resp.status_code == 402
    assert resp.json()["detail"] == {"code": "insufficient_points", "required": 5, "available": 3}


def test_cancel_and_status_endpoints(api):
    client, w = api
    body = {"barber_id": w.barber_id, "date": MONDAY, "time": "10:00"}
    appt_id = client.post("/api/bookings", json=body, headers=_auth(w.client_id)).json()["id"]

    forbidden = client.post(f"/api/appointments/{appt_id}/cancel", headers=_auth(w.other_id))
    assert forbidden.status_code == 403

    barber = _auth(w.barber_id, UserRole.BARBER)
    confirmed = client.patch(f"/api/appointments/{appt_id}/status", json={"status": "CONFIRMED"}, headers=barber)
    assert confirmed.json() == {"ok": True, "status": "CONFIRMED"}
    backwards = client.patch(f"/api/appointments/{appt_id}/status", json={"status": "BOOKED"}, headers=barber)
    assert backwards.status_code == 400

    canceled = client.post(
        f"/api/appointments/{appt_id}/cancel", json={"reason": "running late"}, headers=_auth(w.client_id)
    )
    assert canceled.json() == {"ok": True, "status": "CANCELED"}
    assert client.get("/api/me/points", headers=_auth(w.client_id)).json()["balance"] == 10
    slots = client.get("/api/availability", params={"barberId": w.barber_id, "date": MONDAY}).json()["slots"]
    assert "10:00" in slots

    not_owner = client.post(
        f"/api/appointments/{appt_id}/cancel", json={"hard_delete": True}, headers=barber
    )
    assert not_owner.status_code == 403
    deleted = client.post(
        f"/api/appointments/{appt_id}/cancel", json={"hard_delete": True}, headers=_auth(w.owner_id, UserRole.OWNER)
    )
    assert deleted.json()["status"] == "DELETED"
    gone = client.post(f"/api/appointments/{appt_id}/cancel", headers=_auth(w.owner_id, UserRole.OWNER))
    assert gone.status_code == 404


def test_next_openings(api):
    client, w = api
    resp = client.get(f"/api/barbers/{w.barber_id}/next-openings", params={"limit": 2})
    assert resp.status_code == 200
    data = resp.json()
    # clock: Monday 2026-10-12 08:00 local
    assert [(o["date"], o["time"]) for o in data] == [("2026-10-12", "09:00"), ("2026-10-12", "09:30")]
    assert data[0]["label"] == "9:00 AM"
    assert client.get("/api/barbers/9999/next-openings").status_code == 404


def test_identity_resolver_reads_role_claim():
    resolver = JwtIdentityResolver(SECRET)
    identity = resolver.resolve_user(issue_jwt(7, "owner", SECRET))
    assert identity.user_id == 7
    assert identity.is_owner


@pytest.mark.parametrize(
    "error, status_code, detail",
    [
        (Unavailable(), 503, "unavailable"),
        (Unavailable("store_timeout"), 503, "store_timeout"),
        (Internal(), 500, "internal"),
    ],
)
def test_store_faults_map_to_5xx(error, status_code, detail):
    async def failing_balance(user_id):
        raise error

    app = create_app(SimpleNamespace(get_points_balance=failing_balance), jwt_secret=SECRET)
    with TestClient(app) as client:
        resp = client.get("/api/me/points", headers=_auth(1))
    assert resp.status_code == status_code
    assert resp.json()["detail"] == detail
