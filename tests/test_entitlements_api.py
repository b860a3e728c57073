from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from api.main import app
from api.v1.entitlements.dependencies import get_code_issuer, get_redeemer
from conftest import START, promo_benefit

pytestmark = pytest.mark.anyio

USER = {"x-user-id": "account-1"}
ADMIN = {"x-user-id": "admin-1"}


@pytest.fixture
async def client(redeemer, issuer):
    app.dependency_overrides[get_redeemer] = lambda: redeemer
    app.dependency_overrides[get_code_issuer] = lambda: issuer
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def test_redeem_requires_identity(client):
    resp = await client.post("/api/v1/entitlements/redeem", json={"code": "PROMO-ABC-234"})
    assert resp.status_code == 401


async def test_redeem_success(client, saved_code):
    await saved_code()

    resp = await client.post(
        "/api/v1/entitlements/redeem", json={"code": "promo-abc-234"}, headers=USER
    )

    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["code"] == "PROMO-ABC-234"
    assert data["error_code"] is None
    assert data["benefit"] == promo_benefit()


async def test_redeem_twice_conflicts(client, saved_code):
    await saved_code(max_uses=-1)
    await client.post("/api/v1/entitlements/redeem", json={"code": "PROMO-ABC-234"}, headers=USER)

    resp = await client.post(
        "/api/v1/entitlements/redeem", json={"code": "PROMO-ABC-234"}, headers=USER
    )

    assert resp.status_code == 409
    assert resp.json()["error_code"] == "ALREADY_REDEEMED"


async def test_malformed_code_is_bad_request(client):
    resp = await client.post(
        "/api/v1/entitlements/redeem", json={"code": "hello"}, headers=USER
    )
    assert resp.status_code == 400
    assert resp.json()["error_code"] == "INVALID_FORMAT"


async def test_exhausted_code_is_gone(client, saved_code):
    await saved_code(current_uses=1)
    resp = await client.post(
        "/api/v1/entitlements/redeem", json={"code": "PROMO-ABC-234"}, headers=USER
    )
    assert resp.status_code == 410
    assert resp.json()["error_code"] == "GLOBAL_LIMIT_REACHED"


async def test_scheduled_code_reports_start(client, saved_code):
    await saved_code(window_start=START + timedelta(hours=1))
    resp = await client.post(
        "/api/v1/entitlements/redeem", json={"code": "PROMO-ABC-234"}, headers=USER
    )
    assert resp.status_code == 403
    assert resp.json()["error_code"] == "NOT_YET_ACTIVE"
    assert resp.json()["not_before"].startswith("2026-03-01T13:00:00")


async def test_deactivated_code_looks_unknown(client, saved_code):
    await saved_code()
    resp = await client.post("/api/v1/entitlements/codes/PROMO-ABC-234/deactivate", headers=ADMIN)
    assert resp.json() == {"code": "PROMO-ABC-234", "active": False}

    resp = await client.post(
        "/api/v1/entitlements/redeem", json={"code": "PROMO-ABC-234"}, headers=USER
    )
    assert resp.status_code == 404
    assert resp.json()["error_code"] == "NOT_FOUND"


async def test_deactivated_code_reported_when_not_collapsed(client, saved_code, monkeypatch):
    monkeypatch.setenv("REDEEM_COLLAPSE_REVOKED_CODES", "false")
    await saved_code(active=False)
    resp = await client.post(
        "/api/v1/entitlements/redeem", json={"code": "PROMO-ABC-234"}, headers=USER
    )
    assert resp.status_code == 403
    assert resp.json()["error_code"] == "DEACTIVATED"


async def test_repeated_failures_are_throttled(client):
    for _ in range(5):
        resp = await client.post(
            "/api/v1/entitlements/redeem", json={"code": "PROMO-ZZZ-999"}, headers=USER
        )
        assert resp.status_code == 404

    resp = await client.post(
        "/api/v1/entitlements/redeem", json={"code": "PROMO-ZZZ-999"}, headers=USER
    )

    assert resp.status_code == 429
    assert resp.headers["retry-after"] == "900"
    assert resp.json()["error_code"] == "RATE_LIMITED"
    assert resp.json()["retry_after_seconds"] == 900


async def test_validate_does_not_redeem(client, saved_code, store):
    await saved_code()

    resp = await client.post(
        "/api/v1/entitlements/redeem/validate", json={"code": "PROMO-ABC-234"}, headers=USER
    )

    assert resp.status_code == 200
    assert resp.json()["success"] is True
    assert resp.json()["message"] == "Code is valid."
    assert (await store.get_by_key("PROMO-ABC-234")).current_uses == 0


async def test_issue_list_and_inspect(client):
    resp = await client.post(
        "/api/v1/entitlements/codes",
        json={
            "benefit": {"kind": "subscription-grant", "plan_id": "voca_unlimited"},
            "window": {
                "start": START.isoformat(),
                "end": (START + timedelta(days=7)).isoformat(),
            },
            "max_uses": 10,
            "count": 2,
        },
        headers=ADMIN,
    )
    assert resp.status_code == 200
    issued = resp.json()
    assert issued["created_by"] == "admin-1"
    assert issued["failed"] == 0
    assert len(issued["codes"]) == 2

    listing = (await client.get("/api/v1/entitlements/codes?active_only=true")).json()
    assert sorted(entry["code"] for entry in listing["codes"]) == sorted(issued["codes"])
    assert {entry["status"] for entry in listing["codes"]} == {"active"}

    code = issued["codes"][0]
    detail = (await client.get(f"/api/v1/entitlements/codes/{code}")).json()
    assert detail["max_uses"] == 10
    assert detail["current_uses"] == 0

    await client.post("/api/v1/entitlements/redeem", json={"code": code}, headers=USER)
    history = (await client.get(f"/api/v1/entitlements/codes/{code}/redemptions")).json()
    assert [entry["account_id"] for entry in history["redemptions"]] == ["account-1"]


async def test_issue_rejects_promo_without_window(client):
    resp = await client.post(
        "/api/v1/entitlements/codes",
        json={"benefit": {"kind": "subscription-grant", "plan_id": "voca_speaking"}},
        headers=ADMIN,
    )
    assert resp.status_code == 422


async def test_unknown_code_is_404_for_admin(client):
    assert (await client.get("/api/v1/entitlements/codes/PROMO-ZZZ-999")).status_code == 404
    resp = await client.post("/api/v1/entitlements/codes/PROMO-ZZZ-999/deactivate", headers=ADMIN)
    assert resp.status_code == 404


async def test_system_health(client):
    resp = await client.get("/api/v1/system/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"
