import pytest

from app.models.activity import ActivityLog
from app.models.user import Role


@pytest.mark.anyio("asyncio")
async def test_admin_creates_mda_user_and_key(client, parties, headers_for, db_session):
    admin = headers_for(parties.admin)

    resp = await client.post("/mdas", json={"code": " fmw ", "name": "Federal Ministry of Works"}, headers=admin)
    assert resp.status_code == 201, resp.text
    mda = resp.json()
    assert mda["code"] == "FMW"

    resp = await client.post("/mdas", json={"code": "FMW", "name": "Duplicate"}, headers=admin)
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "MDA_EXISTS"

    resp = await client.post(
        "/users",
        json={"username": "works-officer", "email": "officer@works.gov.ng", "role": "mda", "role_scope_id": mda["id"]},
        headers=admin,
    )
    assert resp.status_code == 201, resp.text
    user = resp.json()
    assert user["role"] == "mda"

    resp = await client.post("/apikeys", json={"name": "officer-key", "user_id": user["id"]}, headers=admin)
    assert resp.status_code == 201, resp.text
    issued = resp.json()
    assert issued["role"] == "mda"

    resp = await client.get("/mdas", headers={"X-API-Key": issued["key"]})
    assert resp.status_code == 200
    assert "FMW" in [row["code"] for row in resp.json()]

    actions = [row.action for row in db_session.query(ActivityLog).filter(ActivityLog.actor_user_id == parties.admin.id)]
    assert {"MDA Created", "User Created", "API Key Created"} <= set(actions)


@pytest.mark.anyio("asyncio")
async def test_user_scope_rules(client, parties, headers_for):
    admin = headers_for(parties.admin)

    resp = await client.post(
        "/users", json={"username": "no-scope", "email": "noscope@example.com", "role": "mda"}, headers=admin
    )
    assert resp.status_code == 422

    resp = await client.post(
        "/users",
        json={"username": "ghost", "email": "ghost@example.com", "role": "mda", "role_scope_id": 999999},
        headers=admin,
    )
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "UNKNOWN_MDA"

    resp = await client.post(
        "/users",
        json={"username": parties.spv.username, "email": "dupe@example.com", "role": "spv"},
        headers=admin,
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "USER_CREATE_FAILED"


@pytest.mark.anyio("asyncio")
async def test_revoked_key_stops_working(client, parties, headers_for):
    admin = headers_for(parties.admin)
    resp = await client.post("/apikeys", json={"name": "temp", "user_id": parties.supplier.id}, headers=admin)
    issued = resp.json()
    supplier = {"Authorization": f"Bearer {issued['key']}"}

    assert (await client.get("/notifications", headers=supplier)).status_code == 200
    assert (await client.delete(f"/apikeys/{issued['id']}", headers=admin)).status_code == 204

    resp = await client.get("/notifications", headers=supplier)
    assert resp.status_code == 401

    resp = await client.get(f"/apikeys?user_id={parties.supplier.id}", headers=admin)
    assert issued["id"] not in [row["id"] for row in resp.json()]
    resp = await client.get(f"/apikeys?user_id={parties.supplier.id}&active_only=false", headers=admin)
    assert issued["id"] in [row["id"] for row in resp.json()]


@pytest.mark.anyio("asyncio")
async def test_admin_endpoints_need_admin(client, parties, headers_for, make_user):
    treasury = headers_for(parties.treasury)

    for method, path in (("post", "/mdas"), ("post", "/users"), ("get", "/side-effects")):
        resp = await getattr(client, method)(path, headers=treasury, **({"json": {}} if method == "post" else {}))
        assert resp.status_code == 403, path
        assert resp.json()["error"]["code"] == "INSUFFICIENT_ROLE"

    resp = await client.get(f"/users/{make_user(Role.SPV).id}", headers=headers_for(parties.admin))
    assert resp.status_code == 200


@pytest.mark.anyio("asyncio")
async def test_side_effect_admin_views(client, parties, headers_for, make_bill):
    admin = headers_for(parties.admin)
    bill = make_bill()

    resp = await client.get(f"/side-effects?bill_id={bill.id}", headers=admin)
    assert resp.status_code == 200
    rows = resp.json()
    assert rows and all(row["status"] == "DONE" for row in rows)

    resp = await client.post("/side-effects/dispatch", headers=admin)
    assert resp.json() == {"done": [], "failed": [], "pending": 0}
