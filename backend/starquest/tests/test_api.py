import asyncio
import pathlib
import sys

from httpx import AsyncClient, ASGITransport
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlmodel import SQLModel

sys.path.append(str(pathlib.Path(__file__).resolve().parents[2]))

from starquest.main import app
from starquest.database import get_session
from starquest import approvals as approvals_module
from starquest.routes import credit as credit_routes


async def _setup_test_db():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    TestSession = async_sessionmaker(engine, expire_on_commit=False)

    async def override_get_session():
        async with TestSession() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    return TestSession


async def _register(client, family_name, email, password="pass"):
    resp = await client.post(
        "/register",
        json={
            "family_name": family_name,
            "name": family_name + " Parent",
            "email": email,
            "password": password,
        },
    )
    assert resp.status_code == 200
    resp = await client.post("/login", json={"email": email, "password": password})
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


def test_star_request_approval_and_balance():
    async def run():
        await _setup_test_db()
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            headers = await _register(client, "Smith", "smith@example.com")

            resp = await client.post(
                "/children/", json={"name": "Ava", "access_code": "AVA"}, headers=headers
            )
            assert resp.status_code == 200
            child_id = resp.json()["id"]

            resp = await client.post(
                "/quests/", json={"name": "Make bed", "stars": 5}, headers=headers
            )
            quest_id = resp.json()["id"]

            resp = await client.post("/children/login", json={"access_code": "AVA"})
            assert resp.status_code == 200
            child_headers = {"Authorization": f"Bearer {resp.json()['access_token']}"}

            resp = await client.post(
                "/stars/requests",
                json={"quest_id": quest_id, "note": "All done"},
                headers=child_headers,
            )
            assert resp.status_code == 200
            request_id = resp.json()["id"]
            assert resp.json()["status"] == "pending"
            assert resp.json()["source"] == "child_request"

            # Resubmitting straight away is rate limited.
            resp = await client.post(
                "/stars/requests", json={"quest_id": quest_id}, headers=child_headers
            )
            assert resp.status_code == 429
            assert resp.json()["code"] == "rate_limited"

            # Children cannot review.
            resp = await client.post(
                f"/approvals/star_transaction/{request_id}/approve", headers=child_headers
            )
            assert resp.status_code == 403

            resp = await client.get("/stars/pending", headers=headers)
            assert [e["id"] for e in resp.json()] == [request_id]

            resp = await client.post(
                f"/approvals/star_transaction/{request_id}/approve", headers=headers
            )
            assert resp.status_code == 200
            assert resp.json()["status"] == "approved"

            resp = await client.post(
                f"/approvals/star_transaction/{request_id}/reject",
                json={"reason": "Changed my mind"},
                headers=headers,
            )
            assert resp.status_code == 409
            assert resp.json()["code"] == "already_reviewed"

            resp = await client.post(
                "/stars/records",
                json={"child_id": child_id, "stars": -2, "custom_description": "Left toys out"},
                headers=headers,
            )
            assert resp.status_code == 200
            assert resp.json()["status"] == "approved"

            resp = await client.get("/balances/mine", headers=child_headers)
            assert resp.status_code == 200
            assert resp.json()["current_stars"] == 3
            assert resp.json()["lifetime_stars"] == 5

            resp = await client.get(f"/children/{child_id}/history", headers=child_headers)
            assert len(resp.json()["star_transactions"]) == 2

            resp = await client.post(f"/balances/{child_id}/reconcile", headers=headers)
            assert resp.json()["cache_matched"] is True
            assert resp.json()["balance"]["current_stars"] == 3

    asyncio.run(run())
    app.dependency_overrides.clear()


def test_redemption_on_credit_and_settlement(monkeypatch):
    monkeypatch.setattr(credit_routes, "CRON_SECRET", "cron-token")

    async def run():
        await _setup_test_db()
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            headers = await _register(client, "Jones", "jones@example.com")
            resp = await client.post(
                "/children/", json={"name": "Ben", "access_code": "BEN"}, headers=headers
            )
            child_id = resp.json()["id"]
            resp = await client.post(
                "/rewards/", json={"name": "Lego", "stars_cost": 50}, headers=headers
            )
            reward_id = resp.json()["id"]

            resp = await client.post("/children/login", json={"access_code": "BEN"})
            child_headers = {"Authorization": f"Bearer {resp.json()['access_token']}"}

            resp = await client.post(
                "/redemptions/", json={"reward_id": reward_id}, headers=child_headers
            )
            assert resp.status_code == 400
            assert resp.json()["code"] == "insufficient_balance"

            resp = await client.put(
                f"/credit/children/{child_id}/settings",
                json={"credit_enabled": True, "credit_limit": 100},
                headers=headers,
            )
            assert resp.status_code == 200
            assert resp.json()["original_credit_limit"] == 100

            resp = await client.post(
                "/redemptions/", json={"reward_id": reward_id}, headers=child_headers
            )
            assert resp.status_code == 200
            redemption_id = resp.json()["id"]
            assert resp.json()["credit_amount"] == 50

            resp = await client.post(
                "/approvals/redemption/batch/approve",
                json={"ids": [redemption_id, 404]},
                headers=headers,
            )
            assert resp.status_code == 200
            assert resp.json()["succeeded"] == [redemption_id]
            assert resp.json()["failed"][0]["code"] == "not_found"

            resp = await client.get(f"/balances/{child_id}", headers=headers)
            balance = resp.json()
            assert balance["current_stars"] == -50
            assert balance["credit_used"] == 50
            assert balance["available_credit"] == 50

            resp = await client.get("/credit/tiers", headers=headers)
            assert [t["tier_order"] for t in resp.json()] == [1, 2, 3]

            resp = await client.put(
                "/credit/tiers",
                json={
                    "tiers": [
                        {"tier_order": 1, "min_debt": 0, "max_debt": 40, "interest_rate": 0.05},
                        {"tier_order": 2, "min_debt": 30, "max_debt": None, "interest_rate": 0.1},
                    ]
                },
                headers=headers,
            )
            assert resp.status_code == 422
            assert resp.json()["code"] == "validation_error"

            resp = await client.post(
                "/credit/settlements/run",
                json={"settlement_date": "2026-01-31"},
                headers={"Authorization": "Bearer wrong"},
            )
            assert resp.status_code == 401

            resp = await client.post(
                "/credit/settlements/run",
                json={"settlement_date": "2026-01-31"},
                headers={"Authorization": "Bearer cron-token"},
            )
            assert resp.status_code == 200
            body = resp.json()
            assert body["processed_count"] == 1
            settlement = body["settlements"][0]
            assert settlement["debt_amount"] == 50
            assert settlement["interest_calculated"] == 4
            assert sum(b["interest_amount"] for b in settlement["interest_breakdown"]) == 4

            # Running the same period again is a no-op.
            resp = await client.post(
                "/credit/settle",
                json={"settlement_date": "2026-01-31", "child_id": child_id},
                headers=headers,
            )
            assert resp.json()["settlements"][0]["id"] == settlement["id"]

            resp = await client.get(f"/credit/children/{child_id}/settlements", headers=headers)
            assert len(resp.json()) == 1

            resp = await client.get("/balances/mine", headers=child_headers)
            assert resp.json()["credit_used"] == 54

            resp = await client.post(f"/redemptions/{redemption_id}/fulfill", headers=headers)
            assert resp.json()["status"] == "fulfilled"

    asyncio.run(run())
    app.dependency_overrides.clear()


def test_families_are_isolated():
    async def run():
        await _setup_test_db()
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            smith = await _register(client, "Smith", "smith@example.com")
            jones = await _register(client, "Jones", "jones@example.com")

            resp = await client.post(
                "/children/", json={"name": "Ava", "access_code": "AVA"}, headers=smith
            )
            child_id = resp.json()["id"]

            resp = await client.get(f"/balances/{child_id}", headers=jones)
            assert resp.status_code == 403
            assert resp.json()["code"] == "forbidden"

            resp = await client.post(
                "/stars/records",
                json={"child_id": child_id, "stars": 100, "custom_description": "Gift"},
                headers=jones,
            )
            assert resp.status_code == 403

            resp = await client.get("/children/", headers=jones)
            assert resp.json() == []

            # A second parent joins the Smith family and sees the child.
            resp = await client.post(
                "/family/parents",
                json={"name": "Sam Smith", "email": "sam@example.com", "password": "pw"},
                headers=smith,
            )
            assert resp.status_code == 200
            resp = await client.post("/login", json={"email": "sam@example.com", "password": "pw"})
            sam = {"Authorization": f"Bearer {resp.json()['access_token']}"}
            resp = await client.get("/children/", headers=sam)
            assert [c["id"] for c in resp.json()] == [child_id]

            resp = await client.put(
                "/family/", json={"timezone": "Mars/Olympus"}, headers=smith
            )
            assert resp.status_code == 422
            resp = await client.put(
                "/family/", json={"timezone": "Europe/London", "settlement_day": 15}, headers=smith
            )
            assert resp.json()["settlement_day"] == 15

    asyncio.run(run())
    app.dependency_overrides.clear()


async def _two_star_requests(client, headers):
    resp = await client.post(
        "/children/", json={"name": "Cy", "access_code": "CY"}, headers=headers
    )
    assert resp.status_code == 200
    ids = []
    resp = await client.post("/children/login", json={"access_code": "CY"})
    child_headers = {"Authorization": f"Bearer {resp.json()['access_token']}"}
    for name in ("Feed fish", "Water plants"):
        resp = await client.post("/quests/", json={"name": name, "stars": 2}, headers=headers)
        resp = await client.post(
            "/stars/requests", json={"quest_id": resp.json()["id"]}, headers=child_headers
        )
        assert resp.status_code == 200
        ids.append(resp.json()["id"])
    return ids


def test_batch_review_reports_an_already_reviewed_first_entry():
    async def run():
        await _setup_test_db()
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            headers = await _register(client, "Brown", "brown@example.com")
            first, second = await _two_star_requests(client, headers)

            resp = await client.post(
                f"/approvals/star_transaction/{first}/approve", headers=headers
            )
            assert resp.status_code == 200

            resp = await client.post(
                "/approvals/star_transaction/batch/approve",
                json={"ids": [first, second]},
                headers=headers,
            )
            assert resp.status_code == 200
            assert resp.json()["succeeded"] == [second]
            assert [(f["id"], f["code"]) for f in resp.json()["failed"]] == [
                (first, "already_reviewed")
            ]

            resp = await client.post(
                "/approvals/star_transaction/batch/reject",
                json={"ids": [first, second], "reason": "Too late"},
                headers=headers,
            )
            assert resp.status_code == 200
            assert resp.json()["succeeded"] == []
            assert len(resp.json()["failed"]) == 2

    asyncio.run(run())
    app.dependency_overrides.clear()


def test_store_failure_answers_storage_error(monkeypatch):
    async def broken_bump(*args, **kwargs):
        raise SQLAlchemyError("disk I/O error")

    async def run():
        await _setup_test_db()
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            headers = await _register(client, "Green", "green@example.com")
            first, _ = await _two_star_requests(client, headers)

            monkeypatch.setattr(approvals_module, "bump_ledger_version", broken_bump)
            resp = await client.post(
                f"/approvals/star_transaction/{first}/approve", headers=headers
            )
            assert resp.status_code == 503
            assert resp.json()["code"] == "storage_error"

            resp = await client.get("/stars/pending", headers=headers)
            assert first in [e["id"] for e in resp.json()]

    asyncio.run(run())
    app.dependency_overrides.clear()
