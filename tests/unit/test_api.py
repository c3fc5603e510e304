"""HTTP layer: routing, auth, response envelope and error mapping.

Services run against the in-memory collaborators from conftest; only the
FastAPI dependencies and module-level services are swapped.
"""

from decimal import Decimal

import pytest

from src.cm_admin.api import router as admin_router_module
from src.cm_admin.api.router import get_admin_service
from src.cm_admin.application.service import AdminService
from src.cm_common.database import get_db_session
from src.cm_gateway.auth.dependencies import CurrentUser, get_current_user
from src.cm_gateway.auth.jwt_handler import create_access_token
from src.cm_listing.api import router as listing_router_module
from src.cm_settlement.api import router as settlement_router_module
from src.cm_settlement.api.dependencies import get_settlement_service
from src.cm_settlement.application.query_service import TransactionQueryService

SELLER = CurrentUser(id="user-seller", account_id="0.0.1001")
BUYER = CurrentUser(id="user-buyer", account_id="0.0.2002")
ADMIN = CurrentUser(id="ops", account_id="0.0.9", role="admin")


@pytest.fixture
def api(client, db, listing_service, settlement_service, tx_repo, clock, monkeypatch):
    """Wire the app to in-memory services; returns a setter for the caller identity."""
    from src.main import app

    async def _db():
        yield db

    identity = {"user": SELLER}
    queries = TransactionQueryService(repo=tx_repo, clock=clock)
    app.dependency_overrides[get_db_session] = _db
    app.dependency_overrides[get_current_user] = lambda: identity["user"]
    app.dependency_overrides[get_settlement_service] = lambda: settlement_service
    app.dependency_overrides[get_admin_service] = lambda: AdminService(
        settlement_service, listings=listing_service, clock=clock
    )
    monkeypatch.setattr(listing_router_module, "_service", listing_service)
    monkeypatch.setattr(settlement_router_module, "_queries", queries)
    monkeypatch.setattr(admin_router_module, "_queries", queries)

    def act_as(user: CurrentUser) -> None:
        identity["user"] = user

    return act_as


async def _create_listing(client, serial: int = 7, price: str = "500") -> dict:
    resp = await client.post(
        "/api/v1/listings",
        json={"token_id": "0.0.5005", "serial_number": serial, "episode_id": "episode-1",
              "price": price},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


class TestListingEndpoints:
    @pytest.mark.asyncio
    async def test_create_listing_envelope(self, client, api):
        resp = await client.post(
            "/api/v1/listings",
            json={"token_id": "0.0.5005", "serial_number": 7, "episode_id": "episode-1",
                  "price": "500"},
        )

        assert resp.status_code == 201
        body = resp.json()
        assert body["code"] == 0
        assert body["retryable"] is False
        assert body["request_id"] == resp.headers["X-Request-ID"]
        assert body["data"]["price"] == "500"
        assert body["data"]["seller_account_id"] == "0.0.1001"
        assert body["data"]["status"] == "active"

    @pytest.mark.asyncio
    async def test_duplicate_listing_is_409(self, client, api):
        await _create_listing(client)
        resp = await client.post(
            "/api/v1/listings",
            json={"token_id": "0.0.5005", "serial_number": 7, "episode_id": "episode-1",
                  "price": "600"},
        )

        assert resp.status_code == 409
        body = resp.json()
        assert body["code"] == 4002
        assert body["data"] is None

    @pytest.mark.asyncio
    async def test_command_validation_is_422_with_code(self, client, api):
        resp = await client.post(
            "/api/v1/listings",
            json={"token_id": "0.0.5005", "serial_number": 7, "episode_id": "episode-1",
                  "price": "-5"},
        )

        assert resp.status_code == 422
        body = resp.json()
        assert body["code"] == 1001
        assert "price" in body["message"]

    @pytest.mark.asyncio
    async def test_auction_and_bid(self, client, api):
        resp = await client.post(
            "/api/v1/listings/auctions",
            json={"token_id": "0.0.5005", "serial_number": 8, "episode_id": "episode-1",
                  "starting_price": "100", "reserve_price": "200", "duration_hours": 24},
        )
        assert resp.status_code == 201
        listing_id = resp.json()["data"]["id"]

        api(BUYER)
        resp = await client.post(f"/api/v1/listings/{listing_id}/bids", json={"amount": "150"})

        assert resp.status_code == 200
        auction = resp.json()["data"]["auction"]
        assert auction["current_bid"] == "150"
        assert auction["highest_bidder_id"] == "user-buyer"
        assert auction["bid_count"] == 1

    @pytest.mark.asyncio
    async def test_bid_too_low_is_422(self, client, api):
        resp = await client.post(
            "/api/v1/listings/auctions",
            json={"token_id": "0.0.5005", "serial_number": 8, "episode_id": "episode-1",
                  "starting_price": "100"},
        )
        listing_id = resp.json()["data"]["id"]

        api(BUYER)
        resp = await client.post(f"/api/v1/listings/{listing_id}/bids", json={"amount": "100"})

        assert resp.status_code == 422
        assert resp.json()["code"] == 5005

    @pytest.mark.asyncio
    async def test_list_and_get_are_public(self, client, api, view_counter):
        from src.main import app

        created = await _create_listing(client)
        del app.dependency_overrides[get_current_user]

        resp = await client.get("/api/v1/listings", params={"type": "fixed-price"})
        assert resp.status_code == 200
        assert [item["id"] for item in resp.json()["data"]["items"]] == [created["id"]]

        resp = await client.get(f"/api/v1/listings/{created['id']}")
        assert resp.status_code == 200
        view_counter.record_view.assert_awaited_once_with(created["id"])

    @pytest.mark.asyncio
    async def test_unknown_listing_is_404(self, client, api):
        resp = await client.get("/api/v1/listings/lst_missing")
        assert resp.status_code == 404
        assert resp.json()["code"] == 4001

    @pytest.mark.asyncio
    async def test_cancel_by_other_user_is_403(self, client, api):
        created = await _create_listing(client)
        api(BUYER)
        resp = await client.post(f"/api/v1/listings/{created['id']}/cancel")
        assert resp.status_code == 403
        assert resp.json()["code"] == 4005


    @pytest.mark.asyncio
    async def test_malformed_cursor_is_422(self, client, api):
        resp = await client.get("/api/v1/listings", params={"cursor": "not-a-cursor!"})

        assert resp.status_code == 422
        assert resp.json()["code"] == 1001


class TestSettlementEndpoints:
    @pytest.mark.asyncio
    async def test_buy(self, client, api):
        created = await _create_listing(client)
        api(BUYER)

        resp = await client.post(f"/api/v1/listings/{created['id']}/buy")

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["status"] == "sold"
        assert data["listing"]["status"] == "sold"
        assert data["fees"] == {
            "platform_fee": "12.5",
            "royalty_fee": "50",
            "total_fees": "62.5",
            "seller_amount": "437.5",
        }
        assert data["transfer"]["transaction_id"] == "0xabc"
        assert data["transaction"]["type"] == "purchase"

        resp = await client.get("/api/v1/transactions")
        items = resp.json()["data"]["items"]
        assert len(items) == 1
        assert items[0]["status"] == "completed"

        resp = await client.get(f"/api/v1/transactions/{items[0]['id']}")
        assert resp.json()["data"]["ledger_transaction_id"] == "0xabc"

    @pytest.mark.asyncio
    async def test_ledger_failure_is_retryable_502(self, client, api, ledger):
        created = await _create_listing(client)
        api(BUYER)
        ledger.fail_with("UNREACHABLE", "connection refused")

        resp = await client.post(f"/api/v1/listings/{created['id']}/buy")

        assert resp.status_code == 502
        body = resp.json()
        assert body["code"] == 6002
        assert body["retryable"] is True

        resp = await client.get(f"/api/v1/listings/{created['id']}/transactions")
        [item] = resp.json()["data"]["items"]
        assert item["status"] == "failed"
        assert item["error_code"] == "UNREACHABLE"

    @pytest.mark.asyncio
    async def test_complete_auction_not_ended(self, client, api):
        resp = await client.post(
            "/api/v1/listings/auctions",
            json={"token_id": "0.0.5005", "serial_number": 8, "episode_id": "episode-1",
                  "starting_price": "100"},
        )
        listing_id = resp.json()["data"]["id"]

        resp = await client.post(f"/api/v1/listings/{listing_id}/complete-auction")

        assert resp.status_code == 422
        assert resp.json()["code"] == 5003

    @pytest.mark.asyncio
    async def test_malformed_history_cursor_is_422(self, client, api):
        resp = await client.get("/api/v1/transactions", params={"cursor": "e30="})

        assert resp.status_code == 422
        assert resp.json()["code"] == 1001

    @pytest.mark.asyncio
    async def test_unknown_transaction_is_404(self, client, api):
        resp = await client.get("/api/v1/transactions/txr_missing")
        assert resp.status_code == 404
        assert resp.json()["code"] == 6004


class TestAdminEndpoints:
    @pytest.mark.asyncio
    async def test_non_admin_rejected(self, client, api):
        resp = await client.post("/api/v1/admin/sweep")
        assert resp.status_code == 403
        assert resp.json()["code"] == 1006

    @pytest.mark.asyncio
    async def test_sweep(self, client, api, clock):
        await client.post(
            "/api/v1/listings/auctions",
            json={"token_id": "0.0.5005", "serial_number": 8, "episode_id": "episode-1",
                  "starting_price": "100"},
        )
        clock.advance(hours=25)
        api(ADMIN)

        resp = await client.post("/api/v1/admin/sweep")

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["auctions_expired"] == 1
        assert data["processed"] == 1

    @pytest.mark.asyncio
    async def test_stats(self, client, api):
        created = await _create_listing(client)
        api(BUYER)
        await client.post(f"/api/v1/listings/{created['id']}/buy")
        api(ADMIN)

        resp = await client.get("/api/v1/admin/stats/marketplace")
        assert resp.json()["data"]["sold_listings"] == 1
        assert resp.json()["data"]["total_volume"] == "500"

        resp = await client.get("/api/v1/admin/stats/transactions", params={"days": 7})
        data = resp.json()["data"]
        assert data["completed_count"] == 1
        assert data["success_rate"] == "100"
        assert Decimal(data["total_platform_fees"]) == Decimal("12.5")


class TestAuth:
    @pytest.mark.asyncio
    async def test_missing_token_is_401(self, client):
        resp = await client.post("/api/v1/listings/lst_1/buy")
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_real_token_reaches_handler(self, client, api):
        from src.main import app

        del app.dependency_overrides[get_current_user]
        token = create_access_token("user-seller", "0.0.1001")

        resp = await client.post(
            "/api/v1/listings",
            headers={"Authorization": f"Bearer {token}"},
            json={"token_id": "0.0.5005", "serial_number": 7, "episode_id": "episode-1",
                  "price": "500"},
        )

        assert resp.status_code == 201
        assert resp.json()["data"]["seller_id"] == "user-seller"


class TestRequestId:
    @pytest.mark.asyncio
    async def test_inbound_request_id_is_kept(self, client, api):
        resp = await client.get("/api/v1/listings", headers={"X-Request-ID": "gw-1234"})
        assert resp.headers["X-Request-ID"] == "gw-1234"
        assert resp.json()["request_id"] == "gw-1234"

    @pytest.mark.asyncio
    async def test_malformed_inbound_id_replaced(self, client):
        resp = await client.get("/health", headers={"X-Request-ID": "bad id with spaces"})
        assert resp.headers["X-Request-ID"].startswith("req_")
