"""
Tests for the ride lifecycle over HTTP.

These tests verify:
  - Start -> end prices the ride and pays it from the balance
  - A ride the balance doesn't cover still completes, with a FAILED
    payment on record, and blocks new rides until settled
  - Cancelling costs nothing and frees the bike
  - One ride per rider and one rider per bike
  - Ending without an active pricing configuration leaves the ride open
  - The public quote endpoint with and without a configuration

Rides in these tests end a moment after they start, so the one-hour
minimum applies: every completed ride costs 200 XAF at the Standard
hourly rate.
"""

import pytest_asyncio


RIDE_COST = 200


@pytest_asyncio.fixture
async def priced_bike(admin_client) -> dict:
    """Active configuration, a Standard plan (200/h) and one bike on it."""
    config = await admin_client.post(
        "/admin/pricing/configs",
        json={"name": "default", "unlock_fee": 100, "base_hourly_rate": 200},
    )
    assert config.status_code == 201, config.text

    plan = await admin_client.post(
        "/admin/pricing/plans",
        json={
            "name": "Standard",
            "hourly_rate": 200,
            "daily_rate": 2000,
            "weekly_rate": 10000,
            "monthly_rate": 30000,
            "minimum_hours": 1,
        },
    )
    assert plan.status_code == 201, plan.text

    bike = await admin_client.post(
        "/admin/bikes",
        json={"code": "BK-100", "model": "City", "pricing_plan_id": plan.json()["id"]},
    )
    assert bike.status_code == 201, bike.text
    return bike.json()


async def _fund_balance(admin_client, user_id, amount):
    response = await admin_client.post(
        f"/admin/wallets/{user_id}/deposits",
        json={"amount": amount, "payment_method": "CASH", "ledger": "BALANCE"},
    )
    assert response.status_code == 201, response.text


async def _start(client, bike_id):
    return await client.post(
        "/rides",
        json={"bike_id": bike_id, "start_location": {"lat": 4.05, "lng": 9.7, "address": "Akwa"}},
    )


class TestRideLifecycle:
    async def test_start_and_end_pays_from_balance(
        self, authenticated_client, admin_client, priced_bike
    ):
        await _fund_balance(admin_client, authenticated_client.user_id, 500)

        start = await _start(authenticated_client, priced_bike["id"])
        assert start.status_code == 201
        ride = start.json()
        assert ride["status"] == "IN_PROGRESS"
        assert ride["payment_status"] == "PENDING"
        assert ride["start_location"]["address"] == "Akwa"

        bike = await authenticated_client.get(f"/bikes/{priced_bike['id']}")
        assert bike.json()["status"] == "IN_USE"

        end = await authenticated_client.post(
            f"/rides/{ride['id']}/end",
            json={"end_location": {"lat": 4.06, "lng": 9.71}, "distance_km": 2.4},
        )
        assert end.status_code == 200
        ended = end.json()
        assert ended["status"] == "COMPLETED"
        assert ended["cost"] == RIDE_COST
        assert ended["payment_status"] == "PAID"
        assert ended["payment_transaction_id"] is not None
        assert ended["pricing_snapshot"]["breakdown"]["tier"] == "hourly"

        wallet = await authenticated_client.get("/wallet")
        assert wallet.json()["balance"] == 500 - RIDE_COST
        assert wallet.json()["match"] is True

        bike = await authenticated_client.get(f"/bikes/{priced_bike['id']}")
        assert bike.json()["status"] == "AVAILABLE"
        assert bike.json()["latitude"] == 4.06

    async def test_payment_transaction_recorded(
        self, authenticated_client, admin_client, priced_bike
    ):
        await _fund_balance(admin_client, authenticated_client.user_id, 500)
        ride = (await _start(authenticated_client, priced_bike["id"])).json()
        await authenticated_client.post(f"/rides/{ride['id']}/end", json={})

        txns = await authenticated_client.get("/wallet/transactions", params={"type": "RIDE_PAYMENT"})
        [payment] = txns.json()
        assert payment["amount"] == -RIDE_COST
        assert payment["status"] == "COMPLETED"
        assert payment["ride_id"] == ride["id"]

    async def test_active_ride_and_stats(self, authenticated_client, admin_client, priced_bike):
        await _fund_balance(admin_client, authenticated_client.user_id, 500)

        none_active = await authenticated_client.get("/rides/active")
        assert none_active.status_code == 200
        assert none_active.json() is None

        ride = (await _start(authenticated_client, priced_bike["id"])).json()
        active = await authenticated_client.get("/rides/active")
        assert active.json()["id"] == ride["id"]

        await authenticated_client.post(f"/rides/{ride['id']}/end", json={"distance_km": 3.5})
        stats = await authenticated_client.get("/rides/stats")
        assert stats.json()["total_rides"] == 1
        assert stats.json()["total_cost"] == RIDE_COST
        assert stats.json()["total_distance_km"] == 3.5

    async def test_ending_twice_is_refused(self, authenticated_client, admin_client, priced_bike):
        await _fund_balance(admin_client, authenticated_client.user_id, 1000)
        ride = (await _start(authenticated_client, priced_bike["id"])).json()

        first = await authenticated_client.post(f"/rides/{ride['id']}/end", json={})
        second = await authenticated_client.post(f"/rides/{ride['id']}/end", json={})
        assert first.status_code == 200
        assert second.status_code == 409
        assert second.json()["error_type"] == "wrong_state"

        wallet = await authenticated_client.get("/wallet")
        assert wallet.json()["balance"] == 1000 - RIDE_COST


class TestInsufficientFunds:
    async def test_ride_completes_with_failed_payment(self, authenticated_client, priced_bike):
        ride = (await _start(authenticated_client, priced_bike["id"])).json()

        end = await authenticated_client.post(f"/rides/{ride['id']}/end", json={})
        assert end.status_code == 200
        ended = end.json()
        assert ended["status"] == "COMPLETED"
        assert ended["payment_status"] == "FAILED"
        assert ended["cost"] == RIDE_COST

        txns = await authenticated_client.get("/wallet/transactions", params={"status": "FAILED"})
        [failed] = txns.json()
        assert failed["type"] == "RIDE_PAYMENT"
        assert failed["amount"] == -RIDE_COST

        wallet = await authenticated_client.get("/wallet")
        assert wallet.json()["balance"] == 0
        assert wallet.json()["match"] is True

        bike = await authenticated_client.get(f"/bikes/{priced_bike['id']}")
        assert bike.json()["status"] == "AVAILABLE"

    async def test_unpaid_ride_blocks_until_settled(
        self, authenticated_client, admin_client, priced_bike
    ):
        ride = (await _start(authenticated_client, priced_bike["id"])).json()
        await authenticated_client.post(f"/rides/{ride['id']}/end", json={})

        blocked = await _start(authenticated_client, priced_bike["id"])
        assert blocked.status_code == 402
        assert blocked.json()["error_type"] == "unpaid_balance"
        assert blocked.json()["amount_due"] == RIDE_COST

        still_short = await authenticated_client.post(f"/rides/{ride['id']}/settle")
        assert still_short.status_code == 422
        assert still_short.json()["error_type"] == "insufficient_funds"

        await _fund_balance(admin_client, authenticated_client.user_id, 500)
        settled = await authenticated_client.post(f"/rides/{ride['id']}/settle")
        assert settled.status_code == 200
        assert settled.json()["payment_status"] == "PAID"

        wallet = await authenticated_client.get("/wallet")
        assert wallet.json()["balance"] == 500 - RIDE_COST

        again = await _start(authenticated_client, priced_bike["id"])
        assert again.status_code == 201

    async def test_paid_ride_cannot_be_settled(self, authenticated_client, admin_client, priced_bike):
        await _fund_balance(admin_client, authenticated_client.user_id, 500)
        ride = (await _start(authenticated_client, priced_bike["id"])).json()
        await authenticated_client.post(f"/rides/{ride['id']}/end", json={})

        response = await authenticated_client.post(f"/rides/{ride['id']}/settle")
        assert response.status_code == 409


class TestCancelAndConflicts:
    async def test_cancel_costs_nothing(self, authenticated_client, priced_bike):
        ride = (await _start(authenticated_client, priced_bike["id"])).json()

        cancel = await authenticated_client.post(
            f"/rides/{ride['id']}/cancel", json={"reason": "Flat tyre"}
        )
        assert cancel.status_code == 200
        assert cancel.json()["status"] == "CANCELLED"
        assert cancel.json()["payment_status"] == "NOT_REQUIRED"
        assert cancel.json()["cancel_reason"] == "Flat tyre"

        txns = await authenticated_client.get("/wallet/transactions")
        assert txns.json() == []

        bike = await authenticated_client.get(f"/bikes/{priced_bike['id']}")
        assert bike.json()["status"] == "AVAILABLE"

    async def test_second_ride_while_active(self, authenticated_client, admin_client, priced_bike):
        other_bike = await admin_client.post(
            "/admin/bikes",
            json={"code": "BK-101", "model": "City", "pricing_plan_id": priced_bike["pricing_plan_id"]},
        )
        await _start(authenticated_client, priced_bike["id"])

        second = await _start(authenticated_client, other_bike.json()["id"])
        assert second.status_code == 409
        assert second.json()["error_type"] == "session_already_active"

    async def test_bike_in_use_by_someone_else(
        self, authenticated_client, second_authenticated_client, priced_bike
    ):
        await _start(authenticated_client, priced_bike["id"])

        response = await _start(second_authenticated_client, priced_bike["id"])
        assert response.status_code == 409
        assert response.json()["error_type"] == "bike_unavailable"

    async def test_unknown_bike(self, authenticated_client, priced_bike):
        response = await _start(authenticated_client, "00000000-0000-0000-0000-000000000000")
        assert response.status_code == 404
        assert response.json()["error_type"] == "bike_not_found"

    async def test_cannot_end_someone_elses_ride(
        self, authenticated_client, second_authenticated_client, priced_bike
    ):
        ride = (await _start(authenticated_client, priced_bike["id"])).json()

        response = await second_authenticated_client.post(f"/rides/{ride['id']}/end", json={})
        assert response.status_code == 404

        active = await authenticated_client.get("/rides/active")
        assert active.json()["id"] == ride["id"]


class TestNotConfigured:
    async def test_end_without_pricing_keeps_ride_open(self, authenticated_client, admin_client):
        bike = await admin_client.post("/admin/bikes", json={"code": "BK-200", "model": "City"})
        ride = (await _start(authenticated_client, bike.json()["id"])).json()

        response = await authenticated_client.post(f"/rides/{ride['id']}/end", json={})
        assert response.status_code == 503
        assert response.json()["error_type"] == "not_configured"

        active = await authenticated_client.get("/rides/active")
        assert active.json()["status"] == "IN_PROGRESS"

        txns = await authenticated_client.get("/wallet/transactions")
        assert txns.json() == []

    async def test_admin_current_pricing_not_configured(self, admin_client):
        response = await admin_client.get("/admin/pricing/current", params={"hour": 10})
        assert response.status_code == 503


class TestPublicQuote:
    async def test_quote_without_configuration_is_display_only(self, client):
        response = await client.get("/public/pricing", params={"minutes": 90})
        assert response.status_code == 200
        body = response.json()
        assert body["configured"] is False
        assert body["currency"] == "XAF"
        assert body["quotes"][0]["cost"] == 300

    async def test_quote_with_configuration(self, client, priced_bike):
        response = await client.get("/public/pricing", params={"minutes": 90})
        body = response.json()
        assert body["configured"] is True
        assert body["unlock_fee"] == 100
        [quote] = body["quotes"]
        assert quote["plan"]["name"] == "Standard"
        assert quote["cost"] == 300
        assert quote["tier"] == "hourly"

    async def test_quote_for_unknown_plan(self, client, priced_bike):
        response = await client.get(
            "/public/pricing",
            params={"minutes": 30, "plan_id": "00000000-0000-0000-0000-000000000000"},
        )
        assert response.status_code == 404
