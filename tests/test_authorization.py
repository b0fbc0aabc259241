"""
Tests for authorization boundaries — cross-user isolation and role enforcement.

These tests verify three security properties:

1. **Cross-user isolation**: A logged-in RIDER cannot see or move another
   rider's money, rides, incidents or cash deposit requests. Every attempt
   returns 403 or 404.

2. **Role enforcement**: RIDERs cannot reach any /admin/* endpoint, and
   ADMINs cannot use the rider endpoints; staff act on other people's
   wallets only through /admin/*, where the audit log records them.

3. **Gateway authentication**: The payment callback refuses requests that
   don't present the configured token, and refuses everything while no
   token is configured.

The admin API flows (charges, cash validation, audit trail) are exercised
here too, since they are the only way money moves on someone else's behalf.
"""

import uuid

import pytest

from bikeshare.config import settings


async def _fund(admin_client, user_id, amount, ledger="BALANCE"):
    response = await admin_client.post(
        f"/admin/wallets/{user_id}/deposits",
        json={"amount": amount, "payment_method": "CASH", "ledger": ledger},
    )
    assert response.status_code == 201, response.text
    return response.json()


class TestCrossUserWalletAccess:
    """A logged-in rider cannot see another rider's ledger."""

    async def test_cannot_view_other_users_transaction(
        self, authenticated_client, second_authenticated_client, admin_client
    ):
        txn = await _fund(admin_client, authenticated_client.user_id, 500)

        resp = await second_authenticated_client.get(f"/wallet/transactions/{txn['id']}")
        assert resp.status_code == 403
        assert resp.json()["error_type"] == "unauthorized_access"

    async def test_transaction_lists_are_disjoint(
        self, authenticated_client, second_authenticated_client, admin_client
    ):
        await _fund(admin_client, authenticated_client.user_id, 500)
        await _fund(admin_client, second_authenticated_client.user_id, 700)

        a_txns = (await authenticated_client.get("/wallet/transactions")).json()
        b_txns = (await second_authenticated_client.get("/wallet/transactions")).json()

        assert [t["amount"] for t in a_txns] == [500]
        assert [t["amount"] for t in b_txns] == [700]
        assert {t["id"] for t in a_txns}.isdisjoint({t["id"] for t in b_txns})

    async def test_cannot_edit_other_users_cash_deposit(
        self, authenticated_client, second_authenticated_client
    ):
        request = await authenticated_client.post("/wallet/cash-deposits", json={"amount": 1000})
        assert request.status_code == 201

        edit = await second_authenticated_client.patch(
            f"/wallet/cash-deposits/{request.json()['id']}", json={"amount": 5000}
        )
        assert edit.status_code == 403

        cancel = await second_authenticated_client.delete(
            f"/wallet/cash-deposits/{request.json()['id']}"
        )
        assert cancel.status_code == 403

        own = await authenticated_client.get(f"/wallet/transactions/{request.json()['id']}")
        assert own.json()["amount"] == 1000
        assert own.json()["status"] == "PENDING"


class TestCrossUserRideAndIncidentAccess:
    async def test_cannot_view_other_users_ride(
        self, authenticated_client, second_authenticated_client, admin_client
    ):
        bike = await admin_client.post("/admin/bikes", json={"code": "BK-300", "model": "City"})
        ride = await authenticated_client.post("/rides", json={"bike_id": bike.json()["id"]})
        assert ride.status_code == 201

        resp = await second_authenticated_client.get(f"/rides/{ride.json()['id']}")
        assert resp.status_code == 404

        cancel = await second_authenticated_client.post(
            f"/rides/{ride.json()['id']}/cancel", json={}
        )
        assert cancel.status_code == 404

    async def test_cannot_view_other_users_incident(
        self, authenticated_client, second_authenticated_client
    ):
        report = await authenticated_client.post(
            "/incidents", json={"kind": "DAMAGE_REPORT", "description": "Bent wheel"}
        )
        assert report.status_code == 201

        resp = await second_authenticated_client.get(f"/incidents/{report.json()['id']}")
        assert resp.status_code == 404
        assert (await second_authenticated_client.get("/incidents")).json() == []


class TestRidersBlockedFromAdminEndpoints:
    """
    Every /admin/* endpoint must return 403 for riders, even when the
    request targets the rider's own wallet.
    """

    @pytest.mark.parametrize(
        "method,path",
        [
            ("get", "/admin/transactions"),
            ("get", "/admin/audit-logs"),
            ("get", "/admin/rides"),
            ("get", "/admin/incidents"),
            ("get", "/admin/bikes"),
            ("get", "/admin/pricing/configs"),
            ("get", "/admin/pricing/plans"),
            ("get", "/admin/pricing/rules"),
            ("get", "/admin/pricing/promotions"),
        ],
    )
    async def test_rider_cannot_read_admin_endpoints(self, authenticated_client, method, path):
        resp = await getattr(authenticated_client, method)(path)
        assert resp.status_code == 403

    async def test_rider_cannot_credit_own_wallet(self, authenticated_client):
        resp = await authenticated_client.post(
            f"/admin/wallets/{authenticated_client.user_id}/deposits",
            json={"amount": 100000, "ledger": "BALANCE"},
        )
        assert resp.status_code == 403

        wallet = await authenticated_client.get("/wallet")
        assert wallet.json()["balance"] == 0

    async def test_rider_cannot_validate_own_cash_deposit(self, authenticated_client):
        request = await authenticated_client.post("/wallet/cash-deposits", json={"amount": 1000})

        resp = await authenticated_client.post(
            f"/admin/cash-deposits/{request.json()['id']}/validate", json={}
        )
        assert resp.status_code == 403

    async def test_rider_cannot_change_pricing(self, authenticated_client):
        resp = await authenticated_client.post(
            "/admin/pricing/configs",
            json={"name": "free rides", "unlock_fee": 0, "base_hourly_rate": 1},
        )
        assert resp.status_code == 403

    async def test_rider_cannot_charge_another_rider(
        self, authenticated_client, second_authenticated_client
    ):
        resp = await authenticated_client.post(
            "/admin/charges",
            json={
                "user_id": str(second_authenticated_client.user_id),
                "amount": 100,
                "reason": "Just because",
            },
        )
        assert resp.status_code == 403


class TestAdminsBlockedFromRiderEndpoints:
    async def test_admin_cannot_use_wallet(self, admin_client):
        resp = await admin_client.get("/wallet")
        assert resp.status_code == 403
        assert "/admin/*" in resp.json()["detail"]

    async def test_admin_cannot_start_rides(self, admin_client):
        bike = await admin_client.post("/admin/bikes", json={"code": "BK-301", "model": "City"})
        resp = await admin_client.post("/rides", json={"bike_id": bike.json()["id"]})
        assert resp.status_code == 403

    async def test_admin_can_still_see_own_profile(self, admin_client):
        resp = await admin_client.get("/auth/me")
        assert resp.status_code == 200
        assert resp.json()["user_type"] == "ADMIN"


class TestPaymentCallbackToken:
    async def _pending_top_up(self, authenticated_client):
        response = await authenticated_client.post(
            "/wallet/top-ups", json={"amount": 2000, "payment_method": "MOBILE_MONEY"}
        )
        assert response.status_code == 201
        return response.json()

    async def test_callback_without_token_is_refused(
        self, client, authenticated_client, monkeypatch
    ):
        monkeypatch.setattr(settings, "PAYMENT_CALLBACK_TOKEN", "gateway-shared-secret")
        top_up = await self._pending_top_up(authenticated_client)

        resp = await client.post(
            "/payments/callback",
            json={"transaction_id": top_up["id"], "status": "SUCCESS", "amount": 2000},
        )
        assert resp.status_code == 401

        forged = await client.post(
            "/payments/callback",
            json={"transaction_id": top_up["id"], "status": "SUCCESS", "amount": 2000},
            headers={"X-Callback-Token": "guess"},
        )
        assert forged.status_code == 401

        wallet = await authenticated_client.get("/wallet")
        assert wallet.json()["balance"] == 0

    async def test_callback_with_token_credits_once(
        self, client, authenticated_client, monkeypatch
    ):
        monkeypatch.setattr(settings, "PAYMENT_CALLBACK_TOKEN", "gateway-shared-secret")
        top_up = await self._pending_top_up(authenticated_client)
        callback = {
            "transaction_id": top_up["id"],
            "status": "SUCCESS",
            "amount": 2000,
            "external_id": "MM-778899",
        }
        headers = {"X-Callback-Token": "gateway-shared-secret"}

        first = await client.post("/payments/callback", json=callback, headers=headers)
        again = await client.post("/payments/callback", json=callback, headers=headers)
        assert first.status_code == 200
        assert again.status_code == 200
        assert again.json()["status"] == "COMPLETED"

        wallet = await authenticated_client.get("/wallet")
        assert wallet.json()["balance"] == 2000
        assert wallet.json()["match"] is True

    async def test_unset_token_refuses_every_callback(
        self, client, authenticated_client, monkeypatch
    ):
        monkeypatch.setattr(settings, "PAYMENT_CALLBACK_TOKEN", None)
        top_up = await self._pending_top_up(authenticated_client)
        callback = {"transaction_id": top_up["id"], "status": "SUCCESS", "amount": 2000}

        bare = await client.post("/payments/callback", json=callback)
        with_header = await client.post(
            "/payments/callback", json=callback, headers={"X-Callback-Token": "anything"}
        )
        assert bare.status_code == 503
        assert with_header.status_code == 503

        wallet = await authenticated_client.get("/wallet")
        assert wallet.json()["balance"] == 0
        pending = await authenticated_client.get(f"/wallet/transactions/{top_up['id']}")
        assert pending.json()["status"] == "PENDING"

    async def test_credited_top_up_reads_back_with_gateway_reference(
        self, client, authenticated_client, admin_client, monkeypatch
    ):
        monkeypatch.setattr(settings, "PAYMENT_CALLBACK_TOKEN", "gateway-shared-secret")
        top_up = await self._pending_top_up(authenticated_client)
        await client.post(
            "/payments/callback",
            json={
                "transaction_id": top_up["id"],
                "status": "SUCCESS",
                "amount": 2000,
                "external_id": "MM-445566",
            },
            headers={"X-Callback-Token": "gateway-shared-secret"},
        )

        single = await authenticated_client.get(f"/wallet/transactions/{top_up['id']}")
        assert single.status_code == 200
        assert single.json()["external_id"] == "MM-445566"
        assert single.json()["status"] == "COMPLETED"

        history = await authenticated_client.get("/wallet/transactions")
        assert history.status_code == 200
        assert [t["external_id"] for t in history.json()] == ["MM-445566"]

        staff_view = await admin_client.get("/admin/transactions", params={"type": "DEPOSIT"})
        assert staff_view.status_code == 200
        assert top_up["id"] in {t["id"] for t in staff_view.json()}


class TestAdminMoneyFlows:
    """Money moved by staff is visible to the rider and in the audit trail."""

    async def test_cash_deposit_validation(self, authenticated_client, admin_client):
        request = await authenticated_client.post(
            "/wallet/cash-deposits", json={"amount": 1500, "note": "Handed to kiosk 3"}
        )
        txn_id = request.json()["id"]

        validated = await admin_client.post(
            f"/admin/cash-deposits/{txn_id}/validate", json={"note": "Counted"}
        )
        assert validated.status_code == 200
        assert validated.json()["status"] == "COMPLETED"
        assert validated.json()["processed_by"] == str(admin_client.user_id)

        twice = await admin_client.post(f"/admin/cash-deposits/{txn_id}/validate", json={})
        assert twice.status_code == 409

        wallet = await authenticated_client.get("/wallet")
        assert wallet.json()["balance"] == 1500

        logs = await admin_client.get(
            "/admin/audit-logs", params={"action": "wallet.validate_cash_deposit"}
        )
        [entry] = logs.json()
        assert entry["actor_id"] == str(admin_client.user_id)
        assert entry["status"] == "success"

    async def test_cash_deposit_below_minimum(self, authenticated_client):
        resp = await authenticated_client.post("/wallet/cash-deposits", json={"amount": 100})
        assert resp.status_code == 422
        assert resp.json()["error_type"] == "invalid_amount"

    async def test_charge_lifecycle_over_http(self, authenticated_client, admin_client):
        await _fund(admin_client, authenticated_client.user_id, 1000, ledger="DEPOSIT")

        created = await admin_client.post(
            "/admin/charges",
            json={
                "user_id": str(authenticated_client.user_id),
                "amount": 400,
                "reason": "Broken basket",
            },
        )
        assert created.status_code == 201
        incident_id = created.json()["id"]

        mine = await authenticated_client.get(f"/incidents/{incident_id}")
        assert mine.status_code == 200
        assert mine.json()["kind"] == "ADMIN_CHARGE"
        assert mine.json()["charge_amount"] == 400

        edited = await admin_client.patch(f"/admin/charges/{incident_id}", json={"amount": 600})
        assert edited.status_code == 200
        assert (await authenticated_client.get("/wallet")).json()["deposit"] == 400

        deleted = await admin_client.delete(f"/admin/charges/{incident_id}")
        assert deleted.status_code == 200

        wallet = (await authenticated_client.get("/wallet")).json()
        assert wallet["deposit"] == 1000
        assert wallet["match"] is True

        refunds = await authenticated_client.get("/wallet/transactions", params={"type": "REFUND"})
        assert sorted(t["amount"] for t in refunds.json()) == [400, 600]

    async def test_charge_beyond_deposit_is_refused_and_audited(
        self, authenticated_client, admin_client
    ):
        await _fund(admin_client, authenticated_client.user_id, 1000, ledger="DEPOSIT")

        resp = await admin_client.post(
            "/admin/charges",
            json={
                "user_id": str(authenticated_client.user_id),
                "amount": 1500,
                "reason": "Stolen bike",
            },
        )
        assert resp.status_code == 422
        assert resp.json()["error_type"] == "insufficient_deposit"
        assert resp.json()["retryable"] is False

        assert (await admin_client.get("/admin/incidents")).json() == []
        assert (await authenticated_client.get("/wallet")).json()["deposit"] == 1000

        logs = await admin_client.get(
            "/admin/audit-logs",
            params={"action": "wallet.charge_damage", "status": "failure"},
        )
        assert len(logs.json()) == 1

    async def test_unknown_transaction_for_admin(self, admin_client):
        resp = await admin_client.get(f"/admin/transactions/{uuid.uuid4()}")
        assert resp.status_code == 404
        assert resp.json()["error_type"] == "transaction_not_found"
