"""
Tests for the wallet service, called directly against a session.

These tests verify:
  - Deposits, top-ups and gateway callbacks credit the wallet exactly once
  - Damage charges refuse to overdraw the deposit (no clamping)
  - Cash deposit requests follow PENDING -> COMPLETED | REJECTED | CANCELLED
  - Balance -> deposit transfers and withdrawals keep both ledgers in step
  - The cached wallet amounts always equal the sum of COMPLETED transactions
"""

import uuid

import pytest
from sqlalchemy import func, select

from bikeshare.exceptions import (
    InsufficientDepositError,
    InsufficientFundsError,
    InvalidAmountError,
    TransactionNotFoundError,
    UnauthorizedAccessError,
    WalletNotFoundError,
    WrongStateError,
)
from bikeshare.models.audit_log import AuditLog
from bikeshare.models.transaction import (
    DamageCharge,
    Ledger,
    PaymentMethod,
    TransactionStatus,
    TransactionType,
)
from bikeshare.services import auth_service, wallet_service


async def _balance(db, user_id) -> dict:
    return await wallet_service.get_balance(db, user_id)


class TestDeposits:
    async def test_new_rider_has_an_empty_wallet(self, db_session, rider):
        balance = await _balance(db_session, rider.id)
        assert balance["balance"] == 0
        assert balance["deposit"] == 0
        assert balance["currency"] == "XAF"
        assert balance["match"] is True

    async def test_credit_goes_to_deposit_by_default(self, db_session, rider):
        deposit = await wallet_service.credit_deposit(
            db_session, rider.id, 1000, PaymentMethod.MOBILE_MONEY
        )
        assert deposit.status == TransactionStatus.COMPLETED
        assert deposit.ledger == Ledger.DEPOSIT

        balance = await _balance(db_session, rider.id)
        assert balance["deposit"] == 1000
        assert balance["balance"] == 0
        assert balance["ledger_deposit"] == 1000

    async def test_credit_to_balance_on_request(self, db_session, rider):
        await wallet_service.credit_deposit(
            db_session, rider.id, 750, PaymentMethod.CARD, ledger=Ledger.BALANCE
        )
        balance = await _balance(db_session, rider.id)
        assert balance["balance"] == 750
        assert balance["deposit"] == 0

    @pytest.mark.parametrize("amount", [0, -100, 10.5, True])
    async def test_non_positive_or_non_integer_amount_rejected(self, db_session, rider, amount):
        with pytest.raises(InvalidAmountError):
            await wallet_service.credit_deposit(db_session, rider.id, amount, PaymentMethod.CARD)

    async def test_idempotency_key_replay_returns_stored_transaction(self, db_session, rider):
        first = await wallet_service.credit_deposit(
            db_session, rider.id, 500, PaymentMethod.CARD, idempotency_key="dep-1"
        )
        second = await wallet_service.credit_deposit(
            db_session, rider.id, 500, PaymentMethod.CARD, idempotency_key="dep-1"
        )
        assert second.id == first.id
        assert (await _balance(db_session, rider.id))["deposit"] == 500

    async def test_idempotency_key_of_another_wallet_is_refused(self, db_session, rider):
        other, _ = await auth_service.signup(
            db_session, email="other@example.com", password="OtherPass123!",
            first_name="Other", last_name="Rider",
        )
        await wallet_service.credit_deposit(
            db_session, rider.id, 500, PaymentMethod.CARD, idempotency_key="shared"
        )
        with pytest.raises(WrongStateError):
            await wallet_service.credit_deposit(
                db_session, other.id, 500, PaymentMethod.CARD, idempotency_key="shared"
            )

    async def test_unknown_user_has_no_wallet(self, db_session):
        with pytest.raises(WalletNotFoundError):
            await wallet_service.credit_deposit(db_session, uuid.uuid4(), 100, PaymentMethod.CARD)


class TestGatewayCallbacks:
    """A gateway may deliver the same callback more than once."""

    async def test_top_up_is_pending_until_callback(self, db_session, rider):
        top_up = await wallet_service.initiate_top_up(db_session, rider.id, 1000)
        assert top_up.status == TransactionStatus.PENDING
        assert (await _balance(db_session, rider.id))["balance"] == 0

    async def test_successful_callback_credits_once(self, db_session, rider):
        top_up = await wallet_service.initiate_top_up(db_session, rider.id, 1000)

        for _ in range(3):
            result = await wallet_service.apply_gateway_callback(
                db_session, top_up.id, succeeded=True, amount=1000, external_id="MM-123"
            )
            assert result.status == TransactionStatus.COMPLETED

        balance = await _balance(db_session, rider.id)
        assert balance["balance"] == 1000
        assert balance["match"] is True

    async def test_failed_callback_credits_nothing(self, db_session, rider):
        top_up = await wallet_service.initiate_top_up(db_session, rider.id, 1000)
        result = await wallet_service.apply_gateway_callback(
            db_session, top_up.id, succeeded=False, amount=1000
        )
        assert result.status == TransactionStatus.FAILED

        # A late success for the same transaction changes nothing
        again = await wallet_service.apply_gateway_callback(
            db_session, top_up.id, succeeded=True, amount=1000
        )
        assert again.status == TransactionStatus.FAILED
        assert (await _balance(db_session, rider.id))["balance"] == 0

    async def test_amount_mismatch_rejected(self, db_session, rider):
        top_up = await wallet_service.initiate_top_up(db_session, rider.id, 1000)
        with pytest.raises(InvalidAmountError):
            await wallet_service.apply_gateway_callback(
                db_session, top_up.id, succeeded=True, amount=999
            )
        assert (await _balance(db_session, rider.id))["balance"] == 0

    async def test_unknown_transaction(self, db_session, rider):
        with pytest.raises(TransactionNotFoundError):
            await wallet_service.apply_gateway_callback(
                db_session, uuid.uuid4(), succeeded=True, amount=1000
            )

    async def test_deposit_ledger_top_up(self, db_session, rider):
        top_up = await wallet_service.initiate_top_up(
            db_session, rider.id, 2000, ledger=Ledger.DEPOSIT
        )
        await wallet_service.apply_gateway_callback(db_session, top_up.id, True, 2000)
        balance = await _balance(db_session, rider.id)
        assert balance["deposit"] == 2000
        assert balance["balance"] == 0


class TestDamageCharges:
    async def test_charge_larger_than_deposit_is_refused(self, db_session, rider, admin_user):
        """Deposit 1 000, charge 1 500: refused, nothing recorded, deposit unchanged."""
        await wallet_service.credit_deposit(db_session, rider.id, 1000, PaymentMethod.CASH)

        with pytest.raises(InsufficientDepositError) as exc_info:
            await wallet_service.charge_damage(
                db_session, rider.id, 1500, reason="Broken wheel", admin_id=admin_user.id
            )
        assert exc_info.value.requested == 1500
        assert exc_info.value.available == 1000

        count = await db_session.execute(select(func.count(DamageCharge.id)))
        assert count.scalar_one() == 0
        assert (await _balance(db_session, rider.id))["deposit"] == 1000

    async def test_refused_charge_leaves_failure_audit_entry(self, db_session, rider, admin_user):
        with pytest.raises(InsufficientDepositError):
            await wallet_service.charge_damage(
                db_session, rider.id, 100, reason="Scratch", admin_id=admin_user.id
            )
        result = await db_session.execute(
            select(AuditLog).where(AuditLog.action == "wallet.charge_damage")
        )
        entry = result.scalar_one()
        assert entry.status == "failure"
        assert entry.actor_id == admin_user.id

    async def test_charge_may_empty_the_deposit_exactly(self, db_session, rider, admin_user):
        await wallet_service.credit_deposit(db_session, rider.id, 1000, PaymentMethod.CASH)
        charge = await wallet_service.charge_damage(
            db_session, rider.id, 1000, reason="Lost bike", admin_id=admin_user.id
        )
        assert charge.amount == -1000
        assert charge.ledger == Ledger.DEPOSIT
        balance = await _balance(db_session, rider.id)
        assert balance["deposit"] == 0
        assert balance["match"] is True

    async def test_reverse_charge_restores_deposit_once(self, db_session, rider, admin_user):
        await wallet_service.credit_deposit(db_session, rider.id, 1000, PaymentMethod.CASH)
        charge = await wallet_service.charge_damage(
            db_session, rider.id, 400, reason="Bent fork", admin_id=admin_user.id
        )

        refund = await wallet_service.reverse_charge(db_session, charge.id, admin_id=admin_user.id)
        replay = await wallet_service.reverse_charge(db_session, charge.id, admin_id=admin_user.id)

        assert replay.id == refund.id
        assert refund.amount == 400
        assert refund.reverses_transaction_id == charge.id
        assert (await _balance(db_session, rider.id))["deposit"] == 1000

        original = await wallet_service.get_transaction(db_session, charge.id)
        assert original.amount == -400
        assert original.status == TransactionStatus.COMPLETED

    async def test_credits_cannot_be_reversed(self, db_session, rider):
        deposit = await wallet_service.credit_deposit(db_session, rider.id, 1000, PaymentMethod.CASH)
        with pytest.raises(WrongStateError):
            await wallet_service.reverse_charge(db_session, deposit.id)


class TestCashDeposits:
    async def test_below_minimum_rejected(self, db_session, rider):
        with pytest.raises(InvalidAmountError):
            await wallet_service.create_cash_deposit_request(db_session, rider.id, 499)

    async def test_request_credits_nothing_until_validated(self, db_session, rider, admin_user):
        request = await wallet_service.create_cash_deposit_request(
            db_session, rider.id, 1500, note="Paid at the kiosk"
        )
        assert request.status == TransactionStatus.PENDING
        assert request.type == TransactionType.CASH_DEPOSIT
        assert (await _balance(db_session, rider.id))["balance"] == 0

        validated = await wallet_service.validate_cash_deposit(
            db_session, request.id, admin_id=admin_user.id
        )
        assert validated.status == TransactionStatus.COMPLETED
        assert validated.processed_by == admin_user.id
        assert (await _balance(db_session, rider.id))["balance"] == 1500

    async def test_validation_happens_once(self, db_session, rider, admin_user):
        request = await wallet_service.create_cash_deposit_request(db_session, rider.id, 1000)
        await wallet_service.validate_cash_deposit(db_session, request.id, admin_id=admin_user.id)

        with pytest.raises(WrongStateError):
            await wallet_service.validate_cash_deposit(db_session, request.id, admin_id=admin_user.id)
        assert (await _balance(db_session, rider.id))["balance"] == 1000

    async def test_rejected_request_cannot_be_validated(self, db_session, rider, admin_user):
        request = await wallet_service.create_cash_deposit_request(db_session, rider.id, 1000)
        rejected = await wallet_service.reject_cash_deposit(
            db_session, request.id, admin_id=admin_user.id, note="No cash received"
        )
        assert rejected.status == TransactionStatus.REJECTED
        assert rejected.note == "No cash received"

        with pytest.raises(WrongStateError):
            await wallet_service.validate_cash_deposit(db_session, request.id, admin_id=admin_user.id)
        assert (await _balance(db_session, rider.id))["balance"] == 0

    async def test_rider_edits_and_cancels_pending_request(self, db_session, rider):
        request = await wallet_service.create_cash_deposit_request(db_session, rider.id, 1000)

        updated = await wallet_service.update_cash_deposit_request(
            db_session, rider.id, request.id, amount=2000
        )
        assert updated.amount == 2000
        assert updated.total_amount == 2000

        cancelled = await wallet_service.cancel_cash_deposit_request(db_session, rider.id, request.id)
        assert cancelled.status == TransactionStatus.CANCELLED

        with pytest.raises(WrongStateError):
            await wallet_service.update_cash_deposit_request(
                db_session, rider.id, request.id, note="too late"
            )

    async def test_other_rider_cannot_touch_request(self, db_session, rider):
        other, _ = await auth_service.signup(
            db_session, email="other@example.com", password="OtherPass123!",
            first_name="Other", last_name="Rider",
        )
        request = await wallet_service.create_cash_deposit_request(db_session, rider.id, 1000)
        with pytest.raises(UnauthorizedAccessError):
            await wallet_service.cancel_cash_deposit_request(db_session, other.id, request.id)


class TestTransfersAndWithdrawals:
    async def test_transfer_to_deposit_writes_two_legs(self, db_session, rider):
        await wallet_service.credit_deposit(
            db_session, rider.id, 1000, PaymentMethod.CARD, ledger=Ledger.BALANCE
        )
        debit_leg, credit_leg = await wallet_service.transfer_to_deposit(db_session, rider.id, 300)

        assert debit_leg.amount == -300
        assert debit_leg.ledger == Ledger.BALANCE
        assert credit_leg.amount == 300
        assert credit_leg.ledger == Ledger.DEPOSIT
        assert debit_leg.transfer_pair_id == credit_leg.transfer_pair_id

        balance = await _balance(db_session, rider.id)
        assert balance["balance"] == 700
        assert balance["deposit"] == 300
        assert balance["match"] is True

    async def test_transfer_replay_returns_both_legs(self, db_session, rider):
        await wallet_service.credit_deposit(
            db_session, rider.id, 1000, PaymentMethod.CARD, ledger=Ledger.BALANCE
        )
        first = await wallet_service.transfer_to_deposit(
            db_session, rider.id, 300, idempotency_key="move-1"
        )
        second = await wallet_service.transfer_to_deposit(
            db_session, rider.id, 300, idempotency_key="move-1"
        )
        assert [leg.id for leg in second] == [leg.id for leg in first]
        assert (await _balance(db_session, rider.id))["deposit"] == 300

    async def test_transfer_beyond_balance_refused(self, db_session, rider):
        with pytest.raises(InsufficientFundsError):
            await wallet_service.transfer_to_deposit(db_session, rider.id, 1)
        balance = await _balance(db_session, rider.id)
        assert balance["balance"] == 0
        assert balance["deposit"] == 0

    async def test_withdraw(self, db_session, rider):
        await wallet_service.credit_deposit(
            db_session, rider.id, 1000, PaymentMethod.CARD, ledger=Ledger.BALANCE
        )
        withdrawal = await wallet_service.withdraw(db_session, rider.id, 400)
        assert withdrawal.amount == -400
        assert (await _balance(db_session, rider.id))["balance"] == 600

        with pytest.raises(InsufficientFundsError) as exc_info:
            await wallet_service.withdraw(db_session, rider.id, 601)
        assert exc_info.value.available == 600


class TestReconciliation:
    async def test_cached_amounts_match_ledger_after_mixed_operations(
        self, db_session, rider, admin_user
    ):
        await wallet_service.credit_deposit(db_session, rider.id, 5000, PaymentMethod.CASH)
        await wallet_service.credit_deposit(
            db_session, rider.id, 3000, PaymentMethod.CARD, ledger=Ledger.BALANCE
        )
        charge = await wallet_service.charge_damage(
            db_session, rider.id, 1200, reason="Seat", admin_id=admin_user.id
        )
        await wallet_service.reverse_charge(db_session, charge.id, admin_id=admin_user.id)
        await wallet_service.charge_damage(
            db_session, rider.id, 700, reason="Bell", admin_id=admin_user.id
        )
        await wallet_service.transfer_to_deposit(db_session, rider.id, 1000)
        await wallet_service.withdraw(db_session, rider.id, 500)
        request = await wallet_service.create_cash_deposit_request(db_session, rider.id, 600)
        await wallet_service.validate_cash_deposit(db_session, request.id, admin_id=admin_user.id)

        balance = await _balance(db_session, rider.id)
        assert balance["balance"] == 3000 - 1000 - 500 + 600
        assert balance["deposit"] == 5000 - 700 + 1000
        assert balance["ledger_balance"] == balance["balance"]
        assert balance["ledger_deposit"] == balance["deposit"]
        assert balance["match"] is True

    async def test_pending_and_failed_rows_are_not_counted(self, db_session, rider):
        await wallet_service.initiate_top_up(db_session, rider.id, 1000)
        failed = await wallet_service.initiate_top_up(db_session, rider.id, 2000)
        await wallet_service.apply_gateway_callback(db_session, failed.id, False, 2000)

        balance = await _balance(db_session, rider.id)
        assert balance["ledger_balance"] == 0
        assert balance["match"] is True

    async def test_history_is_filterable(self, db_session, rider):
        await wallet_service.credit_deposit(db_session, rider.id, 100, PaymentMethod.CASH)
        await wallet_service.initiate_top_up(db_session, rider.id, 200)

        history = await wallet_service.get_transaction_history(db_session, rider.id)
        assert sorted(txn.amount for txn in history) == [100, 200]

        pending = await wallet_service.get_transaction_history(
            db_session, rider.id, status_filter=TransactionStatus.PENDING
        )
        assert [txn.amount for txn in pending] == [200]
