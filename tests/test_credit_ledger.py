"""
Credit Ledger Test Suite.

Covers the atomic store operations, refund validation and the paid
operation bracket that guarantees failed work nets to zero credits.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor

import pytest

from errors import (
    ClientError,
    ErrorKind,
    InsufficientCreditsError,
    PaidOperationError,
    RetryableError,
)
from ledger.credit_ledger import (
    CREDIT_COSTS,
    WELCOME_BONUS,
    CreditLedger,
    OperationType,
)
from storage.credit_store import SQLiteCreditStore


@pytest.fixture
def store(tmp_path):
    """Create a credit store in a temporary database."""
    store = SQLiteCreditStore(str(tmp_path / "credits.db"))
    yield store
    store.close()


@pytest.fixture
def ledger(store):
    return CreditLedger(store)


def test_credit_costs():
    assert CREDIT_COSTS[OperationType.QUICK_ANALYZE] == 1
    assert CREDIT_COSTS[OperationType.TIMELINE_ANALYZE] == 5
    assert CREDIT_COSTS[OperationType.GENERATE_STORY] == 10
    assert CREDIT_COSTS[OperationType.GENERATE_RECAP] == 3


def test_deduct_insufficient_balance_scenario(store):
    """Test that a cost of 5 on a balance of 3 fails and leaves the balance at 3."""
    store.add_credits("user", 3, "purchase")

    result = store.deduct_credits("user", 5, "timeline_analyze")

    assert not result.success
    assert result.new_balance == 3
    assert result.error_message == "Insufficient credits"
    assert store.get_balance("user").balance == 3


def test_deduct_unknown_user(store):
    result = store.deduct_credits("nobody", 1, "quick_analyze")

    assert not result.success
    assert result.error_message == "No credit balance found for user"


def test_deduct_records_usage(store):
    """Test that a deduction updates the balance and the audit log together."""
    store.add_credits("user", 10, "purchase")

    result = store.deduct_credits("user", 1, "quick_analyze", repository_id="repo-1")

    assert result.success
    assert result.new_balance == 9
    balance = store.get_balance("user")
    assert balance.lifetime_used == 1
    assert balance.lifetime_purchased == 10
    latest = store.list_transactions("user")[0]
    assert latest.amount == -1
    assert latest.transaction_type == "usage"
    assert latest.repository_id == "repo-1"
    assert latest.balance_after == 9


def test_add_credits_upserts(store):
    """Test that the first grant creates the balance and later ones add to it."""
    assert store.add_credits("user", 10, "welcome_bonus").new_balance == 10
    assert store.add_credits("user", 5, "admin_adjustment").new_balance == 15
    assert store.get_balance("user").lifetime_purchased == 10


def test_concurrent_deductions_never_overdraw(tmp_path):
    """Test that concurrent deductions cannot drive the balance below zero."""
    store = SQLiteCreditStore(str(tmp_path / "race.db"))
    store.add_credits("user", 10, "purchase")

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(
            pool.map(lambda _: store.deduct_credits("user", 3, "generate_recap"), range(8))
        )

    assert len([r for r in results if r.success]) == 3
    assert store.get_balance("user").balance == 1
    store.close()


def test_welcome_bonus(ledger):
    result = ledger.grant_welcome_bonus("user")

    assert result.success
    assert result.new_balance == WELCOME_BONUS
    assert ledger.list_transactions("user")[0].transaction_type == "welcome_bonus"


def test_add_credits_rejects_unknown_type(ledger):
    assert not ledger.add_credits("user", 10, "gift").success


def test_refund_validation(ledger):
    """Test that refunds outside 1..100 are refused without raising."""
    ledger.add_credits("user", 10, "purchase")

    assert not ledger.refund("user", OperationType.QUICK_ANALYZE, amount=0).success
    assert not ledger.refund("user", OperationType.QUICK_ANALYZE, amount=101).success
    assert not ledger.refund("user", "not_an_operation").success
    assert ledger.get_balance("user").balance == 10


def test_refund_lowers_lifetime_used(ledger):
    ledger.add_credits("user", 10, "purchase")
    ledger.deduct("user", OperationType.TIMELINE_ANALYZE)

    result = ledger.refund("user", OperationType.TIMELINE_ANALYZE, reason="failed")

    assert result.success
    assert result.new_balance == 10
    assert ledger.get_balance("user").lifetime_used == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("operation", list(OperationType))
async def test_failed_operation_nets_to_zero(ledger, operation):
    """Test that deduct, fail, refund leaves the balance unchanged."""
    ledger.add_credits("user", 50, "purchase")
    before = ledger.get_balance("user").balance

    with pytest.raises(PaidOperationError):
        async with ledger.paid_operation("user", operation, "repo-1"):
            raise RetryableError("connection reset")

    assert ledger.get_balance("user").balance == before


@pytest.mark.asyncio
async def test_paid_operation_success_keeps_debit(ledger):
    ledger.add_credits("user", 10, "purchase")

    async with ledger.paid_operation("user", OperationType.TIMELINE_ANALYZE) as debit:
        assert debit.new_balance == 5

    assert ledger.get_balance("user").balance == 5


@pytest.mark.asyncio
async def test_paid_operation_refused_before_work(ledger):
    """Test that an insufficient balance stops the work before it starts."""
    ledger.add_credits("user", 3, "purchase")
    started = False

    with pytest.raises(InsufficientCreditsError) as exc_info:
        async with ledger.paid_operation("user", OperationType.TIMELINE_ANALYZE):
            started = True

    assert not started
    assert exc_info.value.status == 402
    assert exc_info.value.required == 5
    assert exc_info.value.available == 3
    assert ledger.get_balance("user").balance == 3


@pytest.mark.asyncio
async def test_paid_operation_error_is_sanitized(ledger):
    """Test that the surfaced error hides internals but chains the cause."""
    ledger.add_credits("user", 10, "purchase")
    cause = ClientError("Invalid API key sk-abcdefghijklmnopqrstuvwxyz", 401)

    with pytest.raises(PaidOperationError) as exc_info:
        async with ledger.paid_operation("user", OperationType.QUICK_ANALYZE):
            raise cause

    assert "sk-" not in exc_info.value.message
    assert exc_info.value.kind == ErrorKind.CLIENT_ERROR
    assert exc_info.value.__cause__ is cause


@pytest.mark.asyncio
async def test_cancellation_refunds(ledger):
    """Test that a cancelled operation is refunded and stays cancelled."""
    ledger.add_credits("user", 10, "purchase")

    with pytest.raises(asyncio.CancelledError):
        async with ledger.paid_operation("user", OperationType.QUICK_ANALYZE):
            raise asyncio.CancelledError()

    assert ledger.get_balance("user").balance == 10
