"""
Credit Ledger Module.

Debits credits before paid analysis work starts and credits them back when
the work fails, so a failed operation always nets to zero. All balance
changes go through the store's atomic operations.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Dict, List, Optional

from config import logger
from errors import (
    InsufficientCreditsError,
    PaidOperationError,
    classify_error,
    sanitize_error,
)
from storage.credit_store import SQLiteCreditStore
from storage.models import CreditBalance, CreditTransaction


class OperationType(Enum):
    """Paid operations and their ledger names."""

    QUICK_ANALYZE = "quick_analyze"
    TIMELINE_ANALYZE = "timeline_analyze"
    GENERATE_STORY = "generate_story"
    GENERATE_RECAP = "generate_recap"


CREDIT_COSTS: Dict[OperationType, int] = {
    OperationType.QUICK_ANALYZE: 1,
    OperationType.TIMELINE_ANALYZE: 5,
    OperationType.GENERATE_STORY: 10,
    OperationType.GENERATE_RECAP: 3,
}

WELCOME_BONUS = 10
MAX_REFUND = 100
GRANT_TYPES = ("purchase", "welcome_bonus", "admin_adjustment")


@dataclass
class DeductionResult:
    success: bool
    new_balance: int
    error: Optional[str] = None


def _label(operation: OperationType) -> str:
    return operation.value.replace("_", " ")


class CreditLedger:
    """
    Application-level credit operations over a credit store.

    Attributes:
        store (SQLiteCreditStore): Store performing the atomic mutations
    """

    def __init__(self, store: SQLiteCreditStore):
        self.store = store

    def deduct(
        self,
        user_id: str,
        operation: OperationType,
        repository_id: Optional[str] = None,
    ) -> DeductionResult:
        """
        Atomically debit the cost of an operation.

        Args:
            user_id (str): Account to debit
            operation (OperationType): Paid operation about to start
            repository_id (Optional[str]): Repository the work is for

        Returns:
            DeductionResult: success False with the unchanged balance when funds are short
        """
        cost = CREDIT_COSTS[operation]
        try:
            result = self.store.deduct_credits(
                user_id,
                cost,
                operation.value,
                repository_id=repository_id,
                description=f"Used {cost} credit(s) for {_label(operation)}",
            )
        except Exception as e:
            logger.error({"message": "Error deducting credits", "user_id": user_id, "error": str(e)})
            return DeductionResult(False, 0, "Failed to process credit deduction")

        if not result.success:
            logger.info(
                {
                    "message": "Credit deduction refused",
                    "user_id": user_id,
                    "operation": operation.value,
                    "balance": result.new_balance,
                    "reason": result.error_message,
                }
            )
            return DeductionResult(
                False, result.new_balance, result.error_message or "Insufficient credits"
            )
        return DeductionResult(True, result.new_balance)

    def refund(
        self,
        user_id: str,
        operation: OperationType,
        reason: Optional[str] = None,
        amount: Optional[int] = None,
    ) -> DeductionResult:
        """
        Credit back an operation's cost. Never raises.

        Args:
            user_id (str): Account to credit
            operation (OperationType): Operation that failed
            reason (Optional[str]): Recorded on the refund transaction
            amount (Optional[int]): Amount to return, defaults to the operation's cost

        Returns:
            DeductionResult: Outcome of the refund
        """
        if not isinstance(operation, OperationType):
            return DeductionResult(False, 0, "Invalid operation type")
        amount = CREDIT_COSTS[operation] if amount is None else amount
        if amount < 1 or amount > MAX_REFUND:
            return DeductionResult(False, 0, f"Refund amount must be between 1 and {MAX_REFUND}")

        try:
            result = self.store.refund_credits(
                user_id,
                amount,
                operation.value,
                description=reason or f"Refund for failed {_label(operation)}",
            )
        except Exception as e:
            logger.error({"message": "Error refunding credits", "user_id": user_id, "error": str(e)})
            return DeductionResult(False, 0, "Failed to process refund")

        if result.success:
            logger.info(
                {
                    "message": "Credits refunded",
                    "user_id": user_id,
                    "operation": operation.value,
                    "amount": amount,
                    "balance": result.new_balance,
                }
            )
        return DeductionResult(result.success, result.new_balance, result.error_message)

    def add_credits(
        self,
        user_id: str,
        amount: int,
        transaction_type: str,
        payment_session_id: Optional[str] = None,
        payment_intent_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> DeductionResult:
        """Grant credits for a purchase, bonus or admin adjustment."""
        if transaction_type not in GRANT_TYPES:
            return DeductionResult(False, 0, f"Invalid transaction type: {transaction_type}")
        try:
            result = self.store.add_credits(
                user_id,
                amount,
                transaction_type,
                payment_session_id=payment_session_id,
                payment_intent_id=payment_intent_id,
                description=description,
            )
        except Exception as e:
            logger.error({"message": "Error adding credits", "user_id": user_id, "error": str(e)})
            return DeductionResult(False, 0, "Failed to add credits")
        return DeductionResult(result.success, result.new_balance, result.error_message)

    def grant_welcome_bonus(self, user_id: str) -> DeductionResult:
        return self.add_credits(
            user_id,
            WELCOME_BONUS,
            "welcome_bonus",
            description=f"Welcome bonus: {WELCOME_BONUS} free credits",
        )

    def get_balance(self, user_id: str) -> Optional[CreditBalance]:
        return self.store.get_balance(user_id)

    def list_transactions(
        self, user_id: str, limit: int = 50, offset: int = 0
    ) -> List[CreditTransaction]:
        return self.store.list_transactions(user_id, limit=limit, offset=offset)

    @asynccontextmanager
    async def paid_operation(
        self,
        user_id: str,
        operation: OperationType,
        repository_id: Optional[str] = None,
    ) -> AsyncIterator[DeductionResult]:
        """
        Bracket paid work with a debit and a refund on failure.

        Usage:
            async with ledger.paid_operation(user, OperationType.QUICK_ANALYZE) as debit:
                ...

        Raises:
            InsufficientCreditsError: Before any work, if the debit is refused
            PaidOperationError: After the refund, if the work raised an exception
        """
        deduction = self.deduct(user_id, operation, repository_id)
        if not deduction.success:
            raise InsufficientCreditsError(
                deduction.error or "Insufficient credits",
                required=CREDIT_COSTS[operation],
                available=deduction.new_balance,
            )

        try:
            yield deduction
        except BaseException as e:
            self.refund(
                user_id,
                operation,
                reason=f"Refund due to {_label(operation)} failure",
            )
            if not isinstance(e, Exception):
                raise
            message, status = sanitize_error(e)
            logger.error(
                {
                    "message": "Paid operation failed, credits refunded",
                    "user_id": user_id,
                    "operation": operation.value,
                    "repository_id": repository_id,
                    "error": str(e),
                }
            )
            raise PaidOperationError(message, status, classify_error(e)) from e
