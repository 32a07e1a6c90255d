"""
Storage Records.

Plain records returned by the SQLite stores.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class StoreResult:
    """
    Outcome of an atomic credit operation.

    Attributes:
        success (bool): Whether the balance changed
        new_balance (int): Balance after the operation, or the unchanged balance
        error_message (Optional[str]): Reason when success is False
    """

    success: bool
    new_balance: int
    error_message: Optional[str] = None


@dataclass
class CreditBalance:
    user_id: str
    balance: int
    lifetime_purchased: int
    lifetime_used: int
    updated_at: str


@dataclass
class CreditTransaction:
    """One audit row of the credit ledger, amount signed."""

    id: int
    user_id: str
    amount: int
    balance_after: int
    transaction_type: str
    operation_type: Optional[str]
    repository_id: Optional[str]
    payment_session_id: Optional[str]
    payment_intent_id: Optional[str]
    description: Optional[str]
    created_at: str


@dataclass
class StoredMilestone:
    """Milestone row as persisted for one repository and source."""

    id: int
    repository_id: str
    source: str
    title: str
    description: str
    commit_sha: Optional[str]
    milestone_date: str
    x_post_suggestion: str
    milestone_type: Optional[str]
    created_at: str
    screenshot: Optional[bytes] = None
