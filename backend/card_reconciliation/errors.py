"""
Card Reconciliation Errors

Linking conflicts are deliberately absent: a lost compare-and-swap is an
expected outcome (LinkOutcome.CONFLICT), not an exception.
"""

from typing import Any, Optional


class CardReconciliationError(Exception):
    """Base exception for the reconciliation engine."""
    pass


class CardNotFoundError(CardReconciliationError):
    def __init__(self, card_id: str, tenant_id: str):
        self.card_id = card_id
        self.tenant_id = tenant_id
        super().__init__(f"Card {card_id} not found for tenant {tenant_id}")


class CardInactiveError(CardReconciliationError):
    """Raised when importing transactions for a deactivated card."""
    def __init__(self, card_id: str):
        self.card_id = card_id
        super().__init__(f"Card {card_id} is not active")


class MalformedTransactionError(CardReconciliationError):
    """Raised when a feed record cannot be turned into a CardTransaction."""
    def __init__(self, message: str, field: Optional[str] = None, raw_value: Any = None):
        self.message = message
        self.field = field
        self.raw_value = raw_value
        super().__init__(message)


class DownstreamUnavailableError(CardReconciliationError):
    """
    A repository, feed or sink could not be reached.

    Propagated untouched so the caller can apply its own retry policy.
    """
    def __init__(self, component: str, message: str):
        self.component = component
        super().__init__(f"{component} unavailable: {message}")


class ReconciliationTimeoutError(CardReconciliationError):
    def __init__(self, tenant_id: str, timeout_seconds: float):
        self.tenant_id = tenant_id
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Reconciliation sweep for tenant {tenant_id} exceeded {timeout_seconds}s"
        )
