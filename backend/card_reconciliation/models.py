"""
Corporate Card Domain Models

Canonical shapes for everything the reconciliation engine reads or produces:
- Cards and card transactions (imported from the provider feed)
- Expense items (read-only, owned by the expense store)
- Match candidates, fraud alerts, reconciliation reports

Persisted entities are pydantic models; ephemeral engine results are
dataclasses, mirroring the split used across the rest of the backend.
"""

import uuid
from datetime import datetime, timezone, date
from decimal import Decimal
from enum import Enum
from typing import Optional, List, Dict, Any
from dataclasses import dataclass, field

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_id() -> str:
    return str(uuid.uuid4())


# ==================== ENUMS ====================

class CardNetwork(str, Enum):
    VISA = "VISA"
    MASTERCARD = "MASTERCARD"
    AMEX = "AMEX"
    OTHER = "OTHER"


class TransactionStatus(str, Enum):
    """Provider lifecycle: pending -> posted -> (disputed | reversed)."""
    PENDING = "pending"
    POSTED = "posted"
    DISPUTED = "disputed"
    REVERSED = "reversed"


class TransactionKind(str, Enum):
    PURCHASE = "purchase"
    REFUND = "refund"
    FEE = "fee"
    INTEREST = "interest"


class MatchConfidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class FraudAlertType(str, Enum):
    UNUSUAL_AMOUNT = "unusual_amount"
    UNUSUAL_LOCATION = "unusual_location"
    VELOCITY = "velocity"
    MERCHANT_CATEGORY = "merchant_category"
    DUPLICATE = "duplicate"
    OFFLINE_TRANSACTION = "offline_transaction"


class RecommendedAction(str, Enum):
    BLOCK = "block"
    REVIEW = "review"
    APPROVE = "approve"
    NOTIFY_USER = "notify_user"


class IssueKind(str, Enum):
    UNMATCHED_TRANSACTION = "unmatched_transaction"
    DUPLICATE_EXPENSE = "duplicate_expense"
    AMOUNT_MISMATCH = "amount_mismatch"
    DATE_MISMATCH = "date_mismatch"
    MISSING_RECEIPT = "missing_receipt"


class IssueSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class LinkMethod(str, Enum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"


class LinkOutcome(str, Enum):
    """Result of a compare-and-swap link attempt."""
    LINKED = "linked"
    # the expense item is taken, or the transaction does not exist
    CONFLICT = "conflict"
    # the transaction itself already carries a link
    TRANSACTION_ALREADY_LINKED = "transaction_already_linked"


# ==================== PERSISTED ENTITIES ====================

class CorporateCard(BaseModel):
    """
    A corporate card owned by a tenant.

    Immutable apart from last_sync_at and available_credit.
    """
    id: str
    tenant_id: str
    masked_card_number: str = Field(..., description="Masked PAN, e.g. **** **** **** 1234")
    last_four: str = Field(..., min_length=4, max_length=4)
    holder_name: str
    holder_id: Optional[str] = None
    network: CardNetwork = CardNetwork.OTHER
    bank_name: Optional[str] = None
    expiry_date: Optional[date] = None
    credit_limit: Decimal = Decimal("0")
    available_credit: Decimal = Decimal("0")
    currency: str = "BRL"
    home_country: str = Field(default="BR", description="ISO country code used for international checks")
    is_active: bool = True
    is_business_card: bool = True
    last_sync_at: Optional[datetime] = None


class TransactionLocation(BaseModel):
    country: str
    city: Optional[str] = None
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class CardTransaction(BaseModel):
    """
    A transaction imported from the card provider feed.

    provider_transaction_id is the idempotency key: re-importing the same
    id updates the existing record instead of creating a second one.
    """
    id: str = Field(default_factory=generate_id)
    tenant_id: str
    card_id: str
    provider_transaction_id: str
    amount: Decimal
    currency: str
    merchant_name: str
    merchant_category: str = ""
    transaction_date: datetime
    posting_date: Optional[datetime] = None
    description: str = ""
    status: TransactionStatus = TransactionStatus.POSTED
    kind: TransactionKind = TransactionKind.PURCHASE
    authorization_code: Optional[str] = None
    location: Optional[TransactionLocation] = None
    is_expensed: bool = False
    expense_item_id: Optional[str] = None
    classification_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    fraud_score: Optional[int] = Field(default=None, ge=0, le=100)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ExpenseItem(BaseModel):
    """Expense claim line as read from the expense store. Never mutated here."""
    id: str
    tenant_id: str
    expense_date: date
    amount: Decimal
    currency: str
    vendor: Optional[str] = None
    category: Optional[str] = None
    submitter_id: Optional[str] = None
    receipt_url: Optional[str] = None

    @property
    def has_receipt(self) -> bool:
        return bool(self.receipt_url)


class FraudAlert(BaseModel):
    id: str = Field(default_factory=generate_id)
    transaction_id: str
    card_id: str
    alert_type: FraudAlertType
    risk_score: int = Field(..., ge=0, le=100)
    description: str
    recommended_action: RecommendedAction
    created_at: datetime = Field(default_factory=utc_now)
    resolved_at: Optional[datetime] = None
    resolution: Optional[str] = None


class ReconciliationIssue(BaseModel):
    kind: IssueKind
    transaction_id: Optional[str] = None
    expense_item_id: Optional[str] = None
    description: str
    suggested_action: str
    severity: IssueSeverity


class CardReconciliation(BaseModel):
    """Period-level summary, always derived fresh from the transaction set."""
    card_id: str
    tenant_id: str
    period_start: date
    period_end: date
    total_transactions: int = 0
    matched_transactions: int = 0
    unmatched_transactions: int = 0
    business_expense_total: Decimal = Decimal("0")
    personal_expense_total: Decimal = Decimal("0")
    disputed_amount_total: Decimal = Decimal("0")
    reconciliation_score: int = Field(default=100, ge=0, le=100)
    issues: List[ReconciliationIssue] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=utc_now)


# ==================== ENGINE RESULTS ====================

@dataclass(frozen=True)
class ClassificationResult:
    business_probability: float


@dataclass(frozen=True)
class MatchScore:
    """Normalised score plus the reasons that produced it, in evaluation order."""
    score: float
    reasons: List[str]


@dataclass
class ExpenseMatch:
    """
    A candidate pairing of one transaction with one expense item.

    Ephemeral: produced fresh on every matching run.
    """
    transaction: CardTransaction
    expense_item: ExpenseItem
    match_score: float
    match_reasons: List[str]
    confidence: MatchConfidence
    requires_review: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction.id,
            "provider_transaction_id": self.transaction.provider_transaction_id,
            "expense_item_id": self.expense_item.id,
            "match_score": self.match_score,
            "match_reasons": list(self.match_reasons),
            "confidence": self.confidence.value,
            "requires_review": self.requires_review
        }


@dataclass(frozen=True)
class FraudCheckResult:
    """Outcome of one independent fraud check for one transaction."""
    alert_type: FraudAlertType
    risk_score: int
    description: str


@dataclass
class AutoMatchSummary:
    matched: int = 0
    requires_review: int = 0
    discarded: int = 0
    conflicts: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "matched": self.matched,
            "requires_review": self.requires_review,
            "discarded": self.discarded,
            "conflicts": self.conflicts
        }


@dataclass
class ImportIssue:
    """A feed record that could not be imported."""
    provider_transaction_id: Optional[str]
    error: str
    field: Optional[str] = None


@dataclass
class ImportResult:
    card_id: str
    tenant_id: str
    transactions: List[CardTransaction] = field(default_factory=list)
    issues: List[ImportIssue] = field(default_factory=list)

    @property
    def imported_count(self) -> int:
        return len(self.transactions)

    @property
    def business_count(self) -> int:
        return sum(
            1 for t in self.transactions
            if t.classification_score is not None and t.classification_score > 0.7
        )

    @property
    def high_risk_count(self) -> int:
        return sum(1 for t in self.transactions if t.fraud_score is not None and t.fraud_score > 70)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "card_id": self.card_id,
            "tenant_id": self.tenant_id,
            "imported": self.imported_count,
            "skipped": len(self.issues),
            "business_transactions": self.business_count,
            "high_risk_transactions": self.high_risk_count,
            "transaction_ids": [t.id for t in self.transactions],
            "issues": [
                {
                    "provider_transaction_id": i.provider_transaction_id,
                    "field": i.field,
                    "error": i.error
                }
                for i in self.issues
            ]
        }


@dataclass
class TenantSweepResult:
    """Outcome of reconciling every active card of a tenant."""
    tenant_id: str
    period_start: date
    period_end: date
    auto_match: AutoMatchSummary = field(default_factory=AutoMatchSummary)
    reports: List[CardReconciliation] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "auto_match": self.auto_match.to_dict(),
            "reports": [r.model_dump(mode="json") for r in self.reports]
        }
