"""
Card Reconciliation API Endpoints

REST API for the corporate card reconciliation engine:
- GET /api/card-reconciliation/status - Module status
- GET /api/card-reconciliation/scoring-tables - Active heuristics
- POST /api/card-reconciliation/cards/{card_id}/import - Import feed transactions
- POST /api/card-reconciliation/cards/{card_id}/fraud-scan - Run fraud checks
- GET /api/card-reconciliation/cards/{card_id}/reconciliation - Period report
- POST /api/card-reconciliation/match - Ranked candidate matches
- POST /api/card-reconciliation/auto-match - Match and apply link/review decisions
- POST /api/card-reconciliation/links - Reviewer-confirmed link
- POST /api/card-reconciliation/sweep - Bounded tenant-wide reconciliation
"""

import logging
from datetime import date, datetime, timezone
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from logging_config import bind_tenant
from database.connection import get_db
from middleware.internal_auth import InternalService, require_internal_service
from sentry_integration import capture_exception
from utils.validation_errors import (
    validate_date_range,
    validate_required_id,
    validate_threshold,
)
from card_reconciliation.errors import (
    CardInactiveError,
    CardNotFoundError,
    CardReconciliationError,
    DownstreamUnavailableError,
    ReconciliationTimeoutError,
)
from card_reconciliation.models import LinkOutcome
from card_reconciliation.repositories.http_feed import HttpCardFeedSource
from card_reconciliation.repositories.sql import (
    SqlCardRepository,
    SqlTransactionRepository,
    SqlExpenseRepository,
    SqlReviewQueue,
    SqlFraudAlertSink,
)
from card_reconciliation.scoring_tables import scoring_tables
from card_reconciliation.services.card_reconciliation_service import CardReconciliationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/card-reconciliation", tags=["Card Reconciliation"])


# ==================== Request Models ====================

class ImportRequest(BaseModel):
    tenant_id: str = Field(..., description="Tenant owning the card")
    from_date: Optional[date] = Field(default=None, description="Defaults to the lookback window start")
    to_date: Optional[date] = Field(default=None, description="Defaults to today")


class MatchRequest(BaseModel):
    tenant_id: str = Field(..., description="Tenant ID")
    card_id: Optional[str] = Field(default=None, description="Limit to one card")
    from_date: Optional[date] = None
    to_date: Optional[date] = None


class AutoMatchRequest(MatchRequest):
    threshold: Optional[float] = Field(default=None, description="Overrides AUTO_MATCH_THRESHOLD")


class LinkRequest(BaseModel):
    tenant_id: str
    transaction_id: str
    expense_item_id: str


class FraudScanRequest(BaseModel):
    tenant_id: str
    from_date: Optional[date] = None
    to_date: Optional[date] = None


class SweepRequest(BaseModel):
    tenant_id: str
    period_start: date
    period_end: date
    timeout_seconds: Optional[float] = Field(default=None, gt=0)


# ==================== Dependencies ====================

def get_card_reconciliation_service(db: AsyncSession = Depends(get_db)) -> CardReconciliationService:
    """Service wired to PostgreSQL and the provider feed."""
    settings = get_settings()
    return CardReconciliationService.from_settings(
        settings,
        card_repository=SqlCardRepository(db, default_home_country=settings.CARD_HOME_COUNTRY),
        transaction_repository=SqlTransactionRepository(db),
        expense_repository=SqlExpenseRepository(db),
        review_queue=SqlReviewQueue(db),
        fraud_alert_sink=SqlFraudAlertSink(db),
        feed_source=HttpCardFeedSource(settings.FEED_BASE_URL, timeout=settings.FEED_TIMEOUT_SECONDS)
    )


def _bind_tenant(tenant_id: Optional[str]) -> str:
    """Validate the tenant and tag this request's log records with it."""
    tenant_id = validate_required_id(tenant_id, "tenant_id")
    bind_tenant(tenant_id)
    return tenant_id


def _to_http_exception(error: CardReconciliationError) -> HTTPException:
    if isinstance(error, CardNotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, CardInactiveError):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, DownstreamUnavailableError):
        return HTTPException(status_code=503, detail=str(error))
    if isinstance(error, ReconciliationTimeoutError):
        return HTTPException(status_code=504, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))


def _unexpected(operation: str, error: Exception, **context) -> HTTPException:
    logger.error(f"{operation} failed: {error}")
    capture_exception(error, operation=operation, **context)
    return HTTPException(status_code=500, detail=f"{operation} failed")


# ==================== Endpoints ====================

@router.get("/status", summary="Module status")
async def get_module_status():
    settings = get_settings()
    return {
        "module": "card_reconciliation",
        "status": "operational",
        "version": settings.API_VERSION,
        "features": {
            "feed_import": bool(settings.FEED_BASE_URL),
            "fraud_detection": True,
            "auto_matching": True,
            "tenant_sweep": True
        },
        "thresholds": {
            "auto_match": settings.AUTO_MATCH_THRESHOLD,
            "min_match_score": settings.MIN_MATCH_SCORE,
            "fraud_alert": settings.FRAUD_ALERT_THRESHOLD
        },
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@router.get("/scoring-tables", summary="Active scoring heuristics")
async def get_scoring_tables(_service: InternalService = Depends(require_internal_service)):
    return scoring_tables.to_dict()


@router.post("/cards/{card_id}/import", summary="Import card feed transactions")
async def import_card_transactions(
    card_id: str,
    request: ImportRequest,
    service: CardReconciliationService = Depends(get_card_reconciliation_service),
    _service: InternalService = Depends(require_internal_service)
):
    """
    Import transactions for a card from the provider feed.

    Malformed records are skipped and listed under `issues`; re-importing
    the same window does not duplicate transactions.
    """
    tenant_id = _bind_tenant(request.tenant_id)
    validate_date_range(request.from_date, request.to_date)
    try:
        result = await service.import_card_transactions(card_id, tenant_id, request.from_date, request.to_date)
    except CardReconciliationError as e:
        raise _to_http_exception(e)
    except Exception as e:
        raise _unexpected("Import", e, card_id=card_id, tenant_id=tenant_id)
    return result.to_dict()


@router.post("/cards/{card_id}/fraud-scan", summary="Run fraud checks for a card")
async def scan_card_for_fraud(
    card_id: str,
    request: FraudScanRequest,
    service: CardReconciliationService = Depends(get_card_reconciliation_service),
    _service: InternalService = Depends(require_internal_service)
):
    tenant_id = _bind_tenant(request.tenant_id)
    validate_date_range(request.from_date, request.to_date)
    try:
        alerts = await service.detect_fraud(card_id, tenant_id, request.from_date, request.to_date)
    except CardReconciliationError as e:
        raise _to_http_exception(e)
    except Exception as e:
        raise _unexpected("Fraud scan", e, card_id=card_id, tenant_id=tenant_id)
    return {
        "card_id": card_id,
        "alerts_count": len(alerts),
        "alerts": [a.model_dump(mode="json") for a in alerts]
    }


@router.get("/cards/{card_id}/reconciliation", summary="Reconciliation report for a period")
async def get_card_reconciliation(
    card_id: str,
    tenant_id: str = Query(..., description="Tenant ID"),
    period_start: date = Query(...),
    period_end: date = Query(...),
    service: CardReconciliationService = Depends(get_card_reconciliation_service),
    _service: InternalService = Depends(require_internal_service)
):
    tenant_id = _bind_tenant(tenant_id)
    validate_date_range(period_start, period_end, "period_start", "period_end")
    try:
        report = await service.reconcile_card(card_id, tenant_id, period_start, period_end)
    except CardReconciliationError as e:
        raise _to_http_exception(e)
    except Exception as e:
        raise _unexpected("Reconciliation", e, card_id=card_id, tenant_id=tenant_id)
    return report.model_dump(mode="json")


@router.post("/match", summary="Ranked candidate matches")
async def find_matches(
    request: MatchRequest,
    service: CardReconciliationService = Depends(get_card_reconciliation_service),
    _service: InternalService = Depends(require_internal_service)
):
    tenant_id = _bind_tenant(request.tenant_id)
    validate_date_range(request.from_date, request.to_date)
    try:
        matches = await service.match_transactions_with_expenses(
            tenant_id, request.card_id, request.from_date, request.to_date
        )
    except CardReconciliationError as e:
        raise _to_http_exception(e)
    except Exception as e:
        raise _unexpected("Matching", e, tenant_id=tenant_id)
    return {
        "tenant_id": tenant_id,
        "count": len(matches),
        "matches": [m.to_dict() for m in matches]
    }


@router.post("/auto-match", summary="Match and apply link/review decisions")
async def auto_match(
    request: AutoMatchRequest,
    service: CardReconciliationService = Depends(get_card_reconciliation_service),
    _service: InternalService = Depends(require_internal_service)
):
    tenant_id = _bind_tenant(request.tenant_id)
    validate_date_range(request.from_date, request.to_date)
    threshold = validate_threshold(request.threshold)
    try:
        summary = await service.auto_match_transactions(
            tenant_id, request.card_id, request.from_date, request.to_date, threshold
        )
    except CardReconciliationError as e:
        raise _to_http_exception(e)
    except Exception as e:
        raise _unexpected("Auto-match", e, tenant_id=tenant_id)
    return {"tenant_id": tenant_id, **summary.to_dict()}


@router.post("/links", summary="Confirm a reviewed match")
async def link_transaction(
    request: LinkRequest,
    service: CardReconciliationService = Depends(get_card_reconciliation_service),
    auth: InternalService = Depends(require_internal_service)
):
    tenant_id = _bind_tenant(request.tenant_id)
    try:
        outcome = await service.link_manually(
            tenant_id, request.transaction_id, request.expense_item_id, actor=auth.name
        )
    except CardReconciliationError as e:
        raise _to_http_exception(e)
    except Exception as e:
        raise _unexpected("Link", e, tenant_id=tenant_id)

    if outcome != LinkOutcome.LINKED:
        raise HTTPException(
            status_code=409,
            detail="Transaction or expense item is already linked"
        )
    return {
        "transaction_id": request.transaction_id,
        "expense_item_id": request.expense_item_id,
        "outcome": outcome.value
    }


@router.post("/sweep", summary="Reconcile every active card of a tenant")
async def sweep_tenant(
    request: SweepRequest,
    service: CardReconciliationService = Depends(get_card_reconciliation_service),
    _service: InternalService = Depends(require_internal_service)
):
    tenant_id = _bind_tenant(request.tenant_id)
    validate_date_range(request.period_start, request.period_end, "period_start", "period_end")
    try:
        result = await service.reconcile_tenant(
            tenant_id, request.period_start, request.period_end, request.timeout_seconds
        )
    except CardReconciliationError as e:
        raise _to_http_exception(e)
    except Exception as e:
        raise _unexpected("Sweep", e, tenant_id=tenant_id)
    return result.to_dict()
