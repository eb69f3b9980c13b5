"""
Audit events for card reconciliation.

Every state-changing step (import, link, review flag, fraud alert) is logged
as a structured event so the trail can be rebuilt from the log stream.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger("card_reconciliation.audit")


class CardReconciliationAuditEvent:
    """Audit event types for card reconciliation operations."""
    IMPORT_STARTED = "card_reconciliation.import_started"
    IMPORT_COMPLETED = "card_reconciliation.import_completed"
    TRANSACTION_SKIPPED = "card_reconciliation.transaction_skipped"
    MATCHING_COMPLETED = "card_reconciliation.matching_completed"
    AUTO_LINKED = "card_reconciliation.auto_linked"
    MANUAL_LINKED = "card_reconciliation.manual_linked"
    LINK_CONFLICT = "card_reconciliation.link_conflict"
    REVIEW_FLAGGED = "card_reconciliation.review_flagged"
    FRAUD_ALERTS_RAISED = "card_reconciliation.fraud_alerts_raised"
    RECONCILIATION_COMPLETED = "card_reconciliation.reconciliation_completed"
    SWEEP_COMPLETED = "card_reconciliation.sweep_completed"


def log_card_event(
    event_type: str,
    tenant_id: str,
    details: Dict[str, Any],
    card_id: Optional[str] = None,
    actor: str = "system"
):
    """Log card reconciliation event for audit trail."""
    log_entry = {
        "event": event_type,
        "tenant_id": tenant_id,
        "card_id": card_id,
        "details": details,
        "actor": actor,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
    logger.info(f"Card reconciliation event: {event_type}", extra=log_entry)
