from .card_reconciliation_service import CardReconciliationService

__all__ = ["CardReconciliationService"]
