from .card_reconciliation_api import router, get_card_reconciliation_service

__all__ = ["router", "get_card_reconciliation_service"]
