from .connection import get_db, get_engine, get_session_factory, init_db, dispose_engine, Base

# Import card models to ensure they are registered with Base
from .card_models import (
    CorporateCardDB, CardTransactionDB, ExpenseItemDB,
    ExpenseMatchSuggestionDB, CardFraudAlertDB
)

__all__ = [
    'get_db', 'get_engine', 'get_session_factory', 'init_db', 'dispose_engine', 'Base',
    'CorporateCardDB', 'CardTransactionDB', 'ExpenseItemDB',
    'ExpenseMatchSuggestionDB', 'CardFraudAlertDB',
]
