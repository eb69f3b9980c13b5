from .report_builder import (
    ReconciliationReportBuilder,
    calculate_reconciliation_score,
    identify_issues,
)

__all__ = [
    "ReconciliationReportBuilder",
    "calculate_reconciliation_score",
    "identify_issues",
]
