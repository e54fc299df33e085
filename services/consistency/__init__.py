from .auditor import ConsistencyAuditor
from .dto import AuditReport, DriftFinding, DriftKind, ReconciliationReport
from .reconciliation import ReconciliationEngine

__all__ = [
    "AuditReport",
    "ConsistencyAuditor",
    "DriftFinding",
    "DriftKind",
    "ReconciliationEngine",
    "ReconciliationReport",
]
