"""
Domain package for RetailBI.

Exports the catalog, execution-log, refresh and data-quality models used
across the stores, the orchestrator and the reporter.
"""

from retailbi.domain.models import (
    DataQualityIssue,
    DerivedViewDescriptor,
    IssueStatus,
    OperationLogEntry,
    OperationStatus,
    OperationType,
    QualityCategory,
    QualityFinding,
    RefreshBatch,
    RefreshCadence,
    RefreshOutcome,
    RefreshType,
    Severity,
    TriggerSource,
    ViewFreshness,
    ViewKind,
)

__all__ = [
    "DataQualityIssue",
    "DerivedViewDescriptor",
    "IssueStatus",
    "OperationLogEntry",
    "OperationStatus",
    "OperationType",
    "QualityCategory",
    "QualityFinding",
    "RefreshBatch",
    "RefreshCadence",
    "RefreshOutcome",
    "RefreshType",
    "Severity",
    "TriggerSource",
    "ViewFreshness",
    "ViewKind",
]
