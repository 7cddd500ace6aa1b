"""
Domain models for RetailBI.

Defines the derived-view catalog entry, the execution log entry, refresh
batches and their per-view outcomes, and data-quality issues. These models
are shared by the metadata stores, the operation logger, the orchestrator and
the reporter.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ViewKind(str, Enum):
    ON_DEMAND_VIEW = "ON_DEMAND_VIEW"
    PRECOMPUTED_SNAPSHOT = "PRECOMPUTED_SNAPSHOT"


class RefreshCadence(str, Enum):
    REALTIME = "REALTIME"
    HOURLY = "HOURLY"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"

    @property
    def interval(self) -> Optional[timedelta]:
        """Maximum age before a snapshot with this cadence counts as stale."""
        return _CADENCE_INTERVALS[self]


_CADENCE_INTERVALS: Dict[RefreshCadence, Optional[timedelta]] = {
    RefreshCadence.REALTIME: None,
    RefreshCadence.HOURLY: timedelta(hours=1),
    RefreshCadence.DAILY: timedelta(days=1),
    RefreshCadence.WEEKLY: timedelta(days=7),
}


class OperationType(str, Enum):
    REFRESH_BATCH = "REFRESH_BATCH"
    REFRESH = "REFRESH"
    VALIDATE = "VALIDATE"


class OperationStatus(str, Enum):
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    PARTIAL = "PARTIAL"

    @property
    def is_terminal(self) -> bool:
        return self is not OperationStatus.RUNNING


class TriggerSource(str, Enum):
    MANUAL = "MANUAL"
    SCHEDULED = "SCHEDULED"
    API = "API"


class RefreshType(str, Enum):
    FULL = "FULL"
    CONCURRENT = "CONCURRENT"


class QualityCategory(str, Enum):
    COMPLETENESS = "COMPLETENESS"
    ACCURACY = "ACCURACY"
    CONSISTENCY = "CONSISTENCY"
    TIMELINESS = "TIMELINESS"
    UNIQUENESS = "UNIQUENESS"


class Severity(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class IssueStatus(str, Enum):
    OPEN = "OPEN"
    RESOLVED = "RESOLVED"
    IGNORED = "IGNORED"


class DerivedViewDescriptor(BaseModel):
    """
    Catalog entry for one recomputable aggregate in the analytics schema.
    """

    name: str = Field(..., description="Database object name, unique key.")
    category: str = Field(..., description="Owning business module (sales, customers, ...).")
    kind: ViewKind = Field(ViewKind.PRECOMPUTED_SNAPSHOT)
    refresh_cadence: RefreshCadence = Field(RefreshCadence.DAILY)
    title: str = Field("", description="Human-readable KPI name.")
    description: str = Field("")
    business_question: str = Field("")
    last_refreshed: Optional[datetime] = None
    last_row_count: Optional[int] = None
    avg_refresh_duration: Optional[float] = Field(
        None, description="Cumulative mean refresh duration in seconds."
    )
    refresh_count: int = Field(0, description="Accepted refreshes feeding the mean.")

    model_config = {"frozen": True}

    @property
    def is_refreshable(self) -> bool:
        return self.kind is ViewKind.PRECOMPUTED_SNAPSHOT


class ViewFreshness(BaseModel):
    name: str
    refresh_cadence: RefreshCadence
    last_refreshed: Optional[datetime] = None
    last_row_count: Optional[int] = None
    avg_refresh_duration: Optional[float] = None
    is_stale: bool = False

    @classmethod
    def from_descriptor(cls, view: DerivedViewDescriptor, now: datetime) -> "ViewFreshness":
        return cls(
            name=view.name,
            refresh_cadence=view.refresh_cadence,
            last_refreshed=view.last_refreshed,
            last_row_count=view.last_row_count,
            avg_refresh_duration=view.avg_refresh_duration,
            is_stale=is_stale(view, now),
        )


def is_stale(view: DerivedViewDescriptor, now: datetime) -> bool:
    """
    Whether a snapshot is older than its cadence allows.

    On-demand views are computed at read time and are never stale. A snapshot
    that was never refreshed is always stale.
    """
    if not view.is_refreshable:
        return False
    if view.last_refreshed is None:
        return True
    interval = view.refresh_cadence.interval
    if interval is None:
        return False
    return now - view.last_refreshed > interval


class OperationLogEntry(BaseModel):
    """
    One tracked unit of work (batch refresh, single view refresh, validation).
    """

    log_id: Optional[int] = None
    operation_type: OperationType
    scope_name: str
    target_name: Optional[str] = None
    status: OperationStatus = OperationStatus.RUNNING
    rows_affected: Optional[int] = None
    duration: Optional[float] = None
    started_at: datetime
    completed_at: Optional[datetime] = None
    error_type: Optional[str] = None
    error_detail: Optional[str] = None
    server_info: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


class RefreshOutcome(BaseModel):
    view_name: str
    status: OperationStatus
    rows_before: Optional[int] = None
    rows_after: Optional[int] = None
    duration: float = 0.0
    error: Optional[str] = None
    batch_id: Optional[str] = None
    refresh_type: RefreshType = RefreshType.FULL
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = {"frozen": True}

    @property
    def succeeded(self) -> bool:
        return self.status is OperationStatus.SUCCESS


class RefreshBatch(BaseModel):
    """
    Per-view outcomes of one orchestration run, in attempted order.
    """

    batch_id: str
    scope: str
    triggered_by: str
    trigger_source: TriggerSource = TriggerSource.MANUAL
    concurrent: bool = False
    started_at: datetime
    completed_at: Optional[datetime] = None
    outcomes: List[RefreshOutcome] = Field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> List[RefreshOutcome]:
        return [o for o in self.outcomes if o.succeeded]

    @property
    def failed(self) -> List[RefreshOutcome]:
        return [o for o in self.outcomes if not o.succeeded]

    def summary(self) -> str:
        text = f"{len(self.succeeded)} of {self.attempted} views refreshed"
        if self.failed:
            reasons = "; ".join(f"{o.view_name} failed: {o.error}" for o in self.failed)
            text = f"{text}; {reasons}"
        return text


class QualityFinding(BaseModel):
    """Raw result of one validation query."""

    check_name: str
    category: QualityCategory
    severity: Severity
    source: str
    affected_count: int
    description: str = ""

    model_config = {"frozen": True}


class DataQualityIssue(BaseModel):
    issue_id: Optional[int] = None
    check_name: str
    category: QualityCategory
    severity: Severity
    source_table: Optional[str] = None
    affected_record_count: int
    description: str = ""
    suggested_action: Optional[str] = None
    status: IssueStatus = IssueStatus.OPEN
    detected_at: datetime
    resolved_at: Optional[datetime] = None

    model_config = {"frozen": True}

    @classmethod
    def from_finding(cls, finding: QualityFinding, detected_at: datetime) -> "DataQualityIssue":
        return cls(
            check_name=finding.check_name,
            category=finding.category,
            severity=finding.severity,
            source_table=finding.source,
            affected_record_count=finding.affected_count,
            description=finding.description,
            detected_at=detected_at,
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
    "is_stale",
]
