"""
In-memory metadata store.

Keeps the four metadata tables in process memory. Used by the unit tests and
by callers that run refreshes without persisting bookkeeping to the
analytics schema. Not shared between processes.
"""

from __future__ import annotations

import itertools
import threading
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from retailbi.domain.models import (
    DataQualityIssue,
    DerivedViewDescriptor,
    IssueStatus,
    OperationLogEntry,
    OperationStatus,
    RefreshOutcome,
    TriggerSource,
)
from retailbi.errors import DuplicateKindMismatch
from retailbi.store.abstract import AbstractMetadataStore, running_average
from retailbi.utils.logging import get_logger

log = get_logger(__name__)


class InMemoryMetadataStore(AbstractMetadataStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._views: Dict[str, DerivedViewDescriptor] = {}
        self._logs: Dict[int, OperationLogEntry] = {}
        self._history: List[Tuple[RefreshOutcome, str, TriggerSource]] = []
        self._issues: Dict[int, DataQualityIssue] = {}
        self._log_ids = itertools.count(1)
        self._issue_ids = itertools.count(1)

    # Catalog

    def register_view(self, descriptor: DerivedViewDescriptor) -> DerivedViewDescriptor:
        with self._lock:
            existing = self._views.get(descriptor.name)
            if existing is None:
                stored = descriptor
            else:
                if existing.kind is not descriptor.kind:
                    raise DuplicateKindMismatch(
                        descriptor.name, existing.kind.value, descriptor.kind.value
                    )
                stored = existing.model_copy(
                    update={
                        "category": descriptor.category,
                        "refresh_cadence": descriptor.refresh_cadence,
                        "title": descriptor.title,
                        "description": descriptor.description,
                        "business_question": descriptor.business_question,
                    }
                )
            self._views[descriptor.name] = stored
            return stored

    def get_view(self, name: str) -> Optional[DerivedViewDescriptor]:
        return self._views.get(name)

    def list_views(self) -> List[DerivedViewDescriptor]:
        return list(self._views.values())

    def mark_refreshed(
        self, name: str, completed_at: datetime, row_count: Optional[int], duration: float
    ) -> bool:
        with self._lock:
            view = self._views.get(name)
            if view is None:
                log.warning(
                    f"[FRESHNESS ANOMALY] {name} is not registered; update ignored",
                    extra={"view": name},
                )
                return False
            if view.last_refreshed is not None and completed_at <= view.last_refreshed:
                log.warning(
                    f"[FRESHNESS ANOMALY] {name} update at {completed_at.isoformat()} "
                    f"is not newer than {view.last_refreshed.isoformat()}; ignored",
                    extra={"view": name},
                )
                return False
            self._views[name] = view.model_copy(
                update={
                    "last_refreshed": completed_at,
                    "last_row_count": row_count,
                    "avg_refresh_duration": running_average(
                        view.avg_refresh_duration, view.refresh_count, duration
                    ),
                    "refresh_count": view.refresh_count + 1,
                }
            )
            return True

    # Execution log

    def append_log(self, entry: OperationLogEntry) -> int:
        with self._lock:
            handle = next(self._log_ids)
            self._logs[handle] = entry.model_copy(update={"log_id": handle})
            return handle

    def finalize_log(
        self,
        handle: int,
        status: OperationStatus,
        rows_affected: Optional[int] = None,
        error_detail: Optional[str] = None,
        *,
        completed_at: Optional[datetime] = None,
        error_type: Optional[str] = None,
        server_info: Optional[dict] = None,
    ) -> OperationLogEntry:
        with self._lock:
            entry = self._logs.get(handle)
            self.check_transition(entry, handle, status)
            completed = completed_at or datetime.now(entry.started_at.tzinfo)
            finalized = entry.model_copy(
                update={
                    "status": status,
                    "rows_affected": rows_affected,
                    "error_detail": error_detail,
                    "error_type": error_type,
                    "completed_at": completed,
                    "duration": (completed - entry.started_at).total_seconds(),
                    "server_info": dict(server_info or {}),
                }
            )
            self._logs[handle] = finalized
            return finalized

    def list_logs(self) -> List[OperationLogEntry]:
        return [self._logs[k] for k in sorted(self._logs)]

    # Refresh history

    def append_refresh_outcome(
        self, outcome: RefreshOutcome, triggered_by: str, trigger_source: TriggerSource
    ) -> None:
        with self._lock:
            self._history.append((outcome, triggered_by, trigger_source))

    def list_refresh_history(self, limit: int) -> List[RefreshOutcome]:
        if limit <= 0:
            return []
        return [outcome for outcome, _, _ in reversed(self._history)][:limit]

    # Data quality

    def append_quality_issue(self, issue: DataQualityIssue) -> int:
        with self._lock:
            issue_id = next(self._issue_ids)
            self._issues[issue_id] = issue.model_copy(update={"issue_id": issue_id})
            return issue_id

    def list_quality_issues(self, status: Optional[IssueStatus] = None) -> List[DataQualityIssue]:
        issues = [self._issues[k] for k in sorted(self._issues)]
        if status is not None:
            issues = [i for i in issues if i.status is status]
        return issues

    def resolve_open_issues(self, resolved_at: datetime, check_names: Iterable[str]) -> int:
        names = set(check_names)
        with self._lock:
            resolved = 0
            for issue_id, issue in self._issues.items():
                if issue.status is IssueStatus.OPEN and issue.check_name in names:
                    self._issues[issue_id] = issue.model_copy(
                        update={"status": IssueStatus.RESOLVED, "resolved_at": resolved_at}
                    )
                    resolved += 1
            return resolved

    def prune_quality_issues(self, older_than: datetime) -> int:
        with self._lock:
            stale = [k for k, issue in self._issues.items() if issue.detected_at < older_than]
            for issue_id in stale:
                del self._issues[issue_id]
            return len(stale)


__all__ = ["InMemoryMetadataStore"]
