"""
Metadata store interfaces for RetailBI.

A metadata store persists the four bookkeeping tables of the analytics
layer: the derived-view catalog, the execution log, the refresh history and
the data-quality issue log. The orchestrator and the operation logger only
talk to the `MetadataStore` protocol, so the PostgreSQL store and the
in-memory store are interchangeable.
"""

from __future__ import annotations

import abc
from datetime import datetime
from typing import Iterable, List, Optional, Protocol, runtime_checkable

from retailbi.domain.models import (
    DataQualityIssue,
    DerivedViewDescriptor,
    IssueStatus,
    OperationLogEntry,
    OperationStatus,
    RefreshOutcome,
    TriggerSource,
)
from retailbi.errors import InvalidTransition


@runtime_checkable
class MetadataStore(Protocol):
    """
    Durable storage of catalog, execution log, refresh history and DQ issues.
    """

    def register_view(self, descriptor: DerivedViewDescriptor) -> DerivedViewDescriptor:
        """
        Upsert a catalog entry by name.

        Raises
        ------
        DuplicateKindMismatch
            If the name is already registered with a different kind.
        """
        ...

    def get_view(self, name: str) -> Optional[DerivedViewDescriptor]: ...

    def list_views(self) -> List[DerivedViewDescriptor]: ...

    def mark_refreshed(
        self, name: str, completed_at: datetime, row_count: Optional[int], duration: float
    ) -> bool:
        """
        Record a successful refresh. Returns False when the update was ignored
        (unregistered view, or `completed_at` not after the current value).
        """
        ...

    def append_log(self, entry: OperationLogEntry) -> int:
        """Insert a log entry and return its handle."""
        ...

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
        """
        Move a RUNNING entry to a terminal status.

        Raises
        ------
        InvalidTransition
            If the entry is unknown or already terminal, or `status` is RUNNING.
        """
        ...

    def list_logs(self) -> List[OperationLogEntry]: ...

    def append_refresh_outcome(
        self, outcome: RefreshOutcome, triggered_by: str, trigger_source: TriggerSource
    ) -> None: ...

    def list_refresh_history(self, limit: int) -> List[RefreshOutcome]:
        """Most recent outcomes first."""
        ...

    def append_quality_issue(self, issue: DataQualityIssue) -> int: ...

    def list_quality_issues(self, status: Optional[IssueStatus] = None) -> List[DataQualityIssue]: ...

    def resolve_open_issues(self, resolved_at: datetime, check_names: Iterable[str]) -> int:
        """Resolve OPEN issues raised by the named checks only."""
        ...

    def prune_quality_issues(self, older_than: datetime) -> int:
        """Delete issues detected before `older_than`; return how many."""
        ...


class AbstractMetadataStore(abc.ABC):
    """
    ABC helper for class-based stores.

    Subclasses implement the primitive operations; the shared
    `finalize_log` validation lives in `check_transition`.
    """

    @staticmethod
    def check_transition(entry: Optional[OperationLogEntry], handle: int, status: OperationStatus) -> None:
        if entry is None:
            raise InvalidTransition(f"No execution log entry with handle {handle}")
        if not status.is_terminal:
            raise InvalidTransition(f"Log entry {handle} cannot be finalized as {status.value}")
        if entry.status.is_terminal:
            raise InvalidTransition(
                f"Log entry {handle} is already {entry.status.value}; cannot move to {status.value}"
            )

    @abc.abstractmethod
    def register_view(self, descriptor: DerivedViewDescriptor) -> DerivedViewDescriptor:  # pragma: no cover
        raise NotImplementedError

    @abc.abstractmethod
    def mark_refreshed(
        self, name: str, completed_at: datetime, row_count: Optional[int], duration: float
    ) -> bool:  # pragma: no cover
        raise NotImplementedError

    @abc.abstractmethod
    def append_log(self, entry: OperationLogEntry) -> int:  # pragma: no cover
        raise NotImplementedError

    @abc.abstractmethod
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
    ) -> OperationLogEntry:  # pragma: no cover
        raise NotImplementedError

    @abc.abstractmethod
    def prune_quality_issues(self, older_than: datetime) -> int:  # pragma: no cover
        raise NotImplementedError


def running_average(current: Optional[float], count: int, duration: float) -> float:
    """
    Cumulative mean after adding `duration` as the `count + 1`-th sample.
    """
    if current is None or count <= 0:
        return duration
    return current + (duration - current) / (count + 1)


__all__ = ["AbstractMetadataStore", "MetadataStore", "running_average"]
