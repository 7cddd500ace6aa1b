"""
Orchestrator for refreshing derived views, tracking freshness and running
data-quality validation.

Usage (example from CLI):
    from retailbi.orchestrator import build_orchestrator

    orchestrator = build_orchestrator()
    batch = orchestrator.refresh_module("sales")
    print(batch.summary())

Views are refreshed one at a time in the order given. A view whose
recompute fails is recorded as a FAILED outcome and the batch moves on to
the next view; a failure to write the audit trail aborts the batch.
"""

from __future__ import annotations

import time
import uuid
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from retailbi.config import Settings, get_settings
from retailbi.domain.models import (
    DataQualityIssue,
    DerivedViewDescriptor,
    OperationStatus,
    OperationType,
    RefreshBatch,
    RefreshOutcome,
    RefreshType,
    TriggerSource,
    ViewFreshness,
    is_stale,
)
from retailbi.errors import InvalidTransition, MetadataWriteError, RecomputeError, RetailBIError
from retailbi.oplog import Clock, OperationLogger, utc_now
from retailbi.quality import DataQualityChecker
from retailbi.recompute.abstract import RecomputeMap, RowCounter, ViewRecompute
from retailbi.registry import DerivedViewRegistry
from retailbi.store.abstract import MetadataStore
from retailbi.utils.logging import get_logger

log = get_logger(__name__)

DEFAULT_HISTORY_LIMIT = 20


def should_abort(exc: BaseException) -> bool:
    """
    Decide whether a failure inside a view refresh ends the whole batch.

    Audit-trail failures and log-state bugs abort; anything else is a failure
    of the view itself and is isolated to its outcome.
    """
    return isinstance(exc, (MetadataWriteError, InvalidTransition))


def _error_text(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class RefreshOrchestrator:
    """
    Sequential refresh supervisor over a registry of derived views.

    Parameters
    ----------
    registry : DerivedViewRegistry
        Catalog used to validate names and to order module refreshes.
    store : MetadataStore
        Destination for execution log, refresh history, freshness and issues.
    recomputes : RecomputeMap
        View name -> recompute, resolved at start-up.
    row_counter : RowCounter | None
        Best-effort row counts before and after each recompute.
    quality_checker : DataQualityChecker | None
        Validation battery for `run_quality_checks`.
    quality_retention : timedelta
        Issues detected earlier than this before a validation pass are purged.
    triggered_by : str
        Default actor recorded on batches.
    clock : callable
        Source of timezone-aware timestamps.
    """

    def __init__(
        self,
        registry: DerivedViewRegistry,
        store: MetadataStore,
        recomputes: RecomputeMap,
        row_counter: Optional[RowCounter] = None,
        quality_checker: Optional[DataQualityChecker] = None,
        quality_retention: timedelta = timedelta(days=7),
        triggered_by: str = "retailbi",
        clock: Clock = utc_now,
    ) -> None:
        self._registry = registry
        self._store = store
        self._recomputes = dict(recomputes)
        self._row_counter = row_counter
        self._quality_checker = quality_checker
        self._quality_retention = quality_retention
        self._triggered_by = triggered_by
        self._clock = clock
        self._oplog = OperationLogger(store, clock=clock)

    @property
    def registry(self) -> DerivedViewRegistry:
        return self._registry

    # Refresh

    def refresh(
        self,
        view_names: Iterable[str],
        concurrent: bool = False,
        *,
        scope: Optional[str] = None,
        triggered_by: Optional[str] = None,
        trigger_source: TriggerSource = TriggerSource.MANUAL,
    ) -> RefreshBatch:
        """
        Refresh the given views in order and return their outcomes.

        Parameters
        ----------
        view_names : iterable[str]
            Views to refresh; duplicates are refreshed once per occurrence.
        concurrent : bool
            Ask recomputes not to block readers while they run.
        scope : str | None
            Label recorded on the batch log entry (module name, "all", ...).
        triggered_by : str | None
            Actor recorded on the batch; defaults to the orchestrator's.
        trigger_source : TriggerSource
            MANUAL, SCHEDULED or API.

        Raises
        ------
        UnknownViewError
            If any name is not registered. Nothing is refreshed or logged.
        MetadataWriteError
            If the audit trail cannot be written; the batch stops there.
        """
        views = [self._registry.get(name) for name in view_names]
        refresh_type = RefreshType.CONCURRENT if concurrent else RefreshType.FULL
        batch = RefreshBatch(
            batch_id=str(uuid.uuid4()),
            scope=scope or "adhoc",
            triggered_by=triggered_by or self._triggered_by,
            trigger_source=trigger_source,
            concurrent=concurrent,
            started_at=self._clock(),
        )

        log.info(f"{'=' * 60}")
        log.info(
            f"[BATCH START] {batch.scope} ({len(views)} views, batch {batch.batch_id})",
            extra={
                "batch_id": batch.batch_id,
                "scope": batch.scope,
                "views": len(views),
                "concurrent": concurrent,
                "trigger_source": trigger_source.value,
            },
        )
        with self._oplog.operation(OperationType.REFRESH_BATCH, batch.scope, "refresh") as op:
            for position, view in enumerate(views, start=1):
                log.info(
                    f"[VIEW {position}/{len(views)}] {view.name}",
                    extra={"batch_id": batch.batch_id, "view": view.name},
                )
                batch.outcomes.append(self._refresh_view(view, batch, concurrent, refresh_type))
            op.rows_affected = batch.attempted

        batch.completed_at = self._clock()
        log.info(
            f"[BATCH COMPLETE] {batch.summary()}",
            extra={
                "batch_id": batch.batch_id,
                "attempted": batch.attempted,
                "failed": len(batch.failed),
            },
        )
        log.info(f"{'=' * 60}")
        return batch

    def refresh_all(self, concurrent: bool = False, **kwargs) -> RefreshBatch:
        """Refresh every precomputed snapshot in declared order."""
        names = [view.name for view in self._registry.refreshable()]
        return self.refresh(names, concurrent, scope="all", **kwargs)

    def refresh_module(self, module_name: str, concurrent: bool = False, **kwargs) -> RefreshBatch:
        """
        Refresh the precomputed snapshots of one module in declared order.

        Raises
        ------
        UnknownViewError
            If the module has no declared views.
        """
        names = [v.name for v in self._registry.views_in(module_name) if v.is_refreshable]
        return self.refresh(names, concurrent, scope=module_name.strip().lower(), **kwargs)

    def _resolve_recompute(self, name: str) -> ViewRecompute:
        recompute = self._recomputes.get(name)
        if recompute is None:
            raise RecomputeError(f"No recompute registered for {name}", name)
        return recompute

    def _count_rows(self, name: str) -> Optional[int]:
        if self._row_counter is None:
            return None
        try:
            return self._row_counter.count(name)
        except Exception as exc:  # noqa: BLE001 - row counts are best-effort
            log.debug(
                f"[ROW COUNT] {name} unavailable",
                extra={"view": name, "error": _error_text(exc)},
            )
            return None

    def _refresh_view(
        self,
        view: DerivedViewDescriptor,
        batch: RefreshBatch,
        concurrent: bool,
        refresh_type: RefreshType,
    ) -> RefreshOutcome:
        rows_before = self._count_rows(view.name)
        started_at = self._clock()
        start = time.perf_counter()
        try:
            with self._oplog.operation(OperationType.REFRESH, view.category, view.name) as op:
                result = self._resolve_recompute(view.name).execute(concurrent=concurrent)
                duration = time.perf_counter() - start
                rows_after = result.get("row_count")
                if rows_after is None:
                    rows_after = self._count_rows(view.name)
                completed_at = self._clock()
                op.rows_affected = rows_after
                self._store.mark_refreshed(view.name, completed_at, rows_after, duration)
        except Exception as exc:
            if should_abort(exc):
                log.error(
                    f"[BATCH ABORTED] {view.name}: {_error_text(exc)}",
                    extra={"batch_id": batch.batch_id, "view": view.name},
                )
                raise
            outcome = RefreshOutcome(
                view_name=view.name,
                status=OperationStatus.FAILED,
                rows_before=rows_before,
                duration=time.perf_counter() - start,
                error=_error_text(exc),
                batch_id=batch.batch_id,
                refresh_type=refresh_type,
                started_at=started_at,
                completed_at=self._clock(),
            )
            log.warning(
                f"[VIEW FAILED] {view.name}: {outcome.error}",
                extra={"batch_id": batch.batch_id, "view": view.name, "error_type": type(exc).__name__},
            )
        else:
            outcome = RefreshOutcome(
                view_name=view.name,
                status=OperationStatus.SUCCESS,
                rows_before=rows_before,
                rows_after=rows_after,
                duration=duration,
                batch_id=batch.batch_id,
                refresh_type=refresh_type,
                started_at=started_at,
                completed_at=completed_at,
            )
            log.info(
                f"[VIEW SUCCESS] {view.name} ({rows_after} rows, {duration:.2f}s)",
                extra={"batch_id": batch.batch_id, "view": view.name, "rows": rows_after},
            )

        self._store.append_refresh_outcome(outcome, batch.triggered_by, batch.trigger_source)
        return outcome

    # Freshness

    def get_refresh_history(self, limit: int = DEFAULT_HISTORY_LIMIT) -> List[RefreshOutcome]:
        """Most recent refresh outcomes first."""
        return self._store.list_refresh_history(limit)

    def get_view_freshness(self, name: str) -> ViewFreshness:
        """
        Raises
        ------
        UnknownViewError
            If `name` is not in the registry.
        """
        declared = self._registry.get(name)
        stored = self._store.get_view(name)
        return ViewFreshness.from_descriptor(stored or declared, self._clock())

    def stale_views(self, now: Optional[datetime] = None) -> List[ViewFreshness]:
        """Snapshots whose last refresh is older than their cadence allows at `now`."""
        now = now or self._clock()
        stale = []
        for declared in self._registry.refreshable():
            view = self._store.get_view(declared.name) or declared
            if is_stale(view, now):
                stale.append(ViewFreshness.from_descriptor(view, now))
        return stale

    # Data quality

    def run_quality_checks(self) -> List[DataQualityIssue]:
        """
        Run the validation battery and persist its findings.

        Issues older than the retention window are purged first. OPEN issues
        from checks that ran in this pass are resolved, and one OPEN issue is
        recorded per check that found affected records. Issues of a check that
        could not run stay OPEN.
        """
        if self._quality_checker is None:
            raise RetailBIError("No data-quality checker configured")

        created: List[DataQualityIssue] = []
        with self._oplog.operation(OperationType.VALIDATE, "data_quality", "run_quality_checks") as op:
            now = self._clock()
            pruned = self._store.prune_quality_issues(now - self._quality_retention)
            findings = self._quality_checker.run_all_checks()
            self._store.resolve_open_issues(now, [finding.check_name for finding in findings])
            for finding in findings:
                if finding.affected_count <= 0:
                    continue
                issue = DataQualityIssue.from_finding(finding, detected_at=now)
                issue_id = self._store.append_quality_issue(issue)
                created.append(issue.model_copy(update={"issue_id": issue_id}))
            op.rows_affected = sum(issue.affected_record_count for issue in created)

        log.info(
            f"[VALIDATE COMPLETE] {len(findings)} checks, {len(created)} with issues",
            extra={"checks": len(findings), "issues": len(created), "pruned": pruned},
        )
        return created


def build_orchestrator(settings: Optional[Settings] = None, sync_catalog: bool = True) -> RefreshOrchestrator:
    """
    Wire the PostgreSQL store, recomputes and checker from settings.
    """
    from retailbi.infrastructure.db_factory import get_sync_pool
    from retailbi.quality import SqlQualityChecker
    from retailbi.recompute.postgres import PostgresRowCounter, build_recompute_map
    from retailbi.registry import default_registry
    from retailbi.store.postgres import PostgresMetadataStore

    settings = settings or get_settings()
    pool = get_sync_pool()
    registry = default_registry()
    store = PostgresMetadataStore(pool, schema=settings.analytics_schema)
    if sync_catalog:
        registry.sync(store)
    thresholds = settings.quality_thresholds()
    return RefreshOrchestrator(
        registry=registry,
        store=store,
        recomputes=build_recompute_map(
            registry, pool, schema=settings.analytics_schema, timeout_ms=settings.refresh_timeout_ms
        ),
        row_counter=PostgresRowCounter(pool, schema=settings.analytics_schema),
        quality_checker=SqlQualityChecker(pool, thresholds),
        quality_retention=timedelta(days=thresholds.retention_days),
        triggered_by=settings.refresh_triggered_by,
    )


__all__ = [
    "DEFAULT_HISTORY_LIMIT",
    "RefreshOrchestrator",
    "build_orchestrator",
    "should_abort",
]
