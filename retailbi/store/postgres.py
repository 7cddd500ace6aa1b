"""
PostgreSQL metadata store.

Persists the catalog, execution log, refresh history and data-quality issues
in the analytics schema (see `retailbi.store.schema`). Every database error
is surfaced as `MetadataWriteError` so the orchestrator can abort a batch
whose audit trail cannot be written.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Generator, Iterable, List, Optional

import psycopg
from psycopg import Cursor, sql
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import ConnectionPool

from retailbi.domain.models import (
    DataQualityIssue,
    DerivedViewDescriptor,
    IssueStatus,
    OperationLogEntry,
    OperationStatus,
    RefreshOutcome,
    TriggerSource,
)
from retailbi.errors import DuplicateKindMismatch, MetadataWriteError
from retailbi.store.abstract import AbstractMetadataStore, running_average
from retailbi.utils.logging import get_logger

log = get_logger(__name__)


def _ms(seconds: Optional[float]) -> Optional[int]:
    return None if seconds is None else int(round(seconds * 1000))


def _seconds(ms: Optional[float]) -> Optional[float]:
    return None if ms is None else ms / 1000.0


class PostgresMetadataStore(AbstractMetadataStore):
    """
    Metadata store backed by the `analytics` schema.

    Parameters
    ----------
    pool : ConnectionPool
        Shared psycopg pool; each call checks out one connection and commits
        on success.
    schema : str
        Schema holding the metadata tables.
    """

    def __init__(self, pool: ConnectionPool, schema: str = "analytics") -> None:
        self._pool = pool
        self._schema = schema

    def _q(self, template: str) -> sql.Composed:
        return sql.SQL(template).format(schema=sql.Identifier(self._schema))

    @contextmanager
    def _cursor(self, operation: str) -> Generator[Cursor, None, None]:
        try:
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=dict_row) as cur:
                    yield cur
        except psycopg.Error as exc:
            log.error(
                f"[METADATA ERROR] {operation} failed",
                extra={"operation": operation, "error": str(exc)},
            )
            raise MetadataWriteError(f"{operation} failed: {exc}") from exc

    # Catalog

    def _row_to_view(self, row: Dict[str, Any]) -> DerivedViewDescriptor:
        return DerivedViewDescriptor(
            name=row["view_name"],
            category=row["category"],
            kind=row["view_kind"],
            refresh_cadence=row["refresh_cadence"],
            title=row["title"],
            description=row["description"],
            business_question=row["business_question"],
            last_refreshed=row["last_refreshed"],
            last_row_count=row["last_row_count"],
            avg_refresh_duration=_seconds(row["avg_refresh_ms"]),
            refresh_count=row["refresh_count"],
        )

    def register_view(self, descriptor: DerivedViewDescriptor) -> DerivedViewDescriptor:
        with self._cursor("register_view") as cur:
            cur.execute(
                self._q("SELECT view_kind FROM {schema}.view_catalog WHERE view_name = %s FOR UPDATE"),
                (descriptor.name,),
            )
            row = cur.fetchone()
            if row is not None and row["view_kind"] != descriptor.kind.value:
                raise DuplicateKindMismatch(descriptor.name, row["view_kind"], descriptor.kind.value)
            cur.execute(
                self._q(
                    """
                    INSERT INTO {schema}.view_catalog (
                        view_name, category, view_kind, refresh_cadence,
                        title, description, business_question
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (view_name) DO UPDATE SET
                        category = EXCLUDED.category,
                        refresh_cadence = EXCLUDED.refresh_cadence,
                        title = EXCLUDED.title,
                        description = EXCLUDED.description,
                        business_question = EXCLUDED.business_question,
                        updated_at = now()
                    RETURNING *
                    """
                ),
                (
                    descriptor.name,
                    descriptor.category,
                    descriptor.kind.value,
                    descriptor.refresh_cadence.value,
                    descriptor.title,
                    descriptor.description,
                    descriptor.business_question,
                ),
            )
            return self._row_to_view(cur.fetchone())

    def get_view(self, name: str) -> Optional[DerivedViewDescriptor]:
        with self._cursor("get_view") as cur:
            cur.execute(self._q("SELECT * FROM {schema}.view_catalog WHERE view_name = %s"), (name,))
            row = cur.fetchone()
        return self._row_to_view(row) if row else None

    def list_views(self) -> List[DerivedViewDescriptor]:
        with self._cursor("list_views") as cur:
            cur.execute(self._q("SELECT * FROM {schema}.view_catalog ORDER BY view_id"))
            rows = cur.fetchall()
        return [self._row_to_view(row) for row in rows]

    def mark_refreshed(
        self, name: str, completed_at: datetime, row_count: Optional[int], duration: float
    ) -> bool:
        with self._cursor("mark_refreshed") as cur:
            cur.execute(
                self._q(
                    "SELECT last_refreshed, avg_refresh_ms, refresh_count "
                    "FROM {schema}.view_catalog WHERE view_name = %s FOR UPDATE"
                ),
                (name,),
            )
            row = cur.fetchone()
            if row is None:
                log.warning(
                    f"[FRESHNESS ANOMALY] {name} is not registered; update ignored",
                    extra={"view": name},
                )
                return False
            if row["last_refreshed"] is not None and completed_at <= row["last_refreshed"]:
                log.warning(
                    f"[FRESHNESS ANOMALY] {name} update is not newer than "
                    f"{row['last_refreshed'].isoformat()}; ignored",
                    extra={"view": name},
                )
                return False
            avg_ms = running_average(row["avg_refresh_ms"], row["refresh_count"], duration * 1000)
            cur.execute(
                self._q(
                    """
                    UPDATE {schema}.view_catalog SET
                        last_refreshed = %s,
                        last_row_count = %s,
                        avg_refresh_ms = %s,
                        refresh_count = refresh_count + 1,
                        updated_at = now()
                    WHERE view_name = %s
                    """
                ),
                (completed_at, row_count, avg_ms, name),
            )
            return True

    # Execution log

    def _row_to_log(self, row: Dict[str, Any]) -> OperationLogEntry:
        return OperationLogEntry(
            log_id=row["log_id"],
            operation_type=row["operation_type"],
            scope_name=row["module_name"] or "",
            target_name=row["object_name"],
            status=row["status"],
            rows_affected=row["rows_affected"],
            duration=_seconds(row["execution_time_ms"]),
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            error_type=row["error_type"],
            error_detail=row["error_detail"],
            server_info=row["server_info"] or {},
        )

    def append_log(self, entry: OperationLogEntry) -> int:
        with self._cursor("append_log") as cur:
            cur.execute(
                self._q(
                    """
                    INSERT INTO {schema}.execution_log (
                        operation_type, module_name, object_name, status, started_at
                    ) VALUES (%s, %s, %s, %s, %s)
                    RETURNING log_id
                    """
                ),
                (
                    entry.operation_type.value,
                    entry.scope_name,
                    entry.target_name,
                    entry.status.value,
                    entry.started_at,
                ),
            )
            return cur.fetchone()["log_id"]

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
        with self._cursor("finalize_log") as cur:
            cur.execute(
                self._q("SELECT * FROM {schema}.execution_log WHERE log_id = %s FOR UPDATE"),
                (handle,),
            )
            row = cur.fetchone()
            entry = self._row_to_log(row) if row else None
            self.check_transition(entry, handle, status)
            completed = completed_at or datetime.now(timezone.utc)
            duration = (completed - entry.started_at).total_seconds()
            cur.execute(
                self._q(
                    """
                    UPDATE {schema}.execution_log SET
                        status = %s,
                        rows_affected = %s,
                        execution_time_ms = %s,
                        completed_at = %s,
                        error_type = %s,
                        error_detail = %s,
                        server_info = %s
                    WHERE log_id = %s AND status = 'RUNNING'
                    RETURNING *
                    """
                ),
                (
                    status.value,
                    rows_affected,
                    _ms(duration),
                    completed,
                    error_type,
                    error_detail,
                    Jsonb(server_info or {}),
                    handle,
                ),
            )
            return self._row_to_log(cur.fetchone())

    def list_logs(self) -> List[OperationLogEntry]:
        with self._cursor("list_logs") as cur:
            cur.execute(self._q("SELECT * FROM {schema}.execution_log ORDER BY log_id"))
            rows = cur.fetchall()
        return [self._row_to_log(row) for row in rows]

    # Refresh history

    def append_refresh_outcome(
        self, outcome: RefreshOutcome, triggered_by: str, trigger_source: TriggerSource
    ) -> None:
        with self._cursor("append_refresh_outcome") as cur:
            cur.execute(
                self._q(
                    """
                    INSERT INTO {schema}.refresh_history (
                        refresh_batch_id, view_name, refresh_type, started_at, completed_at,
                        duration_ms, rows_before, rows_after, status, error_message,
                        triggered_by, trigger_source
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """
                ),
                (
                    outcome.batch_id,
                    outcome.view_name,
                    outcome.refresh_type.value,
                    outcome.started_at,
                    outcome.completed_at,
                    _ms(outcome.duration),
                    outcome.rows_before,
                    outcome.rows_after,
                    outcome.status.value,
                    outcome.error,
                    triggered_by,
                    trigger_source.value,
                ),
            )

    def list_refresh_history(self, limit: int) -> List[RefreshOutcome]:
        if limit <= 0:
            return []
        with self._cursor("list_refresh_history") as cur:
            cur.execute(
                self._q(
                    "SELECT * FROM {schema}.refresh_history "
                    "ORDER BY started_at DESC NULLS LAST, refresh_id DESC LIMIT %s"
                ),
                (limit,),
            )
            rows = cur.fetchall()
        return [
            RefreshOutcome(
                view_name=row["view_name"],
                status=row["status"],
                rows_before=row["rows_before"],
                rows_after=row["rows_after"],
                duration=_seconds(row["duration_ms"]) or 0.0,
                error=row["error_message"],
                batch_id=str(row["refresh_batch_id"]),
                refresh_type=row["refresh_type"],
                started_at=row["started_at"],
                completed_at=row["completed_at"],
            )
            for row in rows
        ]

    # Data quality

    def append_quality_issue(self, issue: DataQualityIssue) -> int:
        with self._cursor("append_quality_issue") as cur:
            cur.execute(
                self._q(
                    """
                    INSERT INTO {schema}.data_quality_issues (
                        check_name, check_category, severity, source_table,
                        affected_records, issue_description, suggested_action,
                        detected_at, status
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING issue_id
                    """
                ),
                (
                    issue.check_name,
                    issue.category.value,
                    issue.severity.value,
                    issue.source_table,
                    issue.affected_record_count,
                    issue.description,
                    issue.suggested_action,
                    issue.detected_at,
                    issue.status.value,
                ),
            )
            return cur.fetchone()["issue_id"]

    def list_quality_issues(self, status: Optional[IssueStatus] = None) -> List[DataQualityIssue]:
        with self._cursor("list_quality_issues") as cur:
            if status is None:
                cur.execute(self._q("SELECT * FROM {schema}.data_quality_issues ORDER BY issue_id"))
            else:
                cur.execute(
                    self._q(
                        "SELECT * FROM {schema}.data_quality_issues WHERE status = %s ORDER BY issue_id"
                    ),
                    (status.value,),
                )
            rows = cur.fetchall()
        return [
            DataQualityIssue(
                issue_id=row["issue_id"],
                check_name=row["check_name"],
                category=row["check_category"],
                severity=row["severity"],
                source_table=row["source_table"],
                affected_record_count=row["affected_records"],
                description=row["issue_description"] or "",
                suggested_action=row["suggested_action"],
                status=row["status"],
                detected_at=row["detected_at"],
                resolved_at=row["resolved_at"],
            )
            for row in rows
        ]

    def resolve_open_issues(self, resolved_at: datetime, check_names: Iterable[str]) -> int:
        names = sorted(set(check_names))
        if not names:
            return 0
        with self._cursor("resolve_open_issues") as cur:
            cur.execute(
                self._q(
                    "UPDATE {schema}.data_quality_issues SET status = 'RESOLVED', resolved_at = %s "
                    "WHERE status = 'OPEN' AND check_name = ANY(%s)"
                ),
                (resolved_at, names),
            )
            return cur.rowcount

    def prune_quality_issues(self, older_than: datetime) -> int:
        with self._cursor("prune_quality_issues") as cur:
            cur.execute(
                self._q("DELETE FROM {schema}.data_quality_issues WHERE detected_at < %s"),
                (older_than,),
            )
            return cur.rowcount


__all__ = ["PostgresMetadataStore"]
