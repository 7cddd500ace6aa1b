"""
Integration tests for the PostgreSQL metadata store and recomputes.

These tests run against a real PostgreSQL instance in a throwaway schema and
verify that:
1. The metadata DDL is idempotent
2. The store honours the same contract as the in-memory store
3. A real materialized view is refreshed end to end through the orchestrator

Run with: RUN_INTEGRATION_TESTS=1 pytest tests/integration/
"""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from typing import Generator

import psycopg
import pytest
from psycopg import sql
from psycopg_pool import ConnectionPool

from retailbi.domain.models import (
    DataQualityIssue,
    DerivedViewDescriptor,
    IssueStatus,
    OperationLogEntry,
    OperationStatus,
    OperationType,
    QualityCategory,
    Severity,
    ViewKind,
)
from retailbi.errors import DuplicateKindMismatch, InvalidTransition, RecomputeError
from retailbi.orchestrator import RefreshOrchestrator
from retailbi.recompute import MaterializedViewRecompute, PostgresRowCounter
from retailbi.registry import DerivedViewRegistry
from retailbi.store import PostgresMetadataStore, ensure_schema

T0 = datetime(2026, 1, 5, 6, 0, tzinfo=timezone.utc)
MV_ROWS = 5

pytestmark = pytest.mark.skipif(
    os.getenv("RUN_INTEGRATION_TESTS", "0") != "1",
    reason="Integration tests require RUN_INTEGRATION_TESTS=1 and reachable Postgres",
)


@pytest.fixture
def schema(db_connection: psycopg.Connection, test_settings) -> Generator[str, None, None]:
    name = test_settings.analytics_schema
    ensure_schema(db_connection, name)
    ensure_schema(db_connection, name)
    yield name
    with db_connection.cursor() as cur:
        cur.execute(sql.SQL("DROP SCHEMA IF EXISTS {} CASCADE").format(sql.Identifier(name)))
    db_connection.commit()


@pytest.fixture
def pool(test_dsn: str, db_connection_available: bool) -> Generator[ConnectionPool, None, None]:
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")
    pool = ConnectionPool(conninfo=test_dsn, min_size=1, max_size=2, open=True)
    try:
        yield pool
    finally:
        pool.close()


@pytest.fixture
def pg_store(pool: ConnectionPool, schema: str) -> PostgresMetadataStore:
    return PostgresMetadataStore(pool, schema=schema)


@pytest.fixture
def numbers_view(db_connection: psycopg.Connection, schema: str) -> str:
    """A tiny materialized view with a unique index so CONCURRENTLY works."""
    with db_connection.cursor() as cur:
        cur.execute(
            sql.SQL("CREATE MATERIALIZED VIEW {}.mv_numbers AS SELECT generate_series(1, %s) AS n").format(
                sql.Identifier(schema)
            ),
            (MV_ROWS,),
        )
        cur.execute(
            sql.SQL("CREATE UNIQUE INDEX ON {}.mv_numbers (n)").format(sql.Identifier(schema))
        )
    db_connection.commit()
    return "mv_numbers"


class TestCatalog:
    def test_register_and_guard_freshness(self, pg_store: PostgresMetadataStore) -> None:
        view = DerivedViewDescriptor(name="mv_numbers", category="sales", title="Numbers")
        pg_store.register_view(view)
        pg_store.register_view(view)

        assert pg_store.mark_refreshed("mv_numbers", T0, 5, 2.0) is True
        assert pg_store.mark_refreshed("mv_numbers", T0 - timedelta(hours=1), 1, 1.0) is False
        assert pg_store.mark_refreshed("mv_numbers", T0 + timedelta(hours=1), 6, 4.0) is True

        stored = pg_store.get_view("mv_numbers")
        assert stored.last_refreshed == T0 + timedelta(hours=1)
        assert stored.last_row_count == 6
        assert stored.avg_refresh_duration == pytest.approx(3.0)
        assert stored.refresh_count == 2
        assert [v.name for v in pg_store.list_views()] == ["mv_numbers"]

    def test_kind_mismatch(self, pg_store: PostgresMetadataStore) -> None:
        pg_store.register_view(DerivedViewDescriptor(name="vw_x", category="sales", kind=ViewKind.ON_DEMAND_VIEW))
        with pytest.raises(DuplicateKindMismatch):
            pg_store.register_view(DerivedViewDescriptor(name="vw_x", category="sales"))


class TestExecutionLog:
    def test_finalize_once(self, pg_store: PostgresMetadataStore) -> None:
        handle = pg_store.append_log(
            OperationLogEntry(operation_type=OperationType.REFRESH, scope_name="sales", started_at=T0)
        )

        entry = pg_store.finalize_log(
            handle,
            OperationStatus.SUCCESS,
            rows_affected=5,
            completed_at=T0 + timedelta(seconds=2),
            server_info={"peak_rss_bytes": 1024},
        )

        assert entry.status is OperationStatus.SUCCESS
        assert entry.duration == pytest.approx(2.0)
        assert entry.server_info == {"peak_rss_bytes": 1024}
        with pytest.raises(InvalidTransition):
            pg_store.finalize_log(handle, OperationStatus.FAILED, completed_at=T0)


class TestQualityIssues:
    def test_resolve_and_prune(self, pg_store: PostgresMetadataStore) -> None:
        for detected_at in (T0 - timedelta(days=10), T0):
            pg_store.append_quality_issue(
                DataQualityIssue(
                    check_name="Negative Inventory",
                    category=QualityCategory.ACCURACY,
                    severity=Severity.MEDIUM,
                    affected_record_count=2,
                    detected_at=detected_at,
                )
            )

        assert pg_store.prune_quality_issues(T0 - timedelta(days=7)) == 1
        assert pg_store.resolve_open_issues(T0, ["Orphan Payments"]) == 0
        assert pg_store.resolve_open_issues(T0, ["Negative Inventory"]) == 1
        assert pg_store.list_quality_issues(IssueStatus.OPEN) == []
        assert len(pg_store.list_quality_issues(IssueStatus.RESOLVED)) == 1


class TestRefreshEndToEnd:
    def test_orchestrated_refresh(self, pool, pg_store, schema, numbers_view) -> None:
        registry = DerivedViewRegistry(
            [
                DerivedViewDescriptor(name=numbers_view, category="sales"),
                DerivedViewDescriptor(name="mv_missing", category="sales"),
            ]
        )
        registry.sync(pg_store)
        orchestrator = RefreshOrchestrator(
            registry,
            pg_store,
            {
                numbers_view: MaterializedViewRecompute(numbers_view, pool, schema=schema),
                "mv_missing": MaterializedViewRecompute("mv_missing", pool, schema=schema),
            },
            row_counter=PostgresRowCounter(pool, schema=schema),
        )

        batch = orchestrator.refresh_module("sales", concurrent=True)

        ok, missing = batch.outcomes
        assert ok.succeeded and ok.rows_before == MV_ROWS and ok.rows_after == MV_ROWS
        assert missing.status is OperationStatus.FAILED
        assert missing.rows_before is None
        assert orchestrator.get_view_freshness(numbers_view).last_row_count == MV_ROWS
        history = orchestrator.get_refresh_history(10)
        assert {o.batch_id for o in history} == {batch.batch_id}
        assert len(pg_store.list_logs()) == 3

    def test_timeout_is_reported(self, pool, schema, numbers_view) -> None:
        recompute = MaterializedViewRecompute(numbers_view, pool, schema=schema, timeout_ms=1)
        with pool.connection() as conn:
            conn.execute(
                sql.SQL("LOCK TABLE {}.{} IN ACCESS EXCLUSIVE MODE").format(
                    sql.Identifier(schema), sql.Identifier(numbers_view)
                )
            )
            with pytest.raises(RecomputeError, match="timed out"):
                recompute.execute()
