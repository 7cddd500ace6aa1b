"""
Pytest configuration for RetailBI.

Provides fixtures for:
- A ticking clock so every timestamp is distinct and ordered
- In-memory metadata store and a small view registry
- Fake recomputes, row counter and quality checker
- Settings and connection management for integration tests
"""

from __future__ import annotations

import os
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Dict, Generator, Iterator, List, Optional

import psycopg
import pytest

from retailbi.config import Settings
from retailbi.domain.models import DerivedViewDescriptor, QualityFinding, RefreshCadence, ViewKind
from retailbi.orchestrator import RefreshOrchestrator
from retailbi.recompute.abstract import AbstractViewRecompute, RecomputeResult
from retailbi.registry import DerivedViewRegistry
from retailbi.store.memory import InMemoryMetadataStore

START = datetime(2026, 1, 5, 6, 0, tzinfo=timezone.utc)


class TickingClock:
    """Returns START, START+1s, START+2s, ... and can jump forward."""

    def __init__(self, start: datetime = START, step: timedelta = timedelta(seconds=1)) -> None:
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        now = self.current
        self.current = self.current + self.step
        return now

    def advance(self, delta: timedelta) -> None:
        self.current = self.current + delta


class FakeRecompute(AbstractViewRecompute):
    def __init__(self, name: str, row_count: Optional[int] = 100, error: Optional[BaseException] = None) -> None:
        self.name = name
        self.row_count = row_count
        self.error = error
        self.calls: List[bool] = []

    def execute(self, concurrent: bool = False) -> RecomputeResult:
        self.calls.append(concurrent)
        if self.error is not None:
            raise self.error
        return RecomputeResult(row_count=self.row_count)


class FakeRowCounter:
    def __init__(self, counts: Optional[Dict[str, int]] = None, error: Optional[Exception] = None) -> None:
        self.counts = dict(counts or {})
        self.error = error

    def count(self, view_name: str) -> Optional[int]:
        if self.error is not None:
            raise self.error
        return self.counts.get(view_name)


class FakeQualityChecker:
    def __init__(self, findings: Optional[List[QualityFinding]] = None) -> None:
        self.findings = list(findings or [])
        self.runs = 0

    def run_all_checks(self) -> List[QualityFinding]:
        self.runs += 1
        return list(self.findings)


class FakeCursor:
    """Cursor double: scripted results or errors, one per execute() call."""

    def __init__(self, script: List[object]) -> None:
        self.script = script
        self.executed: List[object] = []
        self._last: object = None

    def __enter__(self) -> "FakeCursor":
        return self

    def __exit__(self, *exc_info) -> None:
        return None

    def execute(self, query, params=None) -> None:
        self.executed.append((query, params))
        result = self.script.pop(0) if self.script else None
        if isinstance(result, BaseException):
            raise result
        self._last = result

    def fetchone(self):
        return (self._last,)


class FakeConnection:
    def __init__(self, cursor: FakeCursor) -> None:
        self._cursor = cursor
        self.transactions = 0

    def cursor(self) -> FakeCursor:
        return self._cursor

    @contextmanager
    def transaction(self) -> Iterator["FakeConnection"]:
        self.transactions += 1
        yield self


class FakePool:
    """Minimal stand-in for `psycopg_pool.ConnectionPool`."""

    def __init__(self, script: Optional[List[object]] = None) -> None:
        self.cursor = FakeCursor(list(script or []))
        self.conn = FakeConnection(self.cursor)

    @contextmanager
    def connection(self) -> Iterator[FakeConnection]:
        yield self.conn


def _descriptor(name: str, category: str, kind: ViewKind, cadence: RefreshCadence) -> DerivedViewDescriptor:
    return DerivedViewDescriptor(name=name, category=category, kind=kind, refresh_cadence=cadence)


SMALL_CATALOG = [
    _descriptor("mv_sales", "sales", ViewKind.PRECOMPUTED_SNAPSHOT, RefreshCadence.DAILY),
    _descriptor("vw_daily_sales", "sales", ViewKind.ON_DEMAND_VIEW, RefreshCadence.REALTIME),
    _descriptor("mv_sales_trend", "sales", ViewKind.PRECOMPUTED_SNAPSHOT, RefreshCadence.HOURLY),
    _descriptor("mv_customers", "customers", ViewKind.PRECOMPUTED_SNAPSHOT, RefreshCadence.DAILY),
    _descriptor("mv_segments", "customers", ViewKind.PRECOMPUTED_SNAPSHOT, RefreshCadence.WEEKLY),
]


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def store() -> InMemoryMetadataStore:
    return InMemoryMetadataStore()


@pytest.fixture
def registry() -> DerivedViewRegistry:
    return DerivedViewRegistry(SMALL_CATALOG)


@pytest.fixture
def recomputes(registry: DerivedViewRegistry) -> Dict[str, FakeRecompute]:
    return {view.name: FakeRecompute(view.name) for view in registry.all()}


@pytest.fixture
def row_counter() -> FakeRowCounter:
    return FakeRowCounter({"mv_sales": 90, "mv_customers": 40})


@pytest.fixture
def fake_pool():
    """Factory: `fake_pool([result_or_error, ...])`."""
    return FakePool


@pytest.fixture
def quality_checker() -> FakeQualityChecker:
    return FakeQualityChecker()


@pytest.fixture
def orchestrator(
    registry: DerivedViewRegistry,
    store: InMemoryMetadataStore,
    recomputes: Dict[str, FakeRecompute],
    row_counter: FakeRowCounter,
    quality_checker: FakeQualityChecker,
    clock: TickingClock,
) -> RefreshOrchestrator:
    """
    Orchestrator over the small catalog with every view registered in the store.
    """
    registry.sync(store)
    return RefreshOrchestrator(
        registry=registry,
        store=store,
        recomputes=recomputes,
        row_counter=row_counter,
        quality_checker=quality_checker,
        quality_retention=timedelta(days=7),
        triggered_by="pytest",
        clock=clock,
    )


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "retailmart"),
        analytics_schema=os.getenv("TEST_ANALYTICS_SCHEMA", "retailbi_test"),
        log_level="DEBUG",
    )


@pytest.fixture(scope="session")
def test_dsn(test_settings: Settings) -> str:
    """
    Database connection string for tests.
    """
    return (
        f"postgresql://{test_settings.db_user}:{test_settings.db_password}"
        f"@{test_settings.db_host}:{test_settings.db_port}/{test_settings.db_name}"
    )


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except psycopg.Error:
        return False


@pytest.fixture(scope="session")
def db_connection(
    test_dsn: str, db_connection_available: bool
) -> Generator[psycopg.Connection, None, None]:
    """
    Provide a session-scoped database connection for integration tests.

    Skips tests if database is not available.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    conn = psycopg.connect(test_dsn)
    try:
        yield conn
    finally:
        conn.close()
