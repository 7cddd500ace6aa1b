"""
PostgreSQL recomputes for the analytics schema.

Precomputed snapshots are rebuilt with `REFRESH MATERIALIZED VIEW`
(optionally `CONCURRENTLY`, which needs a unique index on the view and keeps
readers unblocked). On-demand views have no stored contents; recomputing one
evaluates it once so a broken definition surfaces as a failure.

Identifiers are always composed with `psycopg.sql.Identifier`.
"""

from __future__ import annotations

import time
from typing import Optional

import psycopg
from psycopg import sql
from psycopg_pool import ConnectionPool

from retailbi.domain.models import DerivedViewDescriptor
from retailbi.errors import RecomputeError
from retailbi.infrastructure.db_factory import apply_statement_timeout
from retailbi.recompute.abstract import AbstractViewRecompute, RecomputeMap, RecomputeResult
from retailbi.registry import DerivedViewRegistry
from retailbi.utils.logging import get_logger

log = get_logger(__name__)


def _count_query(schema: str, view_name: str) -> sql.Composed:
    return sql.SQL("SELECT COUNT(*) FROM {}.{}").format(
        sql.Identifier(schema), sql.Identifier(view_name)
    )


class MaterializedViewRecompute(AbstractViewRecompute):
    """
    `REFRESH MATERIALIZED VIEW [CONCURRENTLY] <schema>.<name>` in its own
    transaction, bounded by the configured statement timeout.
    """

    def __init__(self, name: str, pool: ConnectionPool, schema: str = "analytics",
                 timeout_ms: int = 0) -> None:
        self.name = name
        self._pool = pool
        self._schema = schema
        self._timeout_ms = timeout_ms

    def execute(self, concurrent: bool = False) -> RecomputeResult:
        template = (
            "REFRESH MATERIALIZED VIEW CONCURRENTLY {}.{}"
            if concurrent
            else "REFRESH MATERIALIZED VIEW {}.{}"
        )
        statement = sql.SQL(template).format(sql.Identifier(self._schema), sql.Identifier(self.name))
        start = time.perf_counter()
        try:
            with self._pool.connection() as conn:
                with conn.cursor() as cur:
                    apply_statement_timeout(cur, self._timeout_ms)
                    cur.execute(statement)
                    cur.execute(_count_query(self._schema, self.name))
                    row_count = cur.fetchone()[0]
        except psycopg.errors.QueryCanceled as exc:
            raise RecomputeError(
                f"refresh of {self.name} timed out after {self._timeout_ms} ms", self.name
            ) from exc
        except psycopg.Error as exc:
            raise RecomputeError(str(exc).strip() or type(exc).__name__, self.name) from exc
        log.debug(
            f"[RECOMPUTE] {self.name} refreshed",
            extra={
                "view": self.name,
                "concurrent": concurrent,
                "rows": row_count,
                "duration": round(time.perf_counter() - start, 3),
            },
        )
        return RecomputeResult(row_count=row_count, notes="concurrent" if concurrent else "full")


class OnDemandViewRecompute(AbstractViewRecompute):
    """
    Evaluates an on-demand view once; its row count is the result.
    """

    def __init__(self, name: str, pool: ConnectionPool, schema: str = "analytics",
                 timeout_ms: int = 0) -> None:
        self.name = name
        self._pool = pool
        self._schema = schema
        self._timeout_ms = timeout_ms

    def execute(self, concurrent: bool = False) -> RecomputeResult:
        del concurrent
        try:
            with self._pool.connection() as conn:
                with conn.cursor() as cur:
                    apply_statement_timeout(cur, self._timeout_ms)
                    cur.execute(_count_query(self._schema, self.name))
                    row_count = cur.fetchone()[0]
        except psycopg.errors.QueryCanceled as exc:
            raise RecomputeError(
                f"evaluation of {self.name} timed out after {self._timeout_ms} ms", self.name
            ) from exc
        except psycopg.Error as exc:
            raise RecomputeError(str(exc).strip() or type(exc).__name__, self.name) from exc
        return RecomputeResult(row_count=row_count, notes="on-demand")


class PostgresRowCounter:
    """
    Best-effort `COUNT(*)` over a derived view. Any database error (for
    example a view that has not been created yet) yields None.
    """

    def __init__(self, pool: ConnectionPool, schema: str = "analytics") -> None:
        self._pool = pool
        self._schema = schema

    def count(self, view_name: str) -> Optional[int]:
        try:
            with self._pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(_count_query(self._schema, view_name))
                    return cur.fetchone()[0]
        except psycopg.Error as exc:
            log.debug(
                f"[ROW COUNT] {view_name} unavailable",
                extra={"view": view_name, "error": str(exc)},
            )
            return None


def _recompute_for(view: DerivedViewDescriptor, pool: ConnectionPool, schema: str,
                   timeout_ms: int) -> AbstractViewRecompute:
    if view.is_refreshable:
        return MaterializedViewRecompute(view.name, pool, schema=schema, timeout_ms=timeout_ms)
    return OnDemandViewRecompute(view.name, pool, schema=schema, timeout_ms=timeout_ms)


def build_recompute_map(
    registry: DerivedViewRegistry,
    pool: ConnectionPool,
    schema: str = "analytics",
    timeout_ms: int = 0,
) -> RecomputeMap:
    """
    Resolve one recompute per registered view.
    """
    return {view.name: _recompute_for(view, pool, schema, timeout_ms) for view in registry.all()}


__all__ = [
    "MaterializedViewRecompute",
    "OnDemandViewRecompute",
    "PostgresRowCounter",
    "build_recompute_map",
]
