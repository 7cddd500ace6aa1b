"""
DDL for the metadata tables of the analytics schema.

All statements are idempotent so `retailbi init-db` can be re-run against an
existing database. The schema name is injected with `psycopg.sql.Identifier`.
"""

from __future__ import annotations

from typing import List

from psycopg import Connection, sql

_STATEMENTS: List[str] = [
    "CREATE SCHEMA IF NOT EXISTS {schema}",
    """
    CREATE TABLE IF NOT EXISTS {schema}.view_catalog (
        view_id             SERIAL PRIMARY KEY,
        view_name           VARCHAR(100) UNIQUE NOT NULL,
        category            VARCHAR(50) NOT NULL,
        view_kind           VARCHAR(30) NOT NULL,
        refresh_cadence     VARCHAR(20) NOT NULL DEFAULT 'DAILY',
        title               VARCHAR(200) NOT NULL DEFAULT '',
        description         TEXT NOT NULL DEFAULT '',
        business_question   TEXT NOT NULL DEFAULT '',
        last_refreshed      TIMESTAMPTZ,
        last_row_count      BIGINT,
        avg_refresh_ms      DOUBLE PRECISION,
        refresh_count       INTEGER NOT NULL DEFAULT 0,
        created_at          TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at          TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_view_catalog_category ON {schema}.view_catalog (category)",
    """
    CREATE TABLE IF NOT EXISTS {schema}.execution_log (
        log_id              SERIAL PRIMARY KEY,
        operation_type      VARCHAR(50) NOT NULL,
        module_name         VARCHAR(100),
        object_name         VARCHAR(100),
        status              VARCHAR(20) NOT NULL,
        rows_affected       BIGINT,
        execution_time_ms   INTEGER,
        started_at          TIMESTAMPTZ NOT NULL,
        completed_at        TIMESTAMPTZ,
        executed_by         VARCHAR(50) DEFAULT CURRENT_USER,
        error_type          VARCHAR(100),
        error_detail        TEXT,
        server_info         JSONB
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_exec_log_status ON {schema}.execution_log (status)",
    "CREATE INDEX IF NOT EXISTS idx_exec_log_started ON {schema}.execution_log (started_at DESC)",
    """
    CREATE TABLE IF NOT EXISTS {schema}.refresh_history (
        refresh_id          SERIAL PRIMARY KEY,
        refresh_batch_id    UUID NOT NULL,
        view_name           VARCHAR(100) NOT NULL,
        refresh_type        VARCHAR(20) NOT NULL DEFAULT 'FULL',
        started_at          TIMESTAMPTZ,
        completed_at        TIMESTAMPTZ,
        duration_ms         INTEGER,
        rows_before         BIGINT,
        rows_after          BIGINT,
        status              VARCHAR(20) NOT NULL,
        error_message       TEXT,
        triggered_by        VARCHAR(50),
        trigger_source      VARCHAR(20) NOT NULL DEFAULT 'MANUAL'
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_refresh_view ON {schema}.refresh_history (view_name)",
    "CREATE INDEX IF NOT EXISTS idx_refresh_started ON {schema}.refresh_history (started_at DESC)",
    """
    CREATE TABLE IF NOT EXISTS {schema}.data_quality_issues (
        issue_id            SERIAL PRIMARY KEY,
        check_name          VARCHAR(100) NOT NULL,
        check_category      VARCHAR(50) NOT NULL,
        severity            VARCHAR(20) NOT NULL,
        source_table        VARCHAR(100),
        affected_records    BIGINT NOT NULL,
        issue_description   TEXT,
        suggested_action    TEXT,
        detected_at         TIMESTAMPTZ NOT NULL,
        resolved_at         TIMESTAMPTZ,
        status              VARCHAR(20) NOT NULL DEFAULT 'OPEN'
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_dq_status ON {schema}.data_quality_issues (status)",
    "CREATE INDEX IF NOT EXISTS idx_dq_detected ON {schema}.data_quality_issues (detected_at DESC)",
]


def schema_statements(schema: str) -> List[sql.Composed]:
    """Render the DDL for `schema`."""
    return [sql.SQL(stmt).format(schema=sql.Identifier(schema)) for stmt in _STATEMENTS]


def ensure_schema(conn: Connection, schema: str) -> None:
    """
    Create the metadata tables if they do not exist.
    """
    with conn.cursor() as cur:
        for statement in schema_statements(schema):
            cur.execute(statement)
    conn.commit()


__all__ = ["ensure_schema", "schema_statements"]
