from __future__ import annotations

import logging
from datetime import timedelta

import psycopg
import pytest

from retailbi.config import QualityThresholds
from retailbi.domain.models import (
    IssueStatus,
    OperationStatus,
    OperationType,
    QualityCategory,
    QualityFinding,
    Severity,
)
from retailbi.errors import RetailBIError
from retailbi.orchestrator import RefreshOrchestrator
from retailbi.quality import RETAILMART_CHECKS, DataQualityChecker, SqlQualityChecker


def _finding(name: str, count: int, category: QualityCategory = QualityCategory.ACCURACY) -> QualityFinding:
    return QualityFinding(
        check_name=name,
        category=category,
        severity=Severity.HIGH,
        source="sales.orders",
        affected_count=count,
        description=f"{name} rows",
    )


def test_fake_checker_satisfies_protocol(quality_checker) -> None:
    assert isinstance(quality_checker, DataQualityChecker)


def test_only_nonzero_findings_become_open_issues(orchestrator, quality_checker, store) -> None:
    quality_checker.findings = [
        _finding("Negative Order Amount", 3),
        _finding("Future Order Dates", 0),
        _finding("Orphan Payments", 7, QualityCategory.CONSISTENCY),
    ]

    created = orchestrator.run_quality_checks()

    assert [i.check_name for i in created] == ["Negative Order Amount", "Orphan Payments"]
    assert all(i.issue_id is not None for i in created)
    assert [i.check_name for i in store.list_quality_issues(IssueStatus.OPEN)] == [
        "Negative Order Amount",
        "Orphan Payments",
    ]


def test_validation_is_logged_with_total_affected(orchestrator, quality_checker, store) -> None:
    quality_checker.findings = [_finding("Negative Order Amount", 3), _finding("Orphan Payments", 7)]

    orchestrator.run_quality_checks()

    (entry,) = store.list_logs()
    assert entry.operation_type is OperationType.VALIDATE
    assert entry.status is OperationStatus.SUCCESS
    assert entry.rows_affected == 10


def test_repeat_pass_leaves_one_open_issue_per_check(orchestrator, quality_checker, store) -> None:
    quality_checker.findings = [_finding("Negative Order Amount", 3)]
    orchestrator.run_quality_checks()
    quality_checker.findings = [_finding("Negative Order Amount", 2), _finding("Orphan Payments", 1)]

    orchestrator.run_quality_checks()

    open_issues = store.list_quality_issues(IssueStatus.OPEN)
    assert sorted(i.check_name for i in open_issues) == ["Negative Order Amount", "Orphan Payments"]
    assert [i.affected_record_count for i in open_issues if i.check_name == "Negative Order Amount"] == [2]
    (resolved,) = store.list_quality_issues(IssueStatus.RESOLVED)
    assert resolved.affected_record_count == 3
    assert resolved.resolved_at is not None


def test_clean_pass_resolves_everything(orchestrator, quality_checker, store) -> None:
    quality_checker.findings = [_finding("Negative Order Amount", 3)]
    orchestrator.run_quality_checks()
    quality_checker.findings = [_finding("Negative Order Amount", 0)]

    assert orchestrator.run_quality_checks() == []
    assert store.list_quality_issues(IssueStatus.OPEN) == []


def test_issue_of_check_that_did_not_run_stays_open(orchestrator, quality_checker, store) -> None:
    quality_checker.findings = [_finding("Negative Order Amount", 3), _finding("Orphan Payments", 7)]
    orchestrator.run_quality_checks()
    # Orphan Payments query failed this time, so it reports nothing.
    quality_checker.findings = [_finding("Negative Order Amount", 0)]

    orchestrator.run_quality_checks()

    (still_open,) = store.list_quality_issues(IssueStatus.OPEN)
    assert still_open.check_name == "Orphan Payments"
    assert still_open.affected_record_count == 7
    assert still_open.resolved_at is None
    (resolved,) = store.list_quality_issues(IssueStatus.RESOLVED)
    assert resolved.check_name == "Negative Order Amount"


def test_issues_past_retention_are_pruned(orchestrator, quality_checker, store, clock) -> None:
    quality_checker.findings = [_finding("Negative Order Amount", 3)]
    orchestrator.run_quality_checks()

    clock.advance(timedelta(days=8))
    quality_checker.findings = []
    orchestrator.run_quality_checks()

    assert store.list_quality_issues() == []


def test_checker_failure_is_logged_and_propagates(orchestrator, quality_checker, store) -> None:
    def boom():
        raise RuntimeError("source schema unavailable")

    quality_checker.run_all_checks = boom

    with pytest.raises(RuntimeError):
        orchestrator.run_quality_checks()

    (entry,) = store.list_logs()
    assert entry.status is OperationStatus.FAILED
    assert entry.error_detail == "source schema unavailable"


def test_missing_checker_is_an_error(registry, store, recomputes, clock) -> None:
    orchestrator = RefreshOrchestrator(registry, store, recomputes, clock=clock)
    with pytest.raises(RetailBIError):
        orchestrator.run_quality_checks()


class TestCheckCatalog:
    def test_names_are_unique(self) -> None:
        names = [c.name for c in RETAILMART_CHECKS]
        assert len(names) == len(set(names))

    def test_every_category_is_covered(self) -> None:
        assert {c.category for c in RETAILMART_CHECKS} == set(QualityCategory)

    def test_parameterised_checks_read_thresholds(self) -> None:
        thresholds = QualityThresholds(pending_order_days=3, stale_inventory_days=45)
        params = {c.name: c.params(thresholds) for c in RETAILMART_CHECKS if c.params is not None}

        assert params["Old Pending Orders"] == (3,)
        assert params["Stale Inventory Data"] == (45,)
        assert all(c.query.count("%s") == len(params.get(c.name, ())) for c in RETAILMART_CHECKS)


class TestSqlQualityChecker:
    def test_counts_become_findings(self, fake_pool) -> None:
        checks = RETAILMART_CHECKS[:3]
        pool = fake_pool([2, 0, 5])

        findings = SqlQualityChecker(pool, QualityThresholds(), checks).run_all_checks()

        assert [(f.check_name, f.affected_count) for f in findings] == [
            (checks[0].name, 2),
            (checks[1].name, 0),
            (checks[2].name, 5),
        ]
        assert findings[0].source == checks[0].source_table

    def test_failed_check_is_skipped(self, fake_pool, caplog) -> None:
        caplog.set_level(logging.ERROR, logger="retailbi.quality")
        checks = RETAILMART_CHECKS[:3]
        pool = fake_pool([2, psycopg.errors.UndefinedTable("relation does not exist"), 5])

        findings = SqlQualityChecker(pool, QualityThresholds(), checks).run_all_checks()

        assert [f.check_name for f in findings] == [checks[0].name, checks[2].name]
        assert pool.conn.transactions == 3
        assert "[CHECK FAILED]" in caplog.text

    def test_threshold_parameters_are_bound(self, fake_pool) -> None:
        (check,) = [c for c in RETAILMART_CHECKS if c.name == "Long-Pending Shipments"]
        pool = fake_pool([0])

        SqlQualityChecker(pool, QualityThresholds(unshipped_delivery_days=14), [check]).run_all_checks()

        assert pool.cursor.executed == [(check.query, (14,))]
