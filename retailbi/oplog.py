"""
Scoped execution logging.

`OperationLogger.operation()` records a RUNNING entry in the execution log
when a unit of work starts and always finalizes it when the work ends:
SUCCESS with the row count the work reported, or FAILED with the error
detail, after which the error is re-raised.

Usage:
    logger = OperationLogger(store)
    with logger.operation(OperationType.VALIDATE, "data_quality") as op:
        op.rows_affected = run_checks()
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Generator, Optional

from retailbi.domain.models import OperationLogEntry, OperationStatus, OperationType
from retailbi.store.abstract import MetadataStore
from retailbi.utils.logging import get_logger
from retailbi.utils.profiler import profile_block

log = get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class OperationHandle:
    """
    Live view of a tracked operation.

    The work sets `rows_affected` before it exits.
    """

    log_id: int
    operation_type: OperationType
    scope: str
    target: Optional[str]
    started_at: datetime
    rows_affected: Optional[int] = None


class OperationLogger:
    def __init__(self, store: MetadataStore, clock: Clock = utc_now) -> None:
        self._store = store
        self._clock = clock

    @contextmanager
    def operation(
        self,
        operation_type: OperationType,
        scope: str,
        target: Optional[str] = None,
    ) -> Generator[OperationHandle, None, None]:
        """
        Track one unit of work in the execution log.

        Parameters
        ----------
        operation_type : OperationType
            REFRESH_BATCH, REFRESH or VALIDATE.
        scope : str
            Module or batch scope the work belongs to.
        target : str | None
            Specific view or routine, when there is one.

        Raises
        ------
        Exception
            Whatever the wrapped work raised, after the entry is finalized FAILED.
        """
        started_at = self._clock()
        log_id = self._store.append_log(
            OperationLogEntry(
                operation_type=operation_type,
                scope_name=scope,
                target_name=target,
                status=OperationStatus.RUNNING,
                started_at=started_at,
            )
        )
        handle = OperationHandle(
            log_id=log_id,
            operation_type=operation_type,
            scope=scope,
            target=target,
            started_at=started_at,
        )
        log.debug(
            f"[OPERATION START] {operation_type.value} {target or scope}",
            extra={"log_id": log_id, "operation": operation_type.value, "scope": scope},
        )
        with profile_block(target or scope) as stats:
            try:
                yield handle
            except BaseException as exc:
                failure = exc
            else:
                failure = None

        if failure is None:
            self._store.finalize_log(
                log_id,
                OperationStatus.SUCCESS,
                rows_affected=handle.rows_affected,
                completed_at=self._clock(),
                server_info=stats.as_server_info(),
            )
            return

        self._store.finalize_log(
            log_id,
            OperationStatus.FAILED,
            rows_affected=handle.rows_affected,
            error_detail=str(failure) or type(failure).__name__,
            completed_at=self._clock(),
            error_type=type(failure).__name__,
            server_info=stats.as_server_info(),
        )
        log.debug(
            f"[OPERATION FAILED] {operation_type.value} {target or scope}",
            extra={"log_id": log_id, "error": str(failure)},
        )
        raise failure


__all__ = ["Clock", "OperationHandle", "OperationLogger", "utc_now"]
