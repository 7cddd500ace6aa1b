"""
Recompute interfaces and result contracts for RetailBI.

A recompute rebuilds the contents of one derived view. The orchestrator
resolves a name -> recompute map at start-up and never builds executable
SQL from view names itself. Row counts are served by a separate `RowCounter`
so the orchestrator can sample a view before and after its recompute.
"""

from __future__ import annotations

import abc
from typing import Callable, Dict, Optional, Protocol, TypedDict, runtime_checkable


class RecomputeResult(TypedDict, total=False):
    """
    Metrics returned by a recompute.

    `row_count` is optional; when missing the orchestrator asks the row
    counter instead.
    """

    row_count: Optional[int]
    notes: Optional[str]


@runtime_checkable
class ViewRecompute(Protocol):
    """
    Recomputes one derived view.

    Attributes
    ----------
    name : str
        The view this recompute rebuilds.
    """

    name: str

    def execute(self, concurrent: bool = False) -> RecomputeResult:
        """
        Rebuild the view.

        Parameters
        ----------
        concurrent : bool
            Rebuild without locking out concurrent readers, where supported.

        Raises
        ------
        RecomputeError
            If the rebuild fails or times out.
        """
        ...


@runtime_checkable
class RowCounter(Protocol):
    def count(self, view_name: str) -> Optional[int]:
        """Current row count, or None when not available."""
        ...


class AbstractViewRecompute(abc.ABC):
    """
    Optional ABC helper for class-based recomputes.
    """

    name: str

    @abc.abstractmethod
    def execute(self, concurrent: bool = False) -> RecomputeResult:  # pragma: no cover - interface only
        raise NotImplementedError


class CallableRecompute(AbstractViewRecompute):
    """
    Adapts a plain function returning a row count into a `ViewRecompute`.
    """

    def __init__(self, name: str, func: Callable[[bool], Optional[int]]) -> None:
        self.name = name
        self._func = func

    def execute(self, concurrent: bool = False) -> RecomputeResult:
        return RecomputeResult(row_count=self._func(concurrent))


RecomputeMap = Dict[str, ViewRecompute]


__all__ = [
    "AbstractViewRecompute",
    "CallableRecompute",
    "RecomputeMap",
    "RecomputeResult",
    "RowCounter",
    "ViewRecompute",
]
