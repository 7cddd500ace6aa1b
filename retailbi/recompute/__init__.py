"""
Recompute package for RetailBI.

Re-exports the recompute interfaces and the PostgreSQL implementations so
downstream code can import from `retailbi.recompute` directly.
"""

from retailbi.recompute.abstract import (
    AbstractViewRecompute,
    CallableRecompute,
    RecomputeMap,
    RecomputeResult,
    RowCounter,
    ViewRecompute,
)
from retailbi.recompute.postgres import (
    MaterializedViewRecompute,
    OnDemandViewRecompute,
    PostgresRowCounter,
    build_recompute_map,
)

__all__ = [
    # Abstracts
    "AbstractViewRecompute",
    "CallableRecompute",
    "RecomputeMap",
    "RecomputeResult",
    "RowCounter",
    "ViewRecompute",
    # PostgreSQL
    "MaterializedViewRecompute",
    "OnDemandViewRecompute",
    "PostgresRowCounter",
    "build_recompute_map",
]
