"""
RetailBI - refresh orchestration and metadata tracking for retail analytics.

This package keeps the derived views of a retail analytics schema current and
records what happened while doing so:

- A registry of derived views (on-demand views and precomputed snapshots)
- Sequential, failure-isolated refresh batches per module or for everything
- An execution log and refresh history in a metadata store
- Freshness tracking with a forward-only guard
- A data-quality validation battery with issue retention
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from retailbi.config import QualityThresholds, Settings, get_settings
from retailbi.domain.models import (
    DerivedViewDescriptor,
    RefreshBatch,
    RefreshOutcome,
    ViewFreshness,
)
from retailbi.errors import RetailBIError, UnknownViewError
from retailbi.orchestrator import RefreshOrchestrator, build_orchestrator
from retailbi.registry import DerivedViewRegistry, default_registry
from retailbi.store.memory import InMemoryMetadataStore
from retailbi.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "QualityThresholds",
    "Settings",
    "get_settings",
    # Models
    "DerivedViewDescriptor",
    "RefreshBatch",
    "RefreshOutcome",
    "ViewFreshness",
    # Errors
    "RetailBIError",
    "UnknownViewError",
    # Orchestration
    "DerivedViewRegistry",
    "RefreshOrchestrator",
    "build_orchestrator",
    "default_registry",
    "InMemoryMetadataStore",
    # Logging
    "configure_logging",
    "get_logger",
]
