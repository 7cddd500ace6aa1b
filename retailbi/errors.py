"""
Exception taxonomy for RetailBI.

Recompute failures are recovered by the orchestrator and recorded as FAILED
outcomes. Metadata failures and invalid log transitions abort the batch and
reach the caller.
"""

from __future__ import annotations

from typing import Optional


class RetailBIError(Exception):
    """Base class for all RetailBI errors."""


class UnknownViewError(RetailBIError, LookupError):
    """A view or module name is not present in the registry."""

    def __init__(self, name: str, kind: str = "view") -> None:
        super().__init__(f"Unknown {kind} '{name}'")
        self.name = name


class DuplicateKindMismatch(RetailBIError):
    """A view is re-registered with a different kind than the stored one."""

    def __init__(self, name: str, existing: str, requested: str) -> None:
        super().__init__(
            f"View '{name}' is already registered as {existing}, cannot re-register as {requested}"
        )
        self.name = name


class RecomputeError(RetailBIError):
    """Recomputing a single derived view failed."""

    def __init__(self, message: str, view_name: Optional[str] = None) -> None:
        super().__init__(message)
        self.view_name = view_name


class InvalidTransition(RetailBIError):
    """An execution log entry was finalized twice or moved backwards."""


class MetadataWriteError(RetailBIError):
    """The metadata store failed to persist a log entry or freshness update."""


__all__ = [
    "DuplicateKindMismatch",
    "InvalidTransition",
    "MetadataWriteError",
    "RecomputeError",
    "RetailBIError",
    "UnknownViewError",
]
