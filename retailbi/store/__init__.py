"""
Metadata store package for RetailBI.

Re-exports the store protocol and the concrete in-memory and PostgreSQL
implementations so callers can import from `retailbi.store` directly.
"""

from retailbi.store.abstract import AbstractMetadataStore, MetadataStore, running_average
from retailbi.store.memory import InMemoryMetadataStore
from retailbi.store.postgres import PostgresMetadataStore
from retailbi.store.schema import ensure_schema

__all__ = [
    "AbstractMetadataStore",
    "InMemoryMetadataStore",
    "MetadataStore",
    "PostgresMetadataStore",
    "ensure_schema",
    "running_average",
]
