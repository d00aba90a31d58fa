# storage/__init__.py
# ============================================================================
# CLUBSPHERE: STORAGE MODULE
# ============================================================================
# Document store contract and the in-memory implementation
# ============================================================================

from storage.document_store import (
    ASCENDING,
    DESCENDING,
    Collection,
    DocumentStore,
    InMemoryDocumentStore,
)

__all__ = [
    "ASCENDING",
    "DESCENDING",
    "Collection",
    "DocumentStore",
    "InMemoryDocumentStore",
]
