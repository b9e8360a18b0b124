"""Protocols for pluggable ingestrag collaborators."""

from .boundary import BoundaryClassifier
from .embedding import EmbeddingProvider
from .extractor import ContentExtractor
from .index import IndexMaintainer
from .listing import ListingSource
from .lock_store import LockStore

__all__ = [
    "BoundaryClassifier",
    "ContentExtractor",
    "EmbeddingProvider",
    "IndexMaintainer",
    "ListingSource",
    "LockStore",
]
