"""Derived indexes maintained alongside stored chunks."""

from ingestrag.store.fts import FtsIndexMaintainer

__all__ = ["FtsIndexMaintainer"]
