"""HTTP surface for locks, pipelines and maintenance."""

from ingestrag.api.app import create_app

__all__ = ["create_app"]
