"""Embedding providers."""

from ingestrag.embed.openai import OpenAIEmbeddingProvider

__all__ = ["OpenAIEmbeddingProvider"]
