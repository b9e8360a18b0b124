"""Shared helpers for external provider clients."""

from ingestrag.providers._openai import OpenAIProviderMixin, wrap_openai_error

__all__ = ["OpenAIProviderMixin", "wrap_openai_error"]
