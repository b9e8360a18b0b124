"""OpenAI embedding provider implementation."""

from __future__ import annotations

from typing import Any

from openai import AsyncOpenAI  # type: ignore

from ingestrag.core.retry_config import RetryConfig
from ingestrag.providers._openai import OpenAIProviderMixin


class OpenAIEmbeddingProvider(OpenAIProviderMixin):
    """Embedding provider using OpenAI's embedding models.

    Satisfies the EmbeddingProvider Protocol by implementing the async embed method.
    """

    _provider_name = "openai_embedding"

    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        model: str = "text-embedding-3-small",
        retry_config: RetryConfig | None = None,
        *,
        api_key: str | None = None,
        dimensions: int | None = None,
    ) -> None:
        """Initialize the OpenAI embedding provider.

        Args:
            client: AsyncOpenAI client instance. If None, a new client will be created.
            model: The embedding model to use. Defaults to "text-embedding-3-small".
            retry_config: Retry configuration. Uses default if not provided.
            api_key: API key used when no client is given.
            dimensions: Optional reduced output dimensionality.
        """
        super().__init__(client=client, api_key=api_key, model=model, retry_config=retry_config)
        self.dimensions = dimensions

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for a list of texts using OpenAI.

        Args:
            texts: List of text strings to embed.

        Returns:
            List of embedding vectors, in input order.

        Raises:
            RateLimitError: When OpenAI rate limits the request.
            ProviderError: For any other API failure.
        """
        if not texts:
            return []

        operation_logger = self._logger.bind(
            texts_count=len(texts),
            operation="embed",
        )
        operation_logger.debug("embedding_started")

        retry_decorator = self._get_retry_decorator()

        @retry_decorator
        async def _embed_with_retry() -> Any:
            kwargs: dict[str, Any] = {"model": self.model, "input": texts}
            if self.dimensions:
                kwargs["dimensions"] = self.dimensions
            return await self.client.embeddings.create(**kwargs)

        try:
            response = await _embed_with_retry()
        except Exception as e:
            operation_logger.error(
                "embedding_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise self._wrap_error(e, "embed") from e

        ordered = sorted(response.data, key=lambda item: item.index)
        embeddings = [item.embedding for item in ordered]

        operation_logger.info(
            "embedding_completed",
            embeddings_count=len(embeddings),
            dimensions=len(embeddings[0]) if embeddings else 0,
        )
        return embeddings
