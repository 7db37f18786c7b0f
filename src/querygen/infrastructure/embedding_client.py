"""
Embedding client for OpenRouter using LangChain.

Embeds table and concept texts for the knowledge graph, query texts for
graph search, and prompts for the query cache.
"""

from typing import List, Optional
from pydantic import SecretStr
from langchain_openai import OpenAIEmbeddings

from ..config import EmbeddingConfig
from ..utils.cancellation import AbortSignal, guarded
from ..utils.logging import get_module_logger
from ..utils.tracing import current_trace_id
from ..utils.token_utils import InputValidator
from ..domain.errors import EmbeddingError, OperationCancelledError


logger = get_module_logger()


class EmbeddingClient:
    """
    Embedding client using LangChain's OpenAIEmbeddings with OpenRouter.

    Usage:
        client = EmbeddingClient(config)
        await client.connect()
        vector = await client.embed_text("salary above 1000 USD")
        vectors = await client.embed_batch(["employees: staff", "currencies: ISO codes"])
        await client.close()
    """

    def __init__(self, config: EmbeddingConfig):
        self.config = config
        self._embeddings: Optional[OpenAIEmbeddings] = None
        self._is_connected = False

        logger.info(
            "EmbeddingClient initialized",
            embedding_model=config.embedding_model,
            embedding_dimension=config.embedding_dimension,
            batch_size=config.batch_size
        )

    async def connect(self) -> None:
        """
        Build the LangChain OpenAIEmbeddings client.

        Raises:
            EmbeddingError: If initialization fails
        """
        if self._is_connected:
            logger.warning("Embedding client already connected")
            return

        trace_id = current_trace_id()

        try:
            # LangChain chunks batches by chunk_size and sends chunks sequentially
            self._embeddings = OpenAIEmbeddings(
                model=self.config.embedding_model,
                api_key=SecretStr(self.config.openrouter_api_key),
                base_url=self.config.base_url,
                dimensions=self.config.embedding_dimension,
                timeout=self.config.timeout_seconds,
                max_retries=self.config.max_retries,
                chunk_size=self.config.batch_size
            )

            self._is_connected = True
            logger.info("Embedding client initialized successfully", trace_id=trace_id)

        except Exception as e:
            error_msg = f"Failed to initialize embedding client: {e}"
            logger.error(error_msg, error_type=type(e).__name__, trace_id=trace_id)
            raise EmbeddingError(error_msg) from e

    async def close(self) -> None:
        """Release the client."""
        self._is_connected = False
        self._embeddings = None
        logger.info("Embedding client closed", trace_id=current_trace_id())

    def is_connected(self) -> bool:
        """Check if embedding client is connected."""
        return self._is_connected and self._embeddings is not None

    async def embed_text(self, text: str, abort: Optional[AbortSignal] = None) -> List[float]:
        """
        Embed a single query text.

        Raises:
            EmbeddingError: If embedding fails or text exceeds the character limit
            OperationCancelledError: If the abort signal fires
        """
        vectors = await self._embed([text], abort, query=True)
        return vectors[0]

    async def embed_batch(
        self, texts: List[str], abort: Optional[AbortSignal] = None
    ) -> List[List[float]]:
        """
        Embed several documents, one vector per input in input order.

        Raises:
            EmbeddingError: If embedding fails or any text exceeds the character limit
            OperationCancelledError: If the abort signal fires
        """
        if not texts:
            return []
        return await self._embed(texts, abort, query=False)

    async def _embed(
        self, texts: List[str], abort: Optional[AbortSignal], query: bool
    ) -> List[List[float]]:
        if not self.is_connected() or self._embeddings is None:
            raise EmbeddingError("Embedding client is not connected")

        try:
            InputValidator.validate_batch_chars(texts, max_chars_per_text=self.config.max_input_chars)
        except ValueError as e:
            raise EmbeddingError(str(e)) from e

        trace_id = current_trace_id()
        logger.info("Generating embeddings", num_texts=len(texts), query=query, trace_id=trace_id)

        try:
            if query:
                vectors = [await guarded(self._embeddings.aembed_query(texts[0]), abort)]
            else:
                vectors = await guarded(self._embeddings.aembed_documents(texts), abort)
        except OperationCancelledError:
            logger.info("Embedding call cancelled", trace_id=trace_id)
            raise
        except Exception as e:
            error_msg = f"Embedding generation failed: {e}"
            logger.error(
                error_msg,
                error_type=type(e).__name__,
                num_texts=len(texts),
                trace_id=trace_id
            )
            raise EmbeddingError(error_msg) from e

        for index, vector in enumerate(vectors):
            if not vector or len(vector) != self.config.embedding_dimension:
                raise EmbeddingError(
                    f"Invalid embedding dimension at index {index}: "
                    f"expected {self.config.embedding_dimension}, "
                    f"got {len(vector) if vector else 0}"
                )

        logger.info("Embeddings generated successfully", num_vectors=len(vectors), trace_id=trace_id)
        return vectors
