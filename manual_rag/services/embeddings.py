"""
Embeddings service for generating vector embeddings.
"""

import logging
import os
from typing import List, Optional, Sequence

import numpy as np
from dotenv import load_dotenv
from langchain_core.embeddings import Embeddings
from langchain_openai import OpenAIEmbeddings

from ..config.processor import EmbeddingConfig, RateLimitConfig
from ..utils.errors import EmbeddingError, retry_with_backoff

load_dotenv()

logger = logging.getLogger(__name__)

def get_embeddings(config: Optional[EmbeddingConfig] = None) -> OpenAIEmbeddings:
    """Get OpenAI embeddings instance."""
    config = config or EmbeddingConfig()
    return OpenAIEmbeddings(
        openai_api_key=os.getenv('OPENAI_API_KEY'),
        model=config.model_name,
        dimensions=config.embedding_dimension,
    )

def _to_list(vector) -> List[float]:
    if isinstance(vector, np.ndarray):
        return vector.astype(np.float32).tolist()
    return [float(x) for x in vector]

class EmbeddingGenerator:
    """Batches texts through an embeddings model, preserving input order."""

    def __init__(
        self,
        embeddings: Embeddings,
        config: Optional[EmbeddingConfig] = None,
        rate_limit_config: Optional[RateLimitConfig] = None,
    ):
        self.embeddings = embeddings
        self.config = config or EmbeddingConfig()
        self.rate_limit_config = rate_limit_config or RateLimitConfig()

        self._embed_with_retry = retry_with_backoff(
            max_retries=self.rate_limit_config.max_retries,
            base_delay=self.rate_limit_config.initial_delay,
            max_delay=self.rate_limit_config.max_delay,
        )(self._embed_documents)

    def _truncate(self, text: str) -> str:
        return (text or "")[:self.config.max_input_chars]

    async def _embed_documents(self, batch: List[str]) -> List[List[float]]:
        return await self.embeddings.aembed_documents(batch)

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Embed ``texts`` in fixed-size batches, one vector per input.

        Batches run sequentially. A batch that keeps failing after retries
        raises EmbeddingError, so callers never see a partial result.
        """
        if not texts:
            return []

        prepared = [self._truncate(text) for text in texts]
        batch_size = self.config.batch_size
        total_batches = (len(prepared) + batch_size - 1) // batch_size
        vectors: List[List[float]] = []

        for batch_number, start in enumerate(range(0, len(prepared), batch_size), start=1):
            batch = prepared[start:start + batch_size]
            try:
                batch_vectors = await self._embed_with_retry(batch)
            except Exception as e:
                logger.error(f"Embedding batch {batch_number}/{total_batches} failed: {str(e)}")
                raise EmbeddingError(
                    f"Failed to embed batch {batch_number}/{total_batches}: {str(e)}"
                ) from e

            if len(batch_vectors) != len(batch):
                raise EmbeddingError(
                    f"Embedding batch {batch_number} returned {len(batch_vectors)} vectors "
                    f"for {len(batch)} texts"
                )
            vectors.extend(_to_list(vector) for vector in batch_vectors)
            logger.debug(f"Embedded batch {batch_number}/{total_batches}")

        logger.info(f"Generated {len(vectors)} embeddings in {total_batches} batches")
        return vectors

    async def embed_query(self, text: str) -> List[float]:
        """Embed a single query string."""
        try:
            vector = await self.embeddings.aembed_query(self._truncate(text))
        except Exception as e:
            raise EmbeddingError(f"Failed to embed query: {str(e)}") from e
        return _to_list(vector)
