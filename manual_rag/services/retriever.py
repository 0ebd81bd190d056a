"""
Vector retrieval service over the per-user knowledge base.
"""

import logging
from typing import Sequence

from .knowledge_base import KnowledgeBase
from ..models.analysis import RetrievalResult
from ..utils.validation import InputValidator, validate_required_text

logger = logging.getLogger(__name__)

class Retriever:
    """Top-k cosine retrieval of chunks and images for one user."""

    def __init__(self, knowledge_base: KnowledgeBase):
        self.knowledge_base = knowledge_base

    async def retrieve(
        self,
        query_embedding: Sequence[float],
        user_id: str,
        k_chunks: int,
        k_images: int,
        threshold: float,
    ) -> RetrievalResult:
        """
        Return the user's chunks and images whose similarity to
        ``query_embedding`` is strictly greater than ``threshold``.

        Both lists are sorted by descending similarity and capped at
        ``k_chunks``/``k_images``. Empty lists are a valid result.
        """
        user_id = validate_required_text(user_id, "user_id")
        InputValidator.validate_search_params(k_chunks, k_images, threshold)

        chunks = await self.knowledge_base.match_chunks(query_embedding, threshold, k_chunks, user_id)
        images = await self.knowledge_base.match_images(query_embedding, threshold, k_images, user_id)

        chunks = sorted(chunks, key=lambda c: c.similarity, reverse=True)[:k_chunks]
        images = sorted(images, key=lambda i: i.similarity, reverse=True)[:k_images]

        logger.info(
            f"Retrieved {len(chunks)} chunks and {len(images)} images for user {user_id} "
            f"(threshold {threshold})"
        )
        return RetrievalResult(chunks=chunks, images=images)
