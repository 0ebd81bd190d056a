"""
Captioning, classification and storage of images embedded in a PDF.
"""

import asyncio
import io
import logging
from typing import List, Optional, Sequence, Tuple

from langchain_core.language_models import BaseChatModel
from PIL import Image, UnidentifiedImageError

from .matcher import classify_image_type
from ...config.chat import PromptConfig
from ...config.processor import VisionConfig
from ...models.analysis import DocumentContext, EmbeddedImage, ProcessedImage
from ...services.embeddings import EmbeddingGenerator
from ...services.llm import image_message, message_text
from ...services.storage import LocalAssetStorage, image_key
from ...utils.errors import ImageProcessingError
from ...utils.text import sanitize_text

logger = logging.getLogger(__name__)

def image_dimensions(image: EmbeddedImage) -> Tuple[int, int]:
    """Declared dimensions, or the ones read from the image bytes."""
    if image.width and image.height:
        return image.width, image.height
    try:
        with Image.open(io.BytesIO(image.data)) as pil_image:
            return pil_image.size
    except (UnidentifiedImageError, OSError) as e:
        raise ImageProcessingError(
            f"Unreadable image {image.index} on page {image.page_number}: {str(e)}"
        ) from e

class ImageProcessor:
    """Filters, captions, classifies, stores and embeds embedded images."""

    def __init__(
        self,
        llm: BaseChatModel,
        embedding_generator: EmbeddingGenerator,
        storage: LocalAssetStorage,
        config: Optional[VisionConfig] = None,
        prompts: Optional[PromptConfig] = None,
    ):
        self.llm = llm
        self.embedding_generator = embedding_generator
        self.storage = storage
        self.config = config or VisionConfig()
        self.prompts = prompts or PromptConfig()

    def is_large_enough(self, width: int, height: int) -> bool:
        minimum = self.config.min_image_dimension
        return width >= minimum and height >= minimum

    async def caption_image(self, image: EmbeddedImage) -> str:
        response = await self.llm.ainvoke([
            image_message(self.prompts.caption_template, image.data_url, detail=self.config.caption_detail)
        ])
        caption = sanitize_text(message_text(response))
        if not caption:
            raise ImageProcessingError(f"Empty caption for image {image.index} on page {image.page_number}")
        return caption

    async def _process_one(
        self, image: EmbeddedImage, width: int, height: int, context: DocumentContext
    ) -> ProcessedImage:
        caption = await self.caption_image(image)
        image_type = classify_image_type(caption)
        key = image_key(context.user_id, context.document_id, image.page_number, image.index, image.extension)
        url = await self.storage.save(key, image.data)
        return ProcessedImage(
            page_number=image.page_number,
            index=image.index,
            image_url=url,
            caption=caption,
            image_type=image_type,
            width=width,
            height=height,
        )

    async def process_embedded_images(
        self, images: Sequence[EmbeddedImage], context: DocumentContext
    ) -> List[ProcessedImage]:
        """
        Process the images of one document.

        Images below ``min_image_dimension`` are dropped. A caption or storage
        failure skips that image only. Caption embeddings are computed in one
        batched call and an embedding failure propagates.
        """
        candidates = []
        for image in images:
            try:
                width, height = image_dimensions(image)
            except ImageProcessingError as e:
                logger.warning(f"Skipping image: {str(e)}")
                continue
            if self.is_large_enough(width, height):
                candidates.append((image, width, height))

        skipped_small = len(images) - len(candidates)
        if skipped_small:
            logger.info(f"Filtered out {skipped_small} small or unreadable images")
        if not candidates:
            return []

        semaphore = asyncio.Semaphore(max(1, self.config.image_concurrency))

        async def guarded(image: EmbeddedImage, width: int, height: int) -> Optional[ProcessedImage]:
            async with semaphore:
                try:
                    return await self._process_one(image, width, height, context)
                except Exception as e:
                    logger.warning(
                        f"Skipping image {image.index} on page {image.page_number}: {str(e)}"
                    )
                    return None

        results = await asyncio.gather(*(guarded(*candidate) for candidate in candidates))
        processed = [result for result in results if result is not None]

        if processed:
            embeddings = await self.embedding_generator.embed_batch([p.caption for p in processed])
            for item, embedding in zip(processed, embeddings):
                item.embedding = embedding

        logger.info(f"Processed {len(processed)} of {len(candidates)} candidate images")
        return processed
