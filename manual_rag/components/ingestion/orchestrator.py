"""
End-to-end ingestion of one user's document.
"""

import logging
from enum import Enum
from typing import List, Optional

from ..analysis.fallback import FallbackExtractor
from ..analysis.page_analyzer import PageAnalyzer
from ..chunking.chunker import Chunker
from ..images.processor import ImageProcessor
from ...config.chat import PromptConfig
from ...config.processor import ProcessorConfig
from ...models.analysis import (
    DocumentContext, IngestionInput, IngestionResult, ProcessedImage,
)
from ...services.embeddings import EmbeddingGenerator, get_embeddings
from ...services.knowledge_base import DocumentRecord, KnowledgeBase, KnowledgeBaseContents
from ...services.llm import get_openai_client, get_vision_model
from ...services.storage import LocalAssetStorage
from ...utils.errors import DocumentNotFoundError, EmptyDocumentError
from ...utils.monitoring import StageMonitor
from ...utils.validation import InputValidator

logger = logging.getLogger(__name__)

class IngestionState(str, Enum):
    RECEIVED = "received"
    ANALYZING = "analyzing"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    PERSISTING = "persisting"
    PROCESSED = "processed"
    FAILED = "failed"

VISION_METHOD = "vision"
FALLBACK_METHOD = "fallback"

class IngestionRun:
    """State of one ingestion run; only PERSISTING writes to the knowledge base."""

    def __init__(self, document_id: int, user_id: str):
        self.document_id = document_id
        self.user_id = user_id
        self.states: List[IngestionState] = []
        self.monitor = StageMonitor(f"user {user_id} / document {document_id}")

    @property
    def state(self) -> Optional[IngestionState]:
        return self.states[-1] if self.states else None

    def advance(self, state: IngestionState) -> None:
        self.states.append(state)
        self.monitor.enter(state.value)

    def fail(self) -> None:
        self.states.append(IngestionState.FAILED)
        self.monitor.finish()

class IngestionOrchestrator:
    """Coordinates analysis, chunking, embedding and persistence of a document."""

    def __init__(
        self,
        knowledge_base: KnowledgeBase,
        storage: LocalAssetStorage,
        page_analyzer: PageAnalyzer,
        chunker: Chunker,
        embedding_generator: EmbeddingGenerator,
        image_processor: ImageProcessor,
        fallback_extractor: FallbackExtractor,
    ):
        self.knowledge_base = knowledge_base
        self.storage = storage
        self.page_analyzer = page_analyzer
        self.chunker = chunker
        self.embedding_generator = embedding_generator
        self.image_processor = image_processor
        self.fallback_extractor = fallback_extractor

    @classmethod
    def from_config(
        cls,
        knowledge_base: KnowledgeBase,
        storage: LocalAssetStorage,
        config: ProcessorConfig,
        prompts: Optional[PromptConfig] = None,
    ) -> "IngestionOrchestrator":
        config.require_api_key()
        prompts = prompts or PromptConfig()
        embedding_generator = EmbeddingGenerator(
            get_embeddings(config.embedding_config),
            config.embedding_config,
            config.rate_limit_config,
        )
        vision = config.vision_config
        return cls(
            knowledge_base=knowledge_base,
            storage=storage,
            page_analyzer=PageAnalyzer(get_vision_model(vision, vision.page_max_tokens), vision, prompts),
            chunker=Chunker(config.chunking_config),
            embedding_generator=embedding_generator,
            image_processor=ImageProcessor(
                get_vision_model(vision, vision.caption_max_tokens),
                embedding_generator,
                storage,
                vision,
                prompts,
            ),
            fallback_extractor=FallbackExtractor(get_openai_client(), config.extraction_config, prompts),
        )

    async def _load_document(self, document_id: int, user_id: str) -> DocumentRecord:
        document = await self.knowledge_base.get_document(user_id)
        if document is None or document.id != document_id:
            raise DocumentNotFoundError(f"Document {document_id} not found for user {user_id}")
        return document

    async def _analyze(self, document: DocumentRecord, ingestion_input: IngestionInput):
        """Return ``(pages, total_pages, method, summary)`` for the selected strategy."""
        if ingestion_input.has_page_images:
            logger.info(f"Vision path: {len(ingestion_input.page_images)} page images")
            pages = await self.page_analyzer.analyze_pages(ingestion_input.page_images)
            total_pages = max(
                len(ingestion_input.page_images),
                max(p.page_number for p in ingestion_input.page_images),
            )
            return pages, total_pages, VISION_METHOD, None

        logger.info(f"Fallback path: extracting text from {document.file_path}")
        pdf_bytes = await self.storage.read_document(document.file_path)
        extraction = await self.fallback_extractor.extract(
            pdf_bytes, document.original_filename or "document.pdf"
        )
        return extraction.pages, extraction.total_pages, FALLBACK_METHOD, extraction.summary

    async def _process_images(
        self, ingestion_input: IngestionInput, context: DocumentContext
    ) -> List[ProcessedImage]:
        await self.storage.delete_images(context.user_id)
        if not ingestion_input.embedded_images:
            return []
        return await self.image_processor.process_embedded_images(
            ingestion_input.embedded_images, context
        )

    async def ingest(
        self,
        document_id: int,
        user_id: str,
        ingestion_input: Optional[IngestionInput] = None,
    ) -> IngestionResult:
        """
        Rebuild the user's knowledge base from ``ingestion_input``.

        Page images select the vision path; otherwise the stored PDF goes
        through fallback extraction. Nothing is written until every embedding
        has been computed, and prior chunks/images are replaced in the same
        transaction that marks the document processed. On any failure the
        document stays unprocessed and the exception propagates.
        """
        InputValidator.validate_ingest_request(document_id, user_id)
        ingestion_input = ingestion_input or IngestionInput()
        run = IngestionRun(document_id, user_id)
        run.advance(IngestionState.RECEIVED)

        try:
            document = await self._load_document(document_id, user_id)
            if not await self.knowledge_base.mark_unprocessed(user_id, document_id):
                raise DocumentNotFoundError(f"Document {document_id} not found for user {user_id}")

            run.advance(IngestionState.ANALYZING)
            pages, total_pages, method, summary = await self._analyze(document, ingestion_input)

            run.advance(IngestionState.CHUNKING)
            chunks = self.chunker.create_chunks(pages)
            if not chunks:
                raise EmptyDocumentError("No text content extracted from PDF")

            run.advance(IngestionState.EMBEDDING)
            chunk_embeddings = await self.embedding_generator.embed_batch([c.content for c in chunks])
            images = await self._process_images(ingestion_input, DocumentContext(user_id, document_id))

            run.advance(IngestionState.PERSISTING)
            stored = await self.knowledge_base.replace_contents(
                user_id,
                document_id,
                KnowledgeBaseContents(
                    chunks=chunks,
                    chunk_embeddings=chunk_embeddings,
                    images=images,
                    total_pages=total_pages,
                    processing_method=method,
                    summary=summary,
                ),
            )
            if not stored:
                raise DocumentNotFoundError(f"Document {document_id} was superseded during ingestion")

            run.advance(IngestionState.PROCESSED)
            run.monitor.finish()
        except Exception as e:
            run.fail()
            logger.error(
                f"Ingestion of document {document_id} for user {user_id} failed "
                f"after {run.states[-2].value}: {str(e)}"
            )
            raise

        stats = run.monitor.get_statistics()
        logger.info(
            f"Ingested document {document_id} for user {user_id}: {len(chunks)} chunks, "
            f"{len(images)} images, {total_pages} pages via {method} "
            f"in {stats['total_duration']:.2f}s"
        )
        return IngestionResult(
            document_id=document_id,
            chunks_count=len(chunks),
            images_count=len(images),
            total_pages=total_pages,
            processing_method=method,
            summary=summary,
            states=[state.value for state in run.states],
        )
