"""
Grounded answer composition over the user's knowledge base.
"""

import logging
import re
from typing import Dict, List, Optional, Sequence, Tuple

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from ..images.matcher import ImageMatcher, KeywordImageMatcher
from ...config.chat import ChatConfig, PromptConfig
from ...config.processor import ProcessorConfig
from ...models.analysis import Answer, RetrievedChunk, RetrievedImage
from ...services.embeddings import EmbeddingGenerator, get_embeddings
from ...services.knowledge_base import KnowledgeBase
from ...services.llm import get_chat_model, message_text
from ...services.retriever import Retriever
from ...utils.errors import AnswerCompositionError
from ...utils.text import truncate_text
from ...utils.validation import InputValidator

logger = logging.getLogger(__name__)

NUMBERED_MARKER = re.compile(r"(?:^|\n)\s*\d+[.)]\s+")
NUMBERED_SPLIT = re.compile(r"(?=\n\s*\d+[.)]\s+)")
STEP_MARKER = re.compile(r"Step\s*\d+", re.IGNORECASE)
STEP_SPLIT = re.compile(r"(?=Step\s*\d+)", re.IGNORECASE)
PARAGRAPH_SPLIT = re.compile(r"\n\s*\n+")

def parse_steps(response: str) -> List[str]:
    """
    Split a model answer into steps.

    Two or more numbered markers (``1.``/``2)``) split before each marker;
    otherwise two or more ``Step N`` markers do; otherwise blank-line
    paragraphs do; otherwise the whole text is one step.
    """
    if not response or not response.strip():
        return []

    if len(NUMBERED_MARKER.findall(response)) > 1:
        parts = NUMBERED_SPLIT.split(response)
    elif len(STEP_MARKER.findall(response)) > 1:
        parts = STEP_SPLIT.split(response)
    else:
        parts = PARAGRAPH_SPLIT.split(response)

    steps = [part.strip() for part in parts if part.strip()]
    return steps if len(steps) > 1 else [response.strip()]

def build_chunks_context(chunks: Sequence[RetrievedChunk]) -> str:
    """Chunk texts grouped by page, in order of first appearance."""
    pages: Dict[int, List[str]] = {}
    for chunk in chunks:
        pages.setdefault(chunk.page_number or 0, []).append(chunk.content)
    return "\n\n---\n\n".join(
        f"[Page {page_number}]\n" + "\n\n".join(contents)
        for page_number, contents in pages.items()
    )

def build_diagrams_context(chunks: Sequence[RetrievedChunk]) -> str:
    seen = set()
    lines = []
    for chunk in chunks:
        if not (chunk.has_diagram and chunk.diagram_description):
            continue
        key = (chunk.page_number, chunk.diagram_description)
        if key in seen:
            continue
        seen.add(key)
        lines.append(f"- Page {chunk.page_number}: {chunk.diagram_description}")
    return "\n".join(lines)

def build_images_context(images: Sequence[RetrievedImage]) -> str:
    return "\n".join(
        f"{i}. [Page {image.page_number}] {image.caption} ({image.image_type})"
        for i, image in enumerate(images, start=1)
    )

def build_context(
    chunks: Sequence[RetrievedChunk],
    images: Sequence[RetrievedImage],
    no_context_message: str,
) -> str:
    sections = [f"DOCUMENT INFORMATION:\n{build_chunks_context(chunks) or no_context_message}"]
    diagrams = build_diagrams_context(chunks)
    if diagrams:
        sections.append(f"DIAGRAMS DETECTED ON PAGES:\n{diagrams}")
    images_context = build_images_context(images)
    if images_context:
        sections.append(f"AVAILABLE IMAGES:\n{images_context}")
    return "\n\n".join(sections)

class AnswerComposer:
    """Answers a user's question from their own document only."""

    def __init__(
        self,
        llm: BaseChatModel,
        embedding_generator: EmbeddingGenerator,
        knowledge_base: KnowledgeBase,
        config: Optional[ChatConfig] = None,
        prompts: Optional[PromptConfig] = None,
        image_matcher: Optional[ImageMatcher] = None,
    ):
        self.llm = llm
        self.embedding_generator = embedding_generator
        self.knowledge_base = knowledge_base
        self.retriever = Retriever(knowledge_base)
        self.config = config or ChatConfig()
        self.prompts = prompts or PromptConfig()
        self.image_matcher = image_matcher or KeywordImageMatcher(
            fallback_threshold=self.config.image_fallback_threshold,
            fallback_limit=self.config.image_fallback_limit,
        )

    @classmethod
    def from_config(
        cls,
        knowledge_base: KnowledgeBase,
        config: Optional[ChatConfig] = None,
        processor_config: Optional[ProcessorConfig] = None,
        prompts: Optional[PromptConfig] = None,
    ) -> "AnswerComposer":
        config = config or ChatConfig()
        processor_config = processor_config or ProcessorConfig()
        processor_config.require_api_key()
        embedding_generator = EmbeddingGenerator(
            get_embeddings(processor_config.embedding_config),
            processor_config.embedding_config,
            processor_config.rate_limit_config,
        )
        return cls(get_chat_model(config), embedding_generator, knowledge_base, config, prompts)

    def _messages(self, question: str, context: str) -> list:
        return [
            SystemMessage(content=self.prompts.system_template),
            HumanMessage(content=self.prompts.question_template.format(context=context, question=question)),
        ]

    async def _retrieve(self, question: str, user_id: str) -> Tuple[list, list]:
        query_embedding = await self.embedding_generator.embed_query(question)
        result = await self.retriever.retrieve(
            query_embedding,
            user_id,
            k_chunks=self.config.retriever_k_chunks,
            k_images=self.config.retriever_k_images,
            threshold=self.config.retriever_score_threshold,
        )
        return result.chunks, result.images

    async def answer(self, query: str, user_id: str) -> Answer:
        """
        Answer ``query`` for ``user_id``.

        Invalid input raises InputValidationError. Every other failure is
        logged and turned into an apology answer with no images.
        """
        question, user_id = InputValidator.validate_query(query, user_id)
        logger.info(f"Question from user {user_id}: {truncate_text(question)}")

        try:
            document = await self.knowledge_base.get_document(user_id)
            if document is None or not document.processed:
                message = self.prompts.no_document_message
                return Answer(steps=[message], images=[], raw_response=message)

            chunks, images = await self._retrieve(question, user_id)
            context = build_context(chunks, images, self.prompts.no_context_message)
            logger.info(
                f"Context: {len(chunks)} chunks, {len(images)} images, {len(context)} chars"
            )

            response = await self.llm.ainvoke(self._messages(question, context))
            raw_response = message_text(response)
            if not raw_response.strip():
                raise AnswerCompositionError("Model returned an empty answer")

            steps = parse_steps(raw_response)
            resolved = self.image_matcher.match(raw_response, images)
            logger.info(f"Answer: {len(steps)} steps, {len(resolved)} images")
            return Answer(steps=steps, images=resolved, raw_response=raw_response)
        except Exception as e:
            logger.error(f"Failed to answer question for user {user_id}: {str(e)}", exc_info=True)
            return Answer(steps=[self.prompts.error_message], images=[], raw_response="")
