"""
Shared fakes and fixtures.

The fakes stand in for the OpenAI-backed models so the pipeline can be driven
deterministically: embeddings are bag-of-words count vectors and the chat
model answers from a script.
"""

import base64
import json
import os
import re
import tempfile
from types import SimpleNamespace
from typing import Callable, List, Optional, Union
from unittest.mock import AsyncMock

os.environ["ASSET_DIR"] = tempfile.mkdtemp(prefix="manual_rag_assets_")
os.environ["DOCUMENT_DIR"] = tempfile.mkdtemp(prefix="manual_rag_documents_")
os.environ["VECTOR_STORE_TYPE"] = "memory"
os.environ.setdefault("OPENAI_API_KEY", "test-key")

import pytest
from langchain_core.embeddings import Embeddings
from langchain_core.messages import AIMessage

from manual_rag.components.analysis.fallback import FallbackExtractor
from manual_rag.components.analysis.page_analyzer import PageAnalyzer
from manual_rag.components.chunking.chunker import Chunker
from manual_rag.components.images.processor import ImageProcessor
from manual_rag.components.ingestion.orchestrator import IngestionOrchestrator
from manual_rag.config.processor import ExtractionConfig, RateLimitConfig, VisionConfig
from manual_rag.models.analysis import PageImage
from manual_rag.services.embeddings import EmbeddingGenerator
from manual_rag.services.knowledge_base import InMemoryKnowledgeBase
from manual_rag.services.storage import LocalAssetStorage

WORD = re.compile(r"\w+")

class FakeEmbeddings(Embeddings):
    """Bag-of-words count vectors over a vocabulary grown on first sight."""

    def __init__(self, dimension: int = 512):
        self.dimension = dimension
        self.vocabulary = {}
        self.batches: List[List[str]] = []

    def _vector(self, text: str) -> List[float]:
        vector = [0.0] * self.dimension
        for word in WORD.findall(text.lower()):
            if len(word) < 4:
                continue
            if word not in self.vocabulary:
                self.vocabulary[word] = len(self.vocabulary) % self.dimension
            vector[self.vocabulary[word]] += 1.0
        return vector

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        self.batches.append(list(texts))
        return [self._vector(text) for text in texts]

    def embed_query(self, text: str) -> List[float]:
        return self._vector(text)

    async def aembed_documents(self, texts: List[str]) -> List[List[float]]:
        return self.embed_documents(texts)

    async def aembed_query(self, text: str) -> List[float]:
        return self.embed_query(text)

Response = Union[str, Exception]

class FakeChatModel:
    """
    Scripted stand-in for a chat model.

    ``responses`` is either a list consumed in call order or a callable taking
    the message list. Exceptions are raised instead of returned.
    """

    def __init__(self, responses: Union[List[Response], Callable[[list], Response]] = None):
        self.responses = responses if responses is not None else []
        self.calls: List[list] = []

    async def ainvoke(self, messages, **kwargs):
        self.calls.append(messages)
        if callable(self.responses):
            response = self.responses(messages)
        else:
            response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return AIMessage(content=response)

def image_payload(messages) -> bytes:
    """Decoded image bytes of a single multimodal message."""
    url = messages[0].content[1]["image_url"]["url"]
    return base64.b64decode(url.split(",", 1)[1])

def page_image(page_number: int) -> PageImage:
    encoded = base64.b64encode(f"page-{page_number}".encode()).decode()
    return PageImage(page_number=page_number, image_base64=encoded)

def page_json(text: str, diagrams: Optional[list] = None, tables: Optional[list] = None) -> str:
    return json.dumps({
        "text_content": text,
        "diagrams": diagrams or [],
        "tables": tables or [],
        "key_elements": [],
    })

MANUAL_PAGES = {
    1: page_json(
        "To replace the pump filter, open the front cover and remove the old filter cartridge.",
        diagrams=[{"description": "Exploded view of the pump filter housing", "type": "exploded-view"}],
    ),
    2: page_json(
        "Electrical connections must be made by a qualified electrician only.",
        tables=[{"title": "Fuse ratings", "content": [["Circuit", "Fuse"], ["Pump", "10 A"]]}],
    ),
    3: page_json("Warranty coverage lasts twenty four months from the purchase date."),
}

def manual_page_responder(messages):
    page_number = int(image_payload(messages).decode().split("-")[1])
    return MANUAL_PAGES[page_number]

def make_openai_client(response_text: str, statuses: Optional[List[str]] = None):
    """AsyncOpenAI look-alike for the assistant extraction job."""
    statuses = statuses or ["in_progress", "completed"]
    message = SimpleNamespace(
        role="assistant",
        content=[SimpleNamespace(type="text", text=SimpleNamespace(value=response_text))],
    )
    runs = SimpleNamespace(
        create=AsyncMock(return_value=SimpleNamespace(id="run-1")),
        retrieve=AsyncMock(side_effect=[SimpleNamespace(status=s) for s in statuses]),
    )
    threads = SimpleNamespace(
        create=AsyncMock(return_value=SimpleNamespace(id="thread-1")),
        runs=runs,
        messages=SimpleNamespace(list=AsyncMock(return_value=SimpleNamespace(data=[message]))),
    )
    assistants = SimpleNamespace(
        create=AsyncMock(return_value=SimpleNamespace(id="asst-1")),
        delete=AsyncMock(),
    )
    return SimpleNamespace(
        files=SimpleNamespace(
            create=AsyncMock(return_value=SimpleNamespace(id="file-1")),
            delete=AsyncMock(),
        ),
        beta=SimpleNamespace(assistants=assistants, threads=threads),
    )

@pytest.fixture
def fake_embeddings():
    return FakeEmbeddings()

@pytest.fixture
def embedding_generator(fake_embeddings):
    return EmbeddingGenerator(fake_embeddings, rate_limit_config=RateLimitConfig(max_retries=1))

@pytest.fixture
def knowledge_base():
    return InMemoryKnowledgeBase()

@pytest.fixture
def storage(tmp_path):
    return LocalAssetStorage(str(tmp_path / "assets"), "/assets", str(tmp_path / "documents"))

@pytest.fixture
def make_orchestrator(knowledge_base, storage, embedding_generator):
    """Build an orchestrator over fakes; models can be swapped per test."""

    def build(page_model=None, caption_model=None, client=None, generator=None):
        generator = generator or embedding_generator
        vision = VisionConfig(page_concurrency=2, image_concurrency=2)
        return IngestionOrchestrator(
            knowledge_base=knowledge_base,
            storage=storage,
            page_analyzer=PageAnalyzer(page_model or FakeChatModel(manual_page_responder), vision),
            chunker=Chunker(),
            embedding_generator=generator,
            image_processor=ImageProcessor(
                caption_model or FakeChatModel(lambda messages: "Wiring diagram of the pump motor"),
                generator,
                storage,
                vision,
            ),
            fallback_extractor=FallbackExtractor(
                client or make_openai_client("{}"),
                ExtractionConfig(poll_interval=0, max_poll_attempts=5),
                sleep=AsyncMock(),
            ),
        )

    return build
