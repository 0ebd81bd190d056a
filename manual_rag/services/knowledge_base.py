"""
Per-user knowledge base: documents, chunks and images.

Every operation takes the owning ``user_id`` and filters on it, so one user's
rows can never be read or replaced through another user's call.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
from sqlalchemy import delete, func, insert, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert

from ..models.analysis import ChunkData, ProcessedImage, RetrievedChunk, RetrievedImage
from ..models.documents import DocumentChunk, DocumentImage, DocumentModel
from ..utils.errors import DatabaseError, handle_exceptions
from ..utils.text import format_embedding_vector, sanitize_text

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_CAPTION = "Technical image from the document"

@dataclass
class DocumentRecord:
    id: int
    user_id: str
    file_path: str
    original_filename: Optional[str] = None
    total_pages: Optional[int] = None
    processed: bool = False
    processing_method: Optional[str] = None
    summary: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, model: DocumentModel) -> "DocumentRecord":
        return cls(
            id=model.id,
            user_id=model.user_id,
            file_path=model.file_path,
            original_filename=model.original_filename,
            total_pages=model.total_pages,
            processed=bool(model.processed),
            processing_method=model.processing_method,
            summary=model.summary,
            created_at=model.created_at,
        )

@dataclass
class KnowledgeBaseContents:
    """Everything one ingestion run writes for a user."""
    chunks: Sequence[ChunkData]
    chunk_embeddings: Sequence[Sequence[float]]
    images: Sequence[ProcessedImage]
    total_pages: int
    processing_method: str
    summary: Optional[str] = None

    def __post_init__(self):
        if len(self.chunks) != len(self.chunk_embeddings):
            raise ValueError(
                f"{len(self.chunks)} chunks but {len(self.chunk_embeddings)} embeddings"
            )

class KnowledgeBase(ABC):
    """Storage interface for the per-user knowledge base."""

    @abstractmethod
    async def upsert_document(
        self, user_id: str, file_path: str, original_filename: Optional[str] = None
    ) -> DocumentRecord:
        """Create the user's document, superseding any previous one (unprocessed)."""

    @abstractmethod
    async def get_document(self, user_id: str) -> Optional[DocumentRecord]:
        """Return the user's document, if any."""

    @abstractmethod
    async def mark_unprocessed(self, user_id: str, document_id: int) -> bool:
        """Flag the document as not ready. Returns False if it does not exist."""

    @abstractmethod
    async def replace_contents(
        self, user_id: str, document_id: int, contents: KnowledgeBaseContents
    ) -> bool:
        """
        Atomically delete all chunks/images of the user, write ``contents`` and
        mark the document processed. Returns False (writing nothing) if the
        document does not belong to the user.
        """

    @abstractmethod
    async def match_chunks(
        self, query_embedding: Sequence[float], threshold: float, limit: int, user_id: str
    ) -> List[RetrievedChunk]:
        """Chunks with cosine similarity > threshold, most similar first."""

    @abstractmethod
    async def match_images(
        self, query_embedding: Sequence[float], threshold: float, limit: int, user_id: str
    ) -> List[RetrievedImage]:
        """Images with cosine similarity > threshold, most similar first."""

    @abstractmethod
    async def count_contents(self, user_id: str) -> Tuple[int, int]:
        """Return ``(chunks, images)`` stored for the user."""

def _chunk_row(user_id: str, document_id: int, chunk: ChunkData, embedding) -> Dict:
    return {
        "user_id": user_id,
        "document_id": document_id,
        "content": sanitize_text(chunk.content),
        "page_number": chunk.page_number,
        "chunk_index": chunk.chunk_index,
        "has_diagram": chunk.has_diagram,
        "diagram_description": chunk.diagram_description,
        "embedding": list(embedding),
    }

def _image_row(user_id: str, document_id: int, image: ProcessedImage) -> Dict:
    return {
        "user_id": user_id,
        "document_id": document_id,
        "page_number": image.page_number,
        "image_url": image.image_url,
        "caption": image.caption,
        "image_type": image.image_type,
        "width": image.width,
        "height": image.height,
        "embedding": list(image.embedding) if image.embedding else None,
    }

class PostgresKnowledgeBase(KnowledgeBase):
    """Knowledge base on PostgreSQL with pgvector similarity search."""

    MATCH_CHUNKS_SQL = text("""
        SELECT
            dc.id,
            dc.content,
            dc.page_number,
            dc.has_diagram,
            dc.diagram_description,
            1 - (dc.embedding <=> CAST(:embedding AS vector)) AS similarity
        FROM document_chunks dc
        WHERE dc.user_id = :user_id
          AND dc.embedding IS NOT NULL
          AND 1 - (dc.embedding <=> CAST(:embedding AS vector)) > :threshold
        ORDER BY similarity DESC
        LIMIT :limit
    """)

    MATCH_IMAGES_SQL = text("""
        SELECT
            di.id,
            di.image_url,
            COALESCE(di.caption, :default_caption) AS caption,
            di.image_type,
            di.page_number,
            1 - (di.embedding <=> CAST(:embedding AS vector)) AS similarity
        FROM document_images di
        WHERE di.user_id = :user_id
          AND di.embedding IS NOT NULL
          AND 1 - (di.embedding <=> CAST(:embedding AS vector)) > :threshold
        ORDER BY similarity DESC
        LIMIT :limit
    """)

    def __init__(self, session_maker: Callable):
        self.session_maker = session_maker

    @handle_exceptions(DatabaseError, "Failed to register document")
    async def upsert_document(
        self, user_id: str, file_path: str, original_filename: Optional[str] = None
    ) -> DocumentRecord:
        now = datetime.now()
        values = {
            "user_id": user_id,
            "file_path": file_path,
            "original_filename": original_filename,
            "total_pages": None,
            "processed": False,
            "processing_method": None,
            "summary": None,
            "created_at": now,
            "updated_at": now,
        }
        stmt = pg_insert(DocumentModel).values(**values)
        stmt = stmt.on_conflict_do_update(
            constraint="uq_documents_user_id",
            set_={k: v for k, v in values.items() if k != "user_id"},
        ).returning(DocumentModel.id)

        async with self.session_maker() as session:
            async with session.begin():
                document_id = (await session.execute(stmt)).scalar_one()
        logger.info(f"Registered document {document_id} for user {user_id}")
        return DocumentRecord(id=document_id, **{
            k: v for k, v in values.items() if k not in ("updated_at",)
        })

    @handle_exceptions(DatabaseError, "Failed to load document")
    async def get_document(self, user_id: str) -> Optional[DocumentRecord]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(DocumentModel).where(DocumentModel.user_id == user_id)
            )
            model = result.scalar_one_or_none()
            return DocumentRecord.from_model(model) if model else None

    @handle_exceptions(DatabaseError, "Failed to reset document state")
    async def mark_unprocessed(self, user_id: str, document_id: int) -> bool:
        async with self.session_maker() as session:
            async with session.begin():
                result = await session.execute(
                    update(DocumentModel)
                    .where(DocumentModel.id == document_id, DocumentModel.user_id == user_id)
                    .values(processed=False)
                )
        return result.rowcount == 1

    @handle_exceptions(DatabaseError, "Failed to persist knowledge base")
    async def replace_contents(
        self, user_id: str, document_id: int, contents: KnowledgeBaseContents
    ) -> bool:
        chunk_rows = [
            _chunk_row(user_id, document_id, chunk, embedding)
            for chunk, embedding in zip(contents.chunks, contents.chunk_embeddings)
        ]
        image_rows = [_image_row(user_id, document_id, image) for image in contents.images]

        async with self.session_maker() as session:
            async with session.begin():
                owner = await session.execute(
                    select(DocumentModel.id)
                    .where(DocumentModel.id == document_id, DocumentModel.user_id == user_id)
                    .with_for_update()
                )
                if owner.scalar_one_or_none() is None:
                    return False

                await session.execute(delete(DocumentChunk).where(DocumentChunk.user_id == user_id))
                await session.execute(delete(DocumentImage).where(DocumentImage.user_id == user_id))

                if chunk_rows:
                    await session.execute(insert(DocumentChunk), chunk_rows)
                if image_rows:
                    await session.execute(insert(DocumentImage), image_rows)

                await session.execute(
                    update(DocumentModel)
                    .where(DocumentModel.id == document_id, DocumentModel.user_id == user_id)
                    .values(
                        processed=True,
                        total_pages=contents.total_pages,
                        processing_method=contents.processing_method,
                        summary=contents.summary,
                    )
                )

        logger.info(
            f"Stored {len(chunk_rows)} chunks and {len(image_rows)} images "
            f"for user {user_id} (document {document_id})"
        )
        return True

    @handle_exceptions(DatabaseError, "Chunk similarity search failed")
    async def match_chunks(
        self, query_embedding: Sequence[float], threshold: float, limit: int, user_id: str
    ) -> List[RetrievedChunk]:
        if limit <= 0:
            return []
        async with self.session_maker() as session:
            result = await session.execute(
                self.MATCH_CHUNKS_SQL,
                {
                    "embedding": format_embedding_vector(query_embedding),
                    "threshold": threshold,
                    "limit": limit,
                    "user_id": user_id,
                },
            )
            return [
                RetrievedChunk(
                    id=row.id,
                    content=row.content,
                    page_number=row.page_number,
                    has_diagram=row.has_diagram,
                    diagram_description=row.diagram_description,
                    similarity=float(row.similarity),
                )
                for row in result
            ]

    @handle_exceptions(DatabaseError, "Image similarity search failed")
    async def match_images(
        self, query_embedding: Sequence[float], threshold: float, limit: int, user_id: str
    ) -> List[RetrievedImage]:
        if limit <= 0:
            return []
        async with self.session_maker() as session:
            result = await session.execute(
                self.MATCH_IMAGES_SQL,
                {
                    "embedding": format_embedding_vector(query_embedding),
                    "threshold": threshold,
                    "limit": limit,
                    "user_id": user_id,
                    "default_caption": DEFAULT_IMAGE_CAPTION,
                },
            )
            return [
                RetrievedImage(
                    id=row.id,
                    image_url=row.image_url,
                    caption=row.caption,
                    image_type=row.image_type,
                    page_number=row.page_number,
                    similarity=float(row.similarity),
                )
                for row in result
            ]

    @handle_exceptions(DatabaseError, "Failed to count knowledge base rows")
    async def count_contents(self, user_id: str) -> Tuple[int, int]:
        async with self.session_maker() as session:
            chunks = await session.scalar(
                select(func.count(DocumentChunk.id)).where(DocumentChunk.user_id == user_id)
            )
            images = await session.scalar(
                select(func.count(DocumentImage.id)).where(DocumentImage.user_id == user_id)
            )
        return int(chunks or 0), int(images or 0)

def cosine_similarities(query: Sequence[float], matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of ``query`` against each row of ``matrix`` (0 for zero vectors)."""
    q = np.asarray(query, dtype=np.float32)
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
    dots = matrix @ q
    with np.errstate(divide="ignore", invalid="ignore"):
        sims = np.where(norms > 0, dots / norms, 0.0)
    return sims

def rank_by_similarity(query: Sequence[float], rows: List[Dict], threshold: float, limit: int) -> List[Tuple[Dict, float]]:
    """Rows whose embedding is strictly above ``threshold``, best first, capped at ``limit``."""
    candidates = [row for row in rows if row.get("embedding")]
    if limit <= 0 or not candidates:
        return []
    matrix = np.asarray([row["embedding"] for row in candidates], dtype=np.float32)
    sims = cosine_similarities(query, matrix)
    order = np.argsort(-sims, kind="stable")
    ranked = [(candidates[i], float(sims[i])) for i in order if sims[i] > threshold]
    return ranked[:limit]

class InMemoryKnowledgeBase(KnowledgeBase):
    """Process-local knowledge base with numpy cosine search, for development and tests."""

    def __init__(self):
        self._documents: Dict[str, DocumentRecord] = {}
        self._chunks: Dict[str, List[Dict]] = {}
        self._images: Dict[str, List[Dict]] = {}
        self._next_ids = {"document": 1, "chunk": 1, "image": 1}
        self._lock = asyncio.Lock()

    def _next_id(self, kind: str) -> int:
        value = self._next_ids[kind]
        self._next_ids[kind] += 1
        return value

    async def upsert_document(
        self, user_id: str, file_path: str, original_filename: Optional[str] = None
    ) -> DocumentRecord:
        async with self._lock:
            existing = self._documents.get(user_id)
            record = DocumentRecord(
                id=existing.id if existing else self._next_id("document"),
                user_id=user_id,
                file_path=file_path,
                original_filename=original_filename,
                created_at=datetime.now(),
            )
            self._documents[user_id] = record
            return replace(record)

    async def get_document(self, user_id: str) -> Optional[DocumentRecord]:
        record = self._documents.get(user_id)
        return replace(record) if record else None

    async def mark_unprocessed(self, user_id: str, document_id: int) -> bool:
        async with self._lock:
            record = self._documents.get(user_id)
            if record is None or record.id != document_id:
                return False
            record.processed = False
            return True

    async def replace_contents(
        self, user_id: str, document_id: int, contents: KnowledgeBaseContents
    ) -> bool:
        async with self._lock:
            record = self._documents.get(user_id)
            if record is None or record.id != document_id:
                return False

            chunk_rows = []
            for chunk, embedding in zip(contents.chunks, contents.chunk_embeddings):
                row = _chunk_row(user_id, document_id, chunk, embedding)
                row["id"] = self._next_id("chunk")
                chunk_rows.append(row)
            image_rows = []
            for image in contents.images:
                row = _image_row(user_id, document_id, image)
                row["id"] = self._next_id("image")
                image_rows.append(row)

            self._chunks[user_id] = chunk_rows
            self._images[user_id] = image_rows
            record.processed = True
            record.total_pages = contents.total_pages
            record.processing_method = contents.processing_method
            record.summary = contents.summary
            return True

    async def match_chunks(
        self, query_embedding: Sequence[float], threshold: float, limit: int, user_id: str
    ) -> List[RetrievedChunk]:
        ranked = rank_by_similarity(query_embedding, self._chunks.get(user_id, []), threshold, limit)
        return [
            RetrievedChunk(
                id=row["id"],
                content=row["content"],
                page_number=row["page_number"],
                has_diagram=row["has_diagram"],
                diagram_description=row["diagram_description"],
                similarity=similarity,
            )
            for row, similarity in ranked
        ]

    async def match_images(
        self, query_embedding: Sequence[float], threshold: float, limit: int, user_id: str
    ) -> List[RetrievedImage]:
        ranked = rank_by_similarity(query_embedding, self._images.get(user_id, []), threshold, limit)
        return [
            RetrievedImage(
                id=row["id"],
                image_url=row["image_url"],
                caption=row["caption"] or DEFAULT_IMAGE_CAPTION,
                image_type=row["image_type"],
                page_number=row["page_number"],
                similarity=similarity,
            )
            for row, similarity in ranked
        ]

    async def count_contents(self, user_id: str) -> Tuple[int, int]:
        return len(self._chunks.get(user_id, [])), len(self._images.get(user_id, []))
