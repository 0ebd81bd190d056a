"""
Document API Router

Endpoints for a user's single manual:
- Upload the PDF (replaces any previous one)
- Process it into the user's knowledge base
- Report its processing status
"""

import base64
import binascii
import logging
from functools import lru_cache
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..components.ingestion.orchestrator import IngestionOrchestrator
from ..config.database import db_config
from ..config.processor import processor_config
from ..models.analysis import EmbeddedImage, IngestionInput, PageImage
from ..services.database import create_async_db_engine, create_async_session_maker
from ..services.knowledge_base import InMemoryKnowledgeBase, KnowledgeBase, PostgresKnowledgeBase
from ..services.storage import LocalAssetStorage, document_key
from ..utils.errors import DocumentNotFoundError, InputValidationError
from ..utils.text import clean_filename, split_data_url
from ..utils.validation import validate_required_text

logger = logging.getLogger(__name__)

@lru_cache(maxsize=1)
def _session_maker():
    return create_async_session_maker(create_async_db_engine(db_config))

@lru_cache(maxsize=1)
def _memory_knowledge_base() -> InMemoryKnowledgeBase:
    return InMemoryKnowledgeBase()

def get_knowledge_base() -> KnowledgeBase:
    """Knowledge base backend selected by VECTOR_STORE_TYPE."""
    if db_config.vector_store_type == "memory":
        return _memory_knowledge_base()
    return PostgresKnowledgeBase(_session_maker())

def get_storage() -> LocalAssetStorage:
    return LocalAssetStorage.from_config(processor_config.storage_config)

def get_orchestrator(
    knowledge_base: KnowledgeBase = Depends(get_knowledge_base),
    storage: LocalAssetStorage = Depends(get_storage),
) -> IngestionOrchestrator:
    return IngestionOrchestrator.from_config(knowledge_base, storage, processor_config)

# Pydantic models for request/response schemas
class UploadResponse(BaseModel):
    document_id: int
    user_id: str
    file_path: str
    original_filename: Optional[str] = None

class PageImagePayload(BaseModel):
    """A rendered page; ``image`` is base64 or a data URL."""
    page_number: int = Field(..., ge=1)
    image: str = Field(..., min_length=1)

class EmbeddedImagePayload(BaseModel):
    """An image embedded in the PDF; ``data`` is base64 or a data URL."""
    page_number: int = Field(..., ge=1)
    index: int = Field(..., ge=1)
    data: str = Field(..., min_length=1)
    width: Optional[int] = None
    height: Optional[int] = None
    media_type: str = "image/png"

class ProcessRequest(BaseModel):
    document_id: int
    user_id: str
    page_images: List[PageImagePayload] = Field(default_factory=list)
    embedded_images: List[EmbeddedImagePayload] = Field(default_factory=list)

class ProcessResponse(BaseModel):
    success: bool
    chunks_count: int
    images_count: int
    total_pages: int
    processing_method: str
    summary: Optional[str] = None

class DocumentStatus(BaseModel):
    document_id: int
    user_id: str
    original_filename: Optional[str] = None
    processed: bool
    total_pages: Optional[int] = None
    processing_method: Optional[str] = None
    summary: Optional[str] = None
    chunks_count: int = 0
    images_count: int = 0

def _decode_embedded_image(payload: EmbeddedImagePayload) -> EmbeddedImage:
    media_type, encoded = split_data_url(payload.data, payload.media_type)
    try:
        data = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        raise InputValidationError(
            f"Embedded image {payload.index} on page {payload.page_number} is not valid base64"
        )
    return EmbeddedImage(
        page_number=payload.page_number,
        index=payload.index,
        data=data,
        width=payload.width,
        height=payload.height,
        media_type=media_type,
    )

def to_ingestion_input(request: ProcessRequest) -> IngestionInput:
    return IngestionInput(
        page_images=[
            PageImage(page_number=page.page_number, image_base64=page.image)
            for page in request.page_images
        ],
        embedded_images=[_decode_embedded_image(image) for image in request.embedded_images],
    )

# Create router
router = APIRouter(
    prefix="/documents",
    tags=["documents"],
    responses={404: {"description": "Not found"}},
)

@router.post("/upload", response_model=UploadResponse)
async def upload_document(
    user_id: str = Form(...),
    file: UploadFile = File(...),
    knowledge_base: KnowledgeBase = Depends(get_knowledge_base),
    storage: LocalAssetStorage = Depends(get_storage),
):
    """
    Upload a user's PDF manual.

    The file is stored as the user's only document and the document row is
    reset to unprocessed; call ``/process`` afterwards.
    """
    try:
        user_id = validate_required_text(user_id, "user_id")
    except InputValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    filename = file.filename or "document.pdf"
    if file.content_type != "application/pdf" and not filename.lower().endswith(".pdf"):
        raise HTTPException(status_code=400, detail="Only PDF files are supported")

    content = await file.read()
    max_bytes = processor_config.storage_config.max_upload_mb * 1024 * 1024
    if len(content) > max_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum size is {processor_config.storage_config.max_upload_mb} MB",
        )
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    key = document_key(user_id)
    try:
        await storage.save_document(key, content)
    except Exception as e:
        logger.error(f"Error saving upload for user {user_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Error saving file: {str(e)}")

    document = await knowledge_base.upsert_document(user_id, key, clean_filename(filename))
    logger.info(f"Uploaded {filename} ({len(content)} bytes) for user {user_id}")
    return UploadResponse(
        document_id=document.id,
        user_id=user_id,
        file_path=key,
        original_filename=document.original_filename,
    )

@router.post("/process", response_model=ProcessResponse)
async def process_document(
    request: ProcessRequest,
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
):
    """
    Build the user's knowledge base from their uploaded document.

    With ``page_images`` the pages are analysed by the vision model; without
    them the stored PDF goes through fallback text extraction.
    """
    try:
        ingestion_input = to_ingestion_input(request)
        result = await orchestrator.ingest(request.document_id, request.user_id, ingestion_input)
    except InputValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except DocumentNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Processing failed for document {request.document_id}: {str(e)}")
        return JSONResponse(status_code=500, content={"success": False, "error": str(e)})

    return ProcessResponse(
        success=True,
        chunks_count=result.chunks_count,
        images_count=result.images_count,
        total_pages=result.total_pages,
        processing_method=result.processing_method,
        summary=result.summary,
    )

@router.get("/{user_id}", response_model=DocumentStatus)
async def get_document_status(
    user_id: str,
    knowledge_base: KnowledgeBase = Depends(get_knowledge_base),
):
    """Processing status of the user's document."""
    document = await knowledge_base.get_document(user_id)
    if document is None:
        raise HTTPException(status_code=404, detail=f"No document for user {user_id}")

    chunks_count, images_count = await knowledge_base.count_contents(user_id)
    return DocumentStatus(
        document_id=document.id,
        user_id=document.user_id,
        original_filename=document.original_filename,
        processed=document.processed,
        total_pages=document.total_pages,
        processing_method=document.processing_method,
        summary=document.summary,
        chunks_count=chunks_count,
        images_count=images_count,
    )
