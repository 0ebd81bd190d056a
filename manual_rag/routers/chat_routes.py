"""
Chat API Router

Answers a user's question from their own uploaded manual.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..components.chat.composer import AnswerComposer
from ..config.chat import chat_config, prompt_config
from ..config.processor import processor_config
from .document_routes import get_knowledge_base
from ..services.knowledge_base import KnowledgeBase
from ..utils.errors import InputValidationError

logger = logging.getLogger(__name__)

def get_composer(knowledge_base: KnowledgeBase = Depends(get_knowledge_base)) -> AnswerComposer:
    return AnswerComposer.from_config(knowledge_base, chat_config, processor_config, prompt_config)

# Pydantic models for request/response schemas
class ChatRequest(BaseModel):
    """Chat request model"""
    message: str = Field(..., description="The question to ask")
    user_id: str = Field(..., description="Owner of the manual to search")

class ChatImage(BaseModel):
    url: str
    caption: str
    page_number: Optional[int] = None

class ChatResponse(BaseModel):
    """Chat response model"""
    steps: List[str]
    images: List[ChatImage] = Field(default_factory=list)
    raw_response: str

# Create router
router = APIRouter(
    prefix="/chat",
    tags=["chat"],
)

@router.post("/", response_model=ChatResponse)
async def chat_question(
    chat_request: ChatRequest,
    composer: AnswerComposer = Depends(get_composer),
):
    """
    Answer a question about the user's manual.

    The answer is split into steps and the images it refers to are attached.
    """
    try:
        answer = await composer.answer(chat_request.message, chat_request.user_id)
    except InputValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return ChatResponse(
        steps=answer.steps,
        images=[
            ChatImage(url=image.url, caption=image.caption, page_number=image.page_number)
            for image in answer.images
        ],
        raw_response=answer.raw_response,
    )
