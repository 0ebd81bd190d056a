"""
Chat model factories and helpers for multimodal messages.
"""

import os
from typing import Any, List

from dotenv import load_dotenv
from langchain_core.messages import HumanMessage
from langchain_openai import ChatOpenAI
from openai import AsyncOpenAI

from ..config.chat import ChatConfig
from ..config.processor import VisionConfig

load_dotenv()

def get_chat_model(config: ChatConfig) -> ChatOpenAI:
    """Chat model used to compose grounded answers."""
    return ChatOpenAI(
        model=config.model,
        temperature=config.temperature,
        max_tokens=config.max_tokens,
        api_key=os.getenv("OPENAI_API_KEY"),
    )

def get_vision_model(config: VisionConfig, max_tokens: int) -> ChatOpenAI:
    """Vision-capable model used for page analysis and captions."""
    return ChatOpenAI(
        model=config.model,
        temperature=0,
        max_tokens=max_tokens,
        api_key=os.getenv("OPENAI_API_KEY"),
    )

def image_message(prompt: str, data_url: str, detail: str = "auto") -> HumanMessage:
    """Build a user message carrying a text prompt and one image."""
    return HumanMessage(content=[
        {"type": "text", "text": prompt},
        {"type": "image_url", "image_url": {"url": data_url, "detail": detail}},
    ])

def message_text(message: Any) -> str:
    """Flatten the content of a chat model response into plain text."""
    content = getattr(message, "content", message)
    if isinstance(content, str):
        return content
    parts: List[str] = []
    for part in content or []:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(part.get("text", ""))
    return "".join(parts)

def get_openai_client() -> AsyncOpenAI:
    """Raw OpenAI client for the file-based extraction job."""
    return AsyncOpenAI(api_key=os.getenv("OPENAI_API_KEY"))
