"""
In-flight records passed between pipeline stages.

Page analyses are parsed from model output, so they are pydantic models with
a strict shape; everything produced by our own code is a plain dataclass.
"""

import base64
from dataclasses import dataclass, field
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..utils.text import split_data_url

class Diagram(BaseModel):
    """A diagram or figure detected on a page."""
    model_config = ConfigDict(extra="ignore")

    description: str = Field("", description="What the diagram shows")
    position: str = Field("", description="Where on the page it appears")
    type: str = Field("other", description="Diagram kind, e.g. wiring or flowchart")
    elements: List[str] = Field(default_factory=list, description="Named parts or labels")

    @field_validator("description", "position", "type", mode="before")
    @classmethod
    def _none_to_default(cls, value):
        return "" if value is None else value

    @field_validator("elements", mode="before")
    @classmethod
    def _coerce_elements(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return [str(item) for item in value]

class TableData(BaseModel):
    """A table transcribed from a page."""
    model_config = ConfigDict(extra="ignore")

    title: str = ""
    content: str = Field(..., description="Rows separated by newlines")

    @field_validator("title", mode="before")
    @classmethod
    def _title_none(cls, value):
        return "" if value is None else value

    @field_validator("content", mode="before")
    @classmethod
    def _rows_to_text(cls, value: Union[str, list, None]):
        if value is None:
            return ""
        if isinstance(value, list):
            rows = []
            for row in value:
                if isinstance(row, (list, tuple)):
                    rows.append(" | ".join(str(cell) for cell in row))
                elif isinstance(row, dict):
                    rows.append(" | ".join(f"{k}: {v}" for k, v in row.items()))
                else:
                    rows.append(str(row))
            return "\n".join(rows)
        return value

class PageAnalysis(BaseModel):
    """Structured content extracted from one page."""
    model_config = ConfigDict(extra="ignore")

    page_number: int = Field(..., ge=1)
    text_content: str = ""
    diagrams: List[Diagram] = Field(default_factory=list)
    tables: List[TableData] = Field(default_factory=list)
    key_elements: List[str] = Field(default_factory=list)

    @field_validator("text_content", mode="before")
    @classmethod
    def _text_none(cls, value):
        return "" if value is None else value

    @field_validator("diagrams", "tables", "key_elements", mode="before")
    @classmethod
    def _list_none(cls, value):
        return [] if value is None else value

    @classmethod
    def empty(cls, page_number: int) -> "PageAnalysis":
        return cls(page_number=page_number, text_content="")

    @property
    def is_empty(self) -> bool:
        return not self.text_content.strip() and not self.diagrams and not self.tables

@dataclass
class PageImage:
    """A rendered page, base64 encoded."""
    page_number: int
    image_base64: str
    media_type: str = "image/jpeg"

    def __post_init__(self):
        media_type, payload = split_data_url(self.image_base64, self.media_type)
        self.media_type = media_type
        self.image_base64 = payload

    @property
    def data_url(self) -> str:
        return f"data:{self.media_type};base64,{self.image_base64}"

@dataclass
class EmbeddedImage:
    """A raster image embedded in the PDF."""
    page_number: int
    index: int
    data: bytes
    width: Optional[int] = None
    height: Optional[int] = None
    media_type: str = "image/png"

    @property
    def extension(self) -> str:
        subtype = self.media_type.split("/")[-1].lower()
        return "jpg" if subtype == "jpeg" else subtype

    @property
    def data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("utf-8")
        return f"data:{self.media_type};base64,{encoded}"

@dataclass
class ChunkData:
    """A chunk ready to be embedded."""
    content: str
    page_number: int
    chunk_index: int
    has_diagram: bool = False
    diagram_description: Optional[str] = None

@dataclass
class DocumentContext:
    """Identifies where processed assets belong."""
    user_id: str
    document_id: int

@dataclass
class ProcessedImage:
    """A captioned, stored image with its caption embedding."""
    page_number: int
    index: int
    image_url: str
    caption: str
    image_type: str
    width: int
    height: int
    embedding: List[float] = field(default_factory=list)

@dataclass
class RetrievedChunk:
    id: int
    content: str
    page_number: int
    has_diagram: bool
    diagram_description: Optional[str]
    similarity: float

@dataclass
class RetrievedImage:
    id: int
    image_url: str
    caption: str
    image_type: str
    page_number: int
    similarity: float

@dataclass
class RetrievalResult:
    chunks: List[RetrievedChunk] = field(default_factory=list)
    images: List[RetrievedImage] = field(default_factory=list)

@dataclass
class IngestionInput:
    """What the caller supplied for an ingestion run."""
    page_images: List[PageImage] = field(default_factory=list)
    embedded_images: List[EmbeddedImage] = field(default_factory=list)

    @property
    def has_page_images(self) -> bool:
        return bool(self.page_images)

@dataclass
class IngestionResult:
    document_id: int
    chunks_count: int
    images_count: int
    total_pages: int
    processing_method: str
    summary: Optional[str] = None
    states: List[str] = field(default_factory=list)

@dataclass
class ResolvedImage:
    """An image attached to an answer."""
    url: str
    caption: str
    page_number: int

@dataclass
class Answer:
    steps: List[str]
    images: List[ResolvedImage]
    raw_response: str
