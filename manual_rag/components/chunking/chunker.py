"""
Page-aware chunking of analyzed pages.

Prose is packed by paragraph when the page has paragraph structure and cut
into overlapping character windows otherwise. Tables always become their own
chunks. Diagram association is page-level: every chunk of a page with
diagrams carries the page's diagram descriptions.
"""

import logging
import re
from typing import Iterable, List, Optional

from ...config.processor import ChunkingConfig
from ...models.analysis import ChunkData, PageAnalysis

logger = logging.getLogger(__name__)

PARAGRAPH_BREAK = re.compile(r"\n\s*\n")

def split_paragraphs(text: str) -> List[str]:
    """Blank-line separated blocks, stripped, empties dropped."""
    return [p.strip() for p in PARAGRAPH_BREAK.split(text or "") if p.strip()]

def sliding_windows(text: str, size: int, overlap: int, min_length: int) -> List[str]:
    """
    Fixed-size windows advancing by ``size - overlap`` characters.

    Windows after the first that strip down to fewer than ``min_length``
    characters are discarded. Stops at the window that reaches the end.
    """
    step = size - overlap
    pieces: List[str] = []
    for start in range(0, len(text), step):
        piece = text[start:start + size].strip()
        if piece and (not pieces or len(piece) >= min_length):
            pieces.append(piece)
        if start + size >= len(text):
            break
    return pieces

def pack_paragraphs(paragraphs: List[str], size: int, overlap: int) -> List[str]:
    """
    Greedily pack paragraphs into chunks of at most ``size`` characters.

    When the next paragraph does not fit, the chunk is closed and the next one
    starts with the last ``overlap`` characters of the closed chunk.
    """
    chunks: List[str] = []
    current = ""
    for paragraph in paragraphs:
        if current and len(current) + 2 + len(paragraph) > size:
            chunks.append(current)
            tail = current[-overlap:].strip()
            current = f"{tail} {paragraph}" if tail else paragraph
        else:
            current = f"{current}\n\n{paragraph}" if current else paragraph
    if current:
        chunks.append(current)
    return chunks

def describe_diagrams(page: PageAnalysis) -> Optional[str]:
    descriptions = [d.description.strip() for d in page.diagrams if d.description.strip()]
    return "; ".join(descriptions) if descriptions else None

def split_page_text(text: str, size: int, overlap: int, min_length: int) -> List[str]:
    """Split one page's prose into chunk texts."""
    text = (text or "").strip()
    if not text:
        return []

    paragraphs = split_paragraphs(text)
    substantial = [p for p in paragraphs if len(p) > min_length]
    if len(substantial) < 2:
        return sliding_windows(text, size, overlap, min_length)

    # Oversized paragraphs are windowed first so packing never exceeds size + overlap
    units: List[str] = []
    for paragraph in paragraphs:
        if len(paragraph) > size:
            units.extend(sliding_windows(paragraph, size, overlap, min_length))
        else:
            units.append(paragraph)
    return pack_paragraphs(units, size, overlap)

def table_chunk_texts(title: str, content: str, size: int, overlap: int, min_length: int) -> List[str]:
    """
    One chunk per table, or several when the table is longer than ``size``.

    Every piece starts with the ``[TABLE: title]`` marker and, unless the
    title alone is near ``size``, stays within ``size`` characters.
    """
    marker = f"[TABLE: {title.strip() or 'Untitled'}]\n"
    content = content.strip()
    if len(marker) + len(content) <= size:
        return [marker + content]

    window = max(size - len(marker), overlap + 1)
    return [marker + piece for piece in sliding_windows(content, window, overlap, min_length)]

def create_chunks(
    page_analyses: Iterable[PageAnalysis],
    chunk_size: int = 800,
    chunk_overlap: int = 100,
    min_chunk_length: int = 50,
) -> List[ChunkData]:
    """
    Turn page analyses into ordered chunks.

    Pages are processed in page order; ``chunk_index`` increases by one for
    every emitted chunk across the whole document, starting at 0.
    """
    if chunk_overlap >= chunk_size:
        raise ValueError("chunk_overlap must be smaller than chunk_size")

    chunks: List[ChunkData] = []
    for page in sorted(page_analyses, key=lambda p: p.page_number):
        has_diagram = bool(page.diagrams)
        diagram_description = describe_diagrams(page)

        texts = split_page_text(page.text_content, chunk_size, chunk_overlap, min_chunk_length)
        for table in page.tables:
            if table.content.strip():
                texts.extend(table_chunk_texts(
                    table.title, table.content, chunk_size, chunk_overlap, min_chunk_length
                ))

        for content in texts:
            chunks.append(ChunkData(
                content=content,
                page_number=page.page_number,
                chunk_index=len(chunks),
                has_diagram=has_diagram,
                diagram_description=diagram_description,
            ))

    logger.info(f"Created {len(chunks)} chunks from {len({c.page_number for c in chunks})} pages")
    return chunks

class Chunker:
    """Chunker bound to a chunking configuration."""

    def __init__(self, config: Optional[ChunkingConfig] = None):
        self.config = config or ChunkingConfig()

    def create_chunks(self, page_analyses: Iterable[PageAnalysis]) -> List[ChunkData]:
        return create_chunks(
            page_analyses,
            chunk_size=self.config.chunk_size,
            chunk_overlap=self.config.chunk_overlap,
            min_chunk_length=self.config.min_chunk_length,
        )
