"""
PDF rendering and image extraction with PyMuPDF.
"""

import asyncio
import base64
import logging
from typing import List

import fitz

from ...config.processor import StorageConfig
from ...models.analysis import EmbeddedImage, IngestionInput, PageImage
from ...utils.errors import FileLoadError

logger = logging.getLogger(__name__)

def _open(pdf_bytes: bytes) -> fitz.Document:
    try:
        return fitz.open(stream=pdf_bytes, filetype="pdf")
    except Exception as e:
        raise FileLoadError(f"Cannot open PDF: {str(e)}") from e

def count_pages(pdf_bytes: bytes) -> int:
    with _open(pdf_bytes) as doc:
        return doc.page_count

def render_page_images(pdf_bytes: bytes, scale: float = 1.5) -> List[PageImage]:
    """Render every page as a base64 JPEG, numbered from 1."""
    pages = []
    matrix = fitz.Matrix(scale, scale)
    with _open(pdf_bytes) as doc:
        for page in doc:
            pixmap = page.get_pixmap(matrix=matrix, alpha=False)
            encoded = base64.b64encode(pixmap.tobytes("jpeg")).decode("utf-8")
            pages.append(PageImage(page_number=page.number + 1, image_base64=encoded, media_type="image/jpeg"))
    logger.info(f"Rendered {len(pages)} pages at scale {scale}")
    return pages

def extract_embedded_images(pdf_bytes: bytes) -> List[EmbeddedImage]:
    """Raster images embedded in each page, numbered from 1 within the page."""
    images = []
    with _open(pdf_bytes) as doc:
        for page in doc:
            for index, info in enumerate(page.get_images(full=True), start=1):
                xref = info[0]
                try:
                    extracted = doc.extract_image(xref)
                except Exception as e:
                    logger.warning(f"extract_image failed on page {page.number + 1}, xref {xref}: {str(e)}")
                    continue
                if not extracted or not extracted.get("image"):
                    continue
                ext = extracted.get("ext", "png").lower()
                images.append(EmbeddedImage(
                    page_number=page.number + 1,
                    index=index,
                    data=extracted["image"],
                    width=extracted.get("width"),
                    height=extracted.get("height"),
                    media_type="image/jpeg" if ext in ("jpg", "jpeg") else f"image/{ext}",
                ))
    logger.info(f"Extracted {len(images)} embedded images")
    return images

def build_ingestion_input(pdf_bytes: bytes, config: StorageConfig, use_vision: bool = True) -> IngestionInput:
    """
    Prepare the vision-path input for a PDF.

    Pages are only rendered when ``use_vision`` is set and the file is under
    ``max_page_render_mb``; otherwise the run takes the fallback path.
    """
    size_mb = len(pdf_bytes) / (1024 * 1024)
    render = use_vision and size_mb < config.max_page_render_mb
    if use_vision and not render:
        logger.info(f"PDF is {size_mb:.1f} MB, skipping page rendering")

    return IngestionInput(
        page_images=render_page_images(pdf_bytes, config.render_scale) if render else [],
        embedded_images=extract_embedded_images(pdf_bytes),
    )

async def prepare_ingestion_input(pdf_bytes: bytes, config: StorageConfig, use_vision: bool = True) -> IngestionInput:
    """Run ``build_ingestion_input`` off the event loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, build_ingestion_input, pdf_bytes, config, use_vision)
