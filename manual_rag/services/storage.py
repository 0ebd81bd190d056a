"""
Durable storage for uploaded PDFs and extracted image assets.

Image assets live under the public asset root and are served from
``base_url``. Uploaded PDFs live under a separate documents root that is never
exposed over HTTP.
"""

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Optional

import aiofiles
import aiofiles.os

from ..config.processor import StorageConfig
from ..utils.errors import FileLoadError

logger = logging.getLogger(__name__)

def document_key(user_id: str) -> str:
    """Storage key of a user's uploaded PDF, relative to the documents root."""
    return f"{user_id}/document.pdf"

def image_key(user_id: str, document_id: int, page_number: int, index: int, extension: str) -> str:
    """Storage key of an extracted image, relative to the asset root."""
    return f"{user_id}/{document_id}/page_{page_number}_img_{index}.{extension}"

def _resolve(root: Path, key: str) -> Path:
    path = (root / key).resolve()
    if root.resolve() not in path.parents:
        raise FileLoadError(f"Invalid storage key: {key}")
    return path

async def _write(path: Path, data: bytes) -> None:
    await aiofiles.os.makedirs(path.parent, exist_ok=True)
    async with aiofiles.open(path, "wb") as f:
        await f.write(data)
    logger.debug(f"Stored {len(data)} bytes at {path}")

async def _read(path: Path, key: str) -> bytes:
    if not await aiofiles.os.path.exists(path):
        raise FileLoadError(f"Stored file not found: {key}")
    async with aiofiles.open(path, "rb") as f:
        return await f.read()

def _remove_subdirectories(directory: Path) -> int:
    if not directory.is_dir():
        return 0
    removed = 0
    for child in directory.iterdir():
        if child.is_dir():
            shutil.rmtree(child)
            removed += 1
    return removed

class LocalAssetStorage:
    """
    Stores image assets under ``root_dir`` and uploaded PDFs under
    ``document_dir``.

    When ``document_dir`` is not given, PDFs go to a ``documents`` directory
    next to the asset root.
    """

    def __init__(self, root_dir: str, base_url: str = "/assets", document_dir: Optional[str] = None):
        self.root = Path(root_dir).absolute()
        self.base_url = base_url.rstrip("/")
        self.document_root = (
            Path(document_dir).absolute() if document_dir else self.root.parent / "documents"
        )
        if self.document_root == self.root or self.root in self.document_root.parents:
            raise ValueError("document_dir must not be inside the public asset directory")

    @classmethod
    def from_config(cls, config: StorageConfig) -> "LocalAssetStorage":
        return cls(config.asset_dir, config.asset_base_url, config.document_dir)

    def path_for(self, key: str) -> Path:
        return _resolve(self.root, key)

    def document_path(self, key: str) -> Path:
        return _resolve(self.document_root, key)

    def url_for(self, key: str) -> str:
        return f"{self.base_url}/{key}"

    async def save(self, key: str, data: bytes) -> str:
        """Write an image asset under ``key`` and return its public URL."""
        await _write(self.path_for(key), data)
        return self.url_for(key)

    async def read(self, key: str) -> bytes:
        return await _read(self.path_for(key), key)

    async def save_document(self, key: str, data: bytes) -> None:
        """Write an uploaded PDF under ``key``. It gets no public URL."""
        await _write(self.document_path(key), data)

    async def read_document(self, key: str) -> bytes:
        return await _read(self.document_path(key), key)

    async def delete_images(self, user_id: str) -> None:
        """Remove every image asset of a user."""
        user_dir = self.path_for(user_id)
        removed = await asyncio.to_thread(_remove_subdirectories, user_dir)
        if removed:
            logger.info(f"Removed stored images for user {user_id}")
