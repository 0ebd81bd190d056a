"""
Ingestion pipeline configuration settings.
"""

from dataclasses import dataclass, field
from typing import Optional
import os
from dotenv import load_dotenv

load_dotenv()

@dataclass
class RateLimitConfig:
    """Retry and backoff settings for upstream model calls."""
    max_retries: int = int(os.getenv('MAX_RETRIES', 3))
    initial_delay: float = 1.0
    max_delay: float = 30.0

@dataclass
class EmbeddingConfig:
    """Configuration for embedding models."""
    model_name: str = os.getenv('EMBEDDING_MODEL', 'text-embedding-3-small')
    embedding_dimension: int = 1536
    batch_size: int = 20
    max_input_chars: int = 8000

@dataclass
class ChunkingConfig:
    """Configuration for text chunking."""
    chunk_size: int = int(os.getenv('CHUNK_SIZE', 800))
    chunk_overlap: int = int(os.getenv('CHUNK_OVERLAP', 100))
    min_chunk_length: int = 50

    def __post_init__(self):
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")

@dataclass
class VisionConfig:
    """Configuration for page analysis and image captioning."""
    model: str = os.getenv('VISION_MODEL', 'gpt-4o')
    page_concurrency: int = int(os.getenv('PAGE_CONCURRENCY', 3))
    page_max_tokens: int = 4096
    page_detail: str = "high"
    image_concurrency: int = int(os.getenv('IMAGE_CONCURRENCY', 3))
    caption_max_tokens: int = 150
    caption_detail: str = "low"
    min_image_dimension: int = int(os.getenv('MIN_IMAGE_DIMENSION', 100))

@dataclass
class ExtractionConfig:
    """Configuration for the file-based fallback extraction job."""
    model: str = os.getenv('EXTRACTION_MODEL', 'gpt-4o')
    poll_interval: float = float(os.getenv('EXTRACTION_POLL_INTERVAL', 5.0))
    max_poll_attempts: int = int(os.getenv('EXTRACTION_MAX_POLLS', 60))

@dataclass
class StorageConfig:
    """Configuration for document and image asset storage."""
    asset_dir: str = os.getenv('ASSET_DIR', 'storage')
    asset_base_url: str = os.getenv('ASSET_BASE_URL', '/assets')
    document_dir: str = os.getenv('DOCUMENT_DIR', 'documents')
    max_upload_mb: int = 50
    max_page_render_mb: int = 15
    render_scale: float = 1.5

@dataclass
class ProcessorConfig:
    """Configuration for document ingestion."""
    openai_api_key: Optional[str] = os.getenv('OPENAI_API_KEY')
    rate_limit_config: RateLimitConfig = field(default_factory=RateLimitConfig)
    embedding_config: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    chunking_config: ChunkingConfig = field(default_factory=ChunkingConfig)
    vision_config: VisionConfig = field(default_factory=VisionConfig)
    extraction_config: ExtractionConfig = field(default_factory=ExtractionConfig)
    storage_config: StorageConfig = field(default_factory=StorageConfig)

    def require_api_key(self) -> str:
        if not self.openai_api_key:
            raise ValueError("OpenAI API key is required")
        return self.openai_api_key

processor_config = ProcessorConfig()
