"""
Database configuration settings.
"""

from dataclasses import dataclass
from typing import Literal
import os
from dotenv import load_dotenv

load_dotenv()

@dataclass
class DatabaseConfig:
    """Configuration for the PostgreSQL knowledge base."""
    host: str = os.getenv('POSTGRES_HOST', 'localhost')
    port: int = int(os.getenv('POSTGRES_PORT', 5432))
    user: str = os.getenv('POSTGRES_USER', 'postgres')
    password: str = os.getenv('POSTGRES_PASSWORD', '')
    database: str = os.getenv('POSTGRES_DB', 'manualRag')
    pool_size: int = int(os.getenv('POSTGRES_POOL_SIZE', 5))
    max_overflow: int = int(os.getenv('POSTGRES_MAX_OVERFLOW', 10))
    pool_timeout: int = int(os.getenv('POSTGRES_POOL_TIMEOUT', 30))
    pool_recycle: int = int(os.getenv('POSTGRES_POOL_RECYCLE', 1800))  # 30 minutes
    ivfflat_lists: int = 100
    vector_store_type: Literal["postgres", "memory"] = os.getenv('VECTOR_STORE_TYPE', 'postgres')

    def __post_init__(self):
        if self.vector_store_type not in ("postgres", "memory"):
            raise ValueError(f"Unsupported vector store type: {self.vector_store_type}")

    @property
    def connection_string(self) -> str:
        return f"postgresql+asyncpg://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"

db_config = DatabaseConfig()
