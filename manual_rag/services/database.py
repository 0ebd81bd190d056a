"""
Database service handling PostgreSQL connections and schema setup.
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
import logging

from ..config.database import DatabaseConfig
from ..models.documents import Base
from ..utils.errors import DatabaseError

logger = logging.getLogger(__name__)

VECTOR_INDEXES = {
    "document_chunks_embedding_idx": "document_chunks",
    "document_images_embedding_idx": "document_images",
}

def create_async_db_engine(config: DatabaseConfig) -> AsyncEngine:
    """Create async database engine with connection pooling."""
    return create_async_engine(
        config.connection_string,
        pool_size=config.pool_size,
        max_overflow=config.max_overflow,
        pool_timeout=config.pool_timeout,
        pool_recycle=config.pool_recycle,
        pool_pre_ping=True,
        echo=False
    )

def create_async_session_maker(engine) -> async_sessionmaker[AsyncSession]:
    """Create async session maker."""
    return async_sessionmaker(
        engine,
        expire_on_commit=False,
        class_=AsyncSession
    )

async def create_vector_indexes(conn, lists: int = 100) -> None:
    """Create ivfflat cosine indexes on the embedding columns."""
    try:
        for index_name, table_name in VECTOR_INDEXES.items():
            await conn.execute(text(f"""
                CREATE INDEX IF NOT EXISTS {index_name}
                ON {table_name}
                USING ivfflat (embedding vector_cosine_ops)
                WITH (lists = {int(lists)});
            """))
    except Exception as e:
        logger.error(f"Failed to create vector index: {str(e)}")
        raise DatabaseError(f"Vector index creation failed: {str(e)}") from e

async def initialize_database(engine: AsyncEngine, drop_all: bool = False, lists: int = 100) -> None:
    """
    Create the pgvector extension, tables and indexes if they don't exist.

    Args:
        engine: Async engine bound to the target database
        drop_all: If True, drop and recreate all tables
        lists: ivfflat list count for the vector indexes
    """
    try:
        async with engine.begin() as conn:
            await conn.execute(text('CREATE EXTENSION IF NOT EXISTS vector;'))

            if drop_all:
                logger.warning("Dropping all tables and recreating schema...")
                await conn.run_sync(Base.metadata.drop_all)

            await conn.run_sync(Base.metadata.create_all)
            logger.info("Tables created successfully")

            await create_vector_indexes(conn, lists=lists)
            logger.info("Vector indexes ready")
    except DatabaseError:
        raise
    except Exception as e:
        logger.error(f"Database initialization failed: {str(e)}")
        raise DatabaseError(f"Database initialization failed: {str(e)}") from e
