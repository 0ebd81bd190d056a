"""
Database models for the per-user knowledge base.
"""

from sqlalchemy import (
    Column, String, Integer, Boolean, Text, ForeignKey, DateTime,
    UniqueConstraint, CheckConstraint, Index,
)
from sqlalchemy.orm import declarative_base, relationship
from pgvector.sqlalchemy import Vector
from datetime import datetime

Base = declarative_base()

IMAGE_TYPES = ("diagram", "photo", "chart", "table", "icon")

class DocumentModel(Base):
    """The single active document of a user; owns its chunks and images."""
    __tablename__ = 'documents'

    id = Column(Integer, primary_key=True)
    user_id = Column(String, nullable=False)
    file_path = Column(String, nullable=False)
    original_filename = Column(String, nullable=True)
    total_pages = Column(Integer, nullable=True)
    processed = Column(Boolean, nullable=False, default=False)
    processing_method = Column(String, nullable=True)
    summary = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    chunks = relationship(
        "DocumentChunk",
        back_populates="document",
        cascade="all, delete-orphan",
    )
    images = relationship(
        "DocumentImage",
        back_populates="document",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint('user_id', name='uq_documents_user_id'),
        CheckConstraint(
            "processing_method IS NULL OR processing_method IN ('vision', 'fallback')",
            name='processing_method_valid',
        ),
    )

class DocumentChunk(Base):
    """Model for storing document chunks with embeddings."""
    __tablename__ = 'document_chunks'

    id = Column(Integer, primary_key=True)
    user_id = Column(String, nullable=False)
    document_id = Column(Integer, ForeignKey('documents.id', ondelete='CASCADE'), nullable=False)
    content = Column(Text, nullable=False)
    page_number = Column(Integer, nullable=False)
    chunk_index = Column(Integer, nullable=False)
    has_diagram = Column(Boolean, nullable=False, default=False)
    diagram_description = Column(Text, nullable=True)
    embedding = Column(Vector(1536))  # text-embedding-3-small dimension
    created_at = Column(DateTime, default=datetime.now)

    document = relationship("DocumentModel", back_populates="chunks")

    __table_args__ = (
        CheckConstraint('length(trim(content)) > 0', name='content_not_empty'),
        Index('idx_document_chunks_user_id', 'user_id'),
        Index('idx_document_chunks_page_number', 'page_number'),
        Index('idx_document_chunks_has_diagram', 'has_diagram'),
    )

class DocumentImage(Base):
    """Model for storing captioned images with caption embeddings."""
    __tablename__ = 'document_images'

    id = Column(Integer, primary_key=True)
    user_id = Column(String, nullable=False)
    document_id = Column(Integer, ForeignKey('documents.id', ondelete='CASCADE'), nullable=False)
    page_number = Column(Integer, nullable=False)
    image_url = Column(String, nullable=False)
    caption = Column(Text, nullable=True)
    image_type = Column(String, nullable=False, default='diagram')
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    embedding = Column(Vector(1536), nullable=True)
    created_at = Column(DateTime, default=datetime.now)

    document = relationship("DocumentModel", back_populates="images")

    __table_args__ = (
        CheckConstraint(
            "image_type IN ('diagram', 'photo', 'chart', 'table', 'icon')",
            name='image_type_valid',
        ),
        Index('idx_document_images_user_id', 'user_id'),
        Index('idx_document_images_page_number', 'page_number'),
    )

__all__ = ['Base', 'DocumentModel', 'DocumentChunk', 'DocumentImage', 'IMAGE_TYPES']
