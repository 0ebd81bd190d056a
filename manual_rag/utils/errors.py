"""
Custom error types and error handling utilities.
"""

import asyncio
import logging
from typing import Type
from functools import wraps
import traceback

logger = logging.getLogger(__name__)

class DocumentProcessingError(Exception):
    """Base exception for document ingestion errors."""
    pass

class FileLoadError(DocumentProcessingError):
    """Raised when a stored document or asset cannot be loaded."""
    pass

class PageAnalysisError(DocumentProcessingError):
    """Raised when a page cannot be analyzed."""
    pass

class EmbeddingError(DocumentProcessingError):
    """Raised when embeddings cannot be generated."""
    pass

class DatabaseError(DocumentProcessingError):
    """Raised when database operations fail."""
    pass

class DocumentNotFoundError(DocumentProcessingError):
    """Raised when a user has no document with the requested id."""
    pass

class EmptyDocumentError(DocumentProcessingError):
    """Raised when a document produces no chunks."""
    pass

class ImageProcessingError(DocumentProcessingError):
    """Raised when an embedded image cannot be captioned or stored."""
    pass

class ExtractionError(DocumentProcessingError):
    """Raised when the remote text extraction job fails."""
    pass

class ExtractionTimeoutError(ExtractionError):
    """Raised when the remote text extraction job does not finish in time."""

    def __init__(self, attempts: int, elapsed_seconds: float):
        self.attempts = attempts
        self.elapsed_seconds = elapsed_seconds
        super().__init__(
            f"Extraction timed out after {attempts} polls ({elapsed_seconds:.0f}s)"
        )

class InputValidationError(ValueError):
    """Raised for invalid client input (missing ids, empty messages)."""
    pass

class AnswerCompositionError(Exception):
    """Raised when an answer cannot be composed."""
    pass

def handle_exceptions(
    error_type: Type[Exception],
    default_message: str,
    reraise: bool = True,
    log_level: str = "error"
) -> callable:
    """Decorator for handling exceptions with proper logging."""
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except error_type:
                raise
            except Exception as e:
                log_func = getattr(logger, log_level)
                error_msg = f"{default_message}: {str(e)}"
                log_func(error_msg)
                log_func(f"Traceback:\n{traceback.format_exc()}")

                if reraise:
                    raise error_type(error_msg) from e
                return None
        return wrapper
    return decorator

def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    exceptions: tuple = (Exception,)
) -> callable:
    """Decorator for retrying async operations with exponential backoff."""
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_retries):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_retries - 1:
                        logger.error(f"Failed after {max_retries} attempts: {str(e)}")
                        raise
                    delay = min(base_delay * (2 ** attempt), max_delay)
                    logger.warning(f"Attempt {attempt + 1} failed, retrying in {delay}s")
                    await asyncio.sleep(delay)
        return wrapper
    return decorator
