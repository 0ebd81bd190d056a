"""
Validation utilities for input checking.
"""

import logging
from typing import Any

from .errors import InputValidationError

logger = logging.getLogger(__name__)

MAX_QUERY_LENGTH = 4000

def validate_required_text(value: Any, param_name: str) -> str:
    """Return the stripped value or raise if it is missing or blank."""
    if not isinstance(value, str) or not value.strip():
        raise InputValidationError(f"Parameter '{param_name}' is required")
    return value.strip()

def validate_text_length(
    text: str,
    max_length: int,
    param_name: str
) -> None:
    """Validate text length."""
    if len(text) > max_length:
        raise InputValidationError(
            f"Parameter '{param_name}' exceeds maximum length of {max_length} characters"
        )

def validate_numeric_range(
    value: float,
    min_value: float,
    max_value: float,
    param_name: str
) -> None:
    """Validate numeric value range."""
    if not min_value <= value <= max_value:
        raise InputValidationError(
            f"Parameter '{param_name}' must be between {min_value} and {max_value}"
        )

class InputValidator:
    """Utility class for input validation."""

    @staticmethod
    def validate_query(message: Any, user_id: Any) -> tuple:
        """Validate a chat query and return the cleaned ``(message, user_id)``."""
        message = validate_required_text(message, "message")
        user_id = validate_required_text(user_id, "user_id")
        validate_text_length(message, MAX_QUERY_LENGTH, "message")
        return message, user_id

    @staticmethod
    def validate_ingest_request(document_id: Any, user_id: Any) -> None:
        """Validate the identifiers of an ingestion request."""
        if not isinstance(document_id, int) or isinstance(document_id, bool) or document_id < 1:
            raise InputValidationError("Parameter 'document_id' must be a positive integer")
        validate_required_text(user_id, "user_id")

    @staticmethod
    def validate_search_params(
        k_chunks: int,
        k_images: int,
        threshold: float
    ) -> None:
        """Validate retrieval parameters."""
        if k_chunks < 0 or k_images < 0:
            raise InputValidationError("Result limits must not be negative")
        validate_numeric_range(threshold, -1.0, 1.0, "threshold")
