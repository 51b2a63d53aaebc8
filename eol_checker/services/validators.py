"""
Input validation utilities for the API routes
"""
from typing import Any, Dict, List, Optional

from eol_checker.config import MAX_IDENTIFIER_LENGTH


def _check_identifier(value: Any, label: str) -> Optional[str]:
    if not value or not isinstance(value, str):
        return f"{label} is required and must be a string"
    if not value.strip():
        return f"{label} cannot be empty"
    if len(value) > MAX_IDENTIFIER_LENGTH:
        return f"{label} name too long (max {MAX_IDENTIFIER_LENGTH} characters)"
    return None


def validate_initialize_job(payload: Optional[Dict[str, Any]]) -> List[str]:
    """
    Validate job initialization input

    Args:
        payload: Request body

    Returns:
        List of error messages, empty when the payload is valid
    """
    if not payload or not isinstance(payload, dict):
        return ['Request body is required']

    errors = []
    for field, label in (('model', 'Model'), ('maker', 'Maker')):
        error = _check_identifier(payload.get(field), label)
        if error:
            errors.append(error)
    return errors


def sanitize_string(value: Any, max_length: int = 1000) -> str:
    """Trim, truncate and strip NUL characters. Non-strings become ''."""
    if not isinstance(value, str):
        return ''
    sanitized = value.strip()[:max_length]
    return sanitized.replace('\0', '')
