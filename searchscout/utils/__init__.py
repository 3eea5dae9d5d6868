"""Utility modules for SearchScout."""

from .config import Settings, get_settings
from .domain import (
    DomainValidationError,
    clean_domain,
    is_valid_domain,
    validate_domain,
)

__all__ = [
    "Settings",
    "get_settings",
    # Domains
    "DomainValidationError",
    "clean_domain",
    "is_valid_domain",
    "validate_domain",
]
