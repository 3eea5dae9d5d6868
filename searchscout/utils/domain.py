"""
Domain Utilities

Normalizes user-entered domains before they are used as analysis subjects
or keyword sources. Validation happens here, before any analysis runs.
"""

import re
import logging

logger = logging.getLogger(__name__)


_SCHEME_AND_WWW = re.compile(r"^(https?://)?(www\.)?", re.IGNORECASE)
_PATH = re.compile(r"/.*$")
_VALID_DOMAIN = re.compile(r"^([a-z0-9]+(-[a-z0-9]+)*\.)+[a-z]{2,}$", re.IGNORECASE)


class DomainValidationError(ValueError):
    """Raised when a string cannot be turned into a valid domain."""

    def __init__(self, message: str, value: str = None):
        super().__init__(message)
        self.value = value


def clean_domain(value: str) -> str:
    """
    Strip protocol, www prefix and path from a domain input string.

    "https://www.example.com/path" -> "example.com"
    """
    cleaned = value.strip().lower()
    cleaned = _SCHEME_AND_WWW.sub("", cleaned)
    cleaned = _PATH.sub("", cleaned)
    return cleaned


def is_valid_domain(domain: str) -> bool:
    """True if the string is a bare domain name (no protocol or path)."""
    if not domain:
        return False
    return bool(_VALID_DOMAIN.match(domain))


def validate_domain(value: str) -> str:
    """
    Clean and validate a domain.

    Returns:
        The cleaned domain

    Raises:
        DomainValidationError: If the cleaned value is not a valid domain
    """
    if value is None:
        raise DomainValidationError("Domain is required", value)

    domain = clean_domain(value)
    if not is_valid_domain(domain):
        logger.debug(f"Rejected domain input: {value!r}")
        raise DomainValidationError(f"Invalid domain: {value!r}", value)
    return domain
