"""
Tests for domain cleaning and validation.
"""

import pytest

from searchscout.utils.domain import (
    DomainValidationError,
    clean_domain,
    is_valid_domain,
    validate_domain,
)


class TestCleanDomain:

    @pytest.mark.parametrize("raw,expected", [
        ("example.com", "example.com"),
        ("https://www.example.com/path", "example.com"),
        ("http://example.com", "example.com"),
        ("  WWW.Example.COM  ", "example.com"),
        ("blog.example.co.uk/a/b?c=d", "blog.example.co.uk"),
    ])
    def test_cleaning(self, raw, expected):
        assert clean_domain(raw) == expected


class TestIsValidDomain:

    @pytest.mark.parametrize("domain", ["example.com", "my-site.io", "a.b.c.example.org", "x1.dev"])
    def test_valid(self, domain):
        assert is_valid_domain(domain)

    @pytest.mark.parametrize("domain", ["", "localhost", "example", "-bad.com", "bad-.com", "exa mple.com", "example.c0m"])
    def test_invalid(self, domain):
        assert not is_valid_domain(domain)


class TestValidateDomain:

    def test_returns_cleaned(self):
        assert validate_domain("https://www.Example.com/") == "example.com"

    def test_invalid_raises(self):
        with pytest.raises(DomainValidationError) as exc_info:
            validate_domain("not a domain")
        assert exc_info.value.value == "not a domain"

    def test_none_raises(self):
        with pytest.raises(DomainValidationError):
            validate_domain(None)

    def test_is_a_value_error(self):
        with pytest.raises(ValueError):
            validate_domain("https://")
