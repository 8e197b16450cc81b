"""Tests for identifier normalization."""

import uuid

import pytest

from callgate.core.errors import InvalidIdentifierError
from callgate.utils.identifiers import (
    normalize_email,
    normalize_id,
    normalize_optional_id,
    same_id,
)


def test_string_and_uuid_forms_are_equal():
    value = uuid.uuid4()

    assert normalize_id(str(value)) == value
    assert normalize_id(f"  {str(value).upper()} ") == value
    assert same_id(value, str(value)) is True


def test_invalid_identifiers():
    with pytest.raises(InvalidIdentifierError):
        normalize_id("not-a-uuid")
    with pytest.raises(InvalidIdentifierError):
        normalize_id(None)
    with pytest.raises(ValueError):
        normalize_id(42)


def test_same_id_never_matches_missing_or_garbage():
    value = uuid.uuid4()

    assert same_id(value, None) is False
    assert same_id(value, "garbage") is False
    assert same_id(value, uuid.uuid4()) is False


def test_optional_and_email():
    assert normalize_optional_id(None) is None
    assert normalize_email("  Dana@Buyer.COM ") == "dana@buyer.com"
    assert normalize_email("") is None
