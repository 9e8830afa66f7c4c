"""Tests for correlation ID helpers."""

import uuid

import pytest

from assessment_pipeline.core.correlation import (
    bind_correlation_id,
    current_or_new_correlation_id,
    get_correlation_id,
)

pytestmark = pytest.mark.unit


def test_no_correlation_id_by_default():
    assert get_correlation_id() is None


def test_fresh_uuid_when_unbound():
    first = current_or_new_correlation_id()
    second = current_or_new_correlation_id()
    assert isinstance(first, uuid.UUID)
    assert first != second


def test_bound_uuid_is_returned():
    value = str(uuid.uuid4())
    with bind_correlation_id(value) as cid:
        assert cid == value
        assert get_correlation_id() == value
        assert current_or_new_correlation_id() == uuid.UUID(value)
    assert get_correlation_id() is None


def test_bind_generates_id():
    with bind_correlation_id() as cid:
        assert uuid.UUID(cid)


def test_non_uuid_header_maps_deterministically():
    with bind_correlation_id("req-42"):
        first = current_or_new_correlation_id()
    with bind_correlation_id("req-42"):
        second = current_or_new_correlation_id()
    assert first == second
    assert first == uuid.uuid5(uuid.NAMESPACE_OID, "req-42")
