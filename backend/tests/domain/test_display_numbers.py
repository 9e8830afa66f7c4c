"""Tests for display number formatting and parsing."""

import pytest

from assessment_pipeline.domain.numbering import (
    DisplayNumber,
    display_number_like,
    format_display_number,
    parse_display_number,
)

pytestmark = pytest.mark.unit


def test_format_pads_sequence():
    assert format_display_number("ASM", 2025, 14) == "ASM-2025-014"


def test_format_uppercases_prefix():
    assert format_display_number("asm", 2025, 1) == "ASM-2025-001"


def test_format_keeps_wide_sequences():
    """Numbers past the padding width grow instead of truncating."""
    assert format_display_number("ASM", 2025, 1234) == "ASM-2025-1234"


def test_format_custom_padding():
    assert format_display_number("REQ", 2026, 7, padding=5) == "REQ-2026-00007"


@pytest.mark.parametrize("sequence", [0, -1])
def test_format_rejects_non_positive_sequence(sequence):
    with pytest.raises(ValueError):
        format_display_number("ASM", 2025, sequence)


def test_format_rejects_short_year():
    with pytest.raises(ValueError):
        format_display_number("ASM", 25, 1)


def test_parse_round_trip():
    assert parse_display_number("ASM-2025-014") == DisplayNumber(prefix="ASM", year=2025, sequence=14)


def test_parse_wide_sequence():
    assert parse_display_number("ASM-2025-1000").sequence == 1000


@pytest.mark.parametrize("value", ["", "ASM2025014", "ASM-25-014", "asm-2025-014", "ASM-2025-"])
def test_parse_rejects_malformed(value):
    assert parse_display_number(value) is None


def test_like_pattern():
    assert display_number_like("asm", 2025) == "ASM-2025-%"
