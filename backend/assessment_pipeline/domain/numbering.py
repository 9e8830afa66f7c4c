"""Human-readable display numbers: {PREFIX}-{YYYY}-{NNN}."""

import re
from dataclasses import dataclass

_DISPLAY_NUMBER_RE = re.compile(r"^(?P<prefix>[A-Z][A-Z0-9]*)-(?P<year>\d{4})-(?P<sequence>\d+)$")


@dataclass(frozen=True)
class DisplayNumber:
    prefix: str
    year: int
    sequence: int


def format_display_number(prefix: str, year: int, sequence: int, padding: int = 3) -> str:
    """Format a display number, e.g. ("ASM", 2025, 14) -> "ASM-2025-014".

    Sequences wider than ``padding`` are kept whole, never truncated.
    """
    if sequence < 1:
        raise ValueError(f"sequence must be positive, got {sequence}")
    if not 1000 <= year <= 9999:
        raise ValueError(f"year must have four digits, got {year}")
    return f"{prefix.upper()}-{year:04d}-{sequence:0{padding}d}"


def parse_display_number(value: str) -> DisplayNumber | None:
    """Parse a display number, or return None if it is not in the expected format."""
    match = _DISPLAY_NUMBER_RE.match(value)
    if match is None:
        return None
    return DisplayNumber(
        prefix=match["prefix"],
        year=int(match["year"]),
        sequence=int(match["sequence"]),
    )


def display_number_like(prefix: str, year: int) -> str:
    """SQL LIKE pattern matching every display number of a (prefix, year) pair."""
    return f"{prefix.upper()}-{year:04d}-%"
