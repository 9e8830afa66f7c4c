"""Pydantic schemas for pipeline integrity reports."""

import uuid

from pydantic import BaseModel, Field


class InvariantViolationItem(BaseModel):
    """A case whose stage and appointment link disagree."""

    case_id: uuid.UUID
    display_number: str
    stage: str
    detail: str


class DuplicateGroup(BaseModel):
    """A value shared by more than one case."""

    value: str
    case_ids: list[uuid.UUID]


class IntegrityReport(BaseModel):
    """Result of a read-only pipeline integrity check.

    ``ok`` is True only when every finding list is empty. Lists default to
    empty arrays, never null.
    """

    ok: bool = True
    cases_checked: int = 0
    requests_without_case: list[uuid.UUID] = Field(default_factory=list)
    duplicate_request_ids: list[DuplicateGroup] = Field(default_factory=list)
    duplicate_display_numbers: list[DuplicateGroup] = Field(default_factory=list)
    invariant_violations: list[InvariantViolationItem] = Field(default_factory=list)
    stage_distribution: dict[str, int] = Field(default_factory=dict)
