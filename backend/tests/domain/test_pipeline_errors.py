"""Tests for the pipeline exception hierarchy and structured payloads."""

import uuid

import pytest

from assessment_pipeline.core.exceptions import (
    CaseInvariantViolation,
    CaseNotFound,
    DuplicateRequest,
    InvalidTransition,
    MissingAppointmentLink,
    PipelineError,
    SequenceExhaustionOrCollision,
    StaleTransition,
)

pytestmark = pytest.mark.unit


def test_invalid_transition_payload():
    case_id = uuid.uuid4()
    error = InvalidTransition(case_id, "request_submitted", "archived", "next stage is 'request_accepted'")
    payload = error.to_dict()
    assert payload["error"] == "InvalidTransition"
    assert payload["case_id"] == str(case_id)
    assert payload["current_stage"] == "request_submitted"
    assert payload["target_stage"] == "archived"
    assert "request_accepted" in str(error)


def test_missing_appointment_link_is_an_invariant_violation():
    error = MissingAppointmentLink(uuid.uuid4(), "appointment_scheduled")
    assert isinstance(error, CaseInvariantViolation)
    assert error.to_dict()["stage"] == "appointment_scheduled"


def test_case_not_found_by_request():
    request_id = uuid.uuid4()
    error = CaseNotFound(request_id=request_id)
    assert str(request_id) in str(error)
    assert error.to_dict()["request_id"] == str(request_id)
    assert error.to_dict()["case_id"] is None


def test_sequence_exhaustion_payload():
    payload = SequenceExhaustionOrCollision("ASM", 2025, 4).to_dict()
    assert payload == {
        "error": "SequenceExhaustionOrCollision",
        "message": "Could not allocate a unique ASM-2025 number after 4 attempts",
        "prefix": "ASM",
        "year": 2025,
        "attempts": 4,
    }


@pytest.mark.parametrize(
    "error",
    [
        DuplicateRequest(uuid.uuid4()),
        StaleTransition(uuid.uuid4(), "request_submitted", "request_accepted"),
        CaseInvariantViolation(uuid.uuid4(), "inspection_scheduled", "bad link"),
    ],
)
def test_all_errors_share_base(error):
    assert isinstance(error, PipelineError)
    assert error.to_dict()["error"] == type(error).__name__
