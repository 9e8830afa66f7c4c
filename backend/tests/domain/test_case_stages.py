"""Tests for the case stage enum, pipeline order and transition validation."""

import pytest

from assessment_pipeline.domain.stages import (
    FALLBACK_STAGE,
    INITIAL_STAGE,
    PIPELINE,
    CaseStage,
    TransitionResult,
    TransitionViolation,
    check_case_invariants,
    fallback_allowed,
    is_at_or_past,
    is_terminal,
    next_stage,
    requires_appointment,
    stage_index,
    validate_transition,
)

pytestmark = pytest.mark.unit

NON_TERMINAL = [s for s in PIPELINE if s is not CaseStage.ARCHIVED]


class TestPipelineOrder:
    """Test stage ordering helpers."""

    def test_pipeline_order(self):
        """Pipeline runs from request_submitted to archived, cancelled excluded."""
        assert [s.value for s in PIPELINE] == [
            "request_submitted",
            "request_accepted",
            "inspection_scheduled",
            "appointment_scheduled",
            "assessment_in_progress",
            "assessment_completed",
            "estimate_finalized",
            "frc_in_progress",
            "frc_completed",
            "archived",
        ]
        assert CaseStage.CANCELLED not in PIPELINE

    def test_initial_stage(self):
        assert INITIAL_STAGE is CaseStage.REQUEST_SUBMITTED

    def test_next_stage_walks_pipeline(self):
        for current, expected in zip(PIPELINE, PIPELINE[1:]):
            assert next_stage(current) is expected

    def test_terminal_stages_have_no_successor(self):
        assert next_stage(CaseStage.ARCHIVED) is None
        assert next_stage(CaseStage.CANCELLED) is None
        assert is_terminal(CaseStage.ARCHIVED)
        assert is_terminal(CaseStage.CANCELLED)
        assert not is_terminal(CaseStage.FRC_COMPLETED)

    def test_cancelled_has_no_index(self):
        with pytest.raises(ValueError):
            stage_index(CaseStage.CANCELLED)

    def test_requires_appointment_threshold(self):
        assert not requires_appointment(CaseStage.INSPECTION_SCHEDULED)
        assert requires_appointment(CaseStage.APPOINTMENT_SCHEDULED)
        assert requires_appointment(CaseStage.ARCHIVED)
        assert not requires_appointment(CaseStage.CANCELLED)


class TestIsAtOrPast:
    """Test the idempotency check used by lifecycle wrappers."""

    def test_same_stage_is_reached(self):
        assert is_at_or_past(CaseStage.ASSESSMENT_IN_PROGRESS, CaseStage.ASSESSMENT_IN_PROGRESS)

    def test_later_stage_is_past(self):
        assert is_at_or_past(CaseStage.ESTIMATE_FINALIZED, CaseStage.ASSESSMENT_IN_PROGRESS)

    def test_earlier_stage_is_not_reached(self):
        assert not is_at_or_past(CaseStage.REQUEST_ACCEPTED, CaseStage.ASSESSMENT_IN_PROGRESS)

    def test_cancelled_only_satisfies_cancelled(self):
        assert is_at_or_past(CaseStage.CANCELLED, CaseStage.CANCELLED)
        assert not is_at_or_past(CaseStage.CANCELLED, CaseStage.REQUEST_ACCEPTED)
        assert not is_at_or_past(CaseStage.ARCHIVED, CaseStage.CANCELLED)


class TestTransitionResult:
    """Test TransitionResult dataclass."""

    def test_defaults(self):
        result = TransitionResult(allowed=True)
        assert result.reason == ""
        assert result.new_stage is None
        assert result.violation is None


class TestValidateTransition:
    """Test validate_transition function."""

    @pytest.mark.parametrize("current", NON_TERMINAL)
    def test_immediate_successor_allowed(self, current):
        target = next_stage(current)
        result = validate_transition(current, target, has_appointment=True)
        assert result.allowed is True
        assert result.new_stage is target

    @pytest.mark.parametrize("current", list(CaseStage))
    def test_non_successor_rejected(self, current):
        """Every target other than the successor or cancelled is rejected."""
        for target in PIPELINE:
            if target is next_stage(current):
                continue
            result = validate_transition(current, target, has_appointment=True)
            assert result.allowed is False
            assert result.violation is TransitionViolation.INVALID
            assert result.new_stage is None

    def test_skip_reports_expected_stage(self):
        result = validate_transition(CaseStage.REQUEST_SUBMITTED, CaseStage.INSPECTION_SCHEDULED, False)
        assert result.allowed is False
        assert "request_accepted" in result.reason

    @pytest.mark.parametrize("current", NON_TERMINAL)
    def test_cancel_allowed_from_non_terminal(self, current):
        result = validate_transition(current, CaseStage.CANCELLED, has_appointment=False)
        assert result.allowed is True
        assert result.new_stage is CaseStage.CANCELLED

    @pytest.mark.parametrize("current", [CaseStage.ARCHIVED, CaseStage.CANCELLED])
    def test_terminal_rejects_everything(self, current):
        for target in CaseStage:
            result = validate_transition(current, target, has_appointment=True)
            assert result.allowed is False
            assert result.violation is TransitionViolation.INVALID
            assert "terminal" in result.reason

    def test_appointment_required(self):
        result = validate_transition(
            CaseStage.INSPECTION_SCHEDULED, CaseStage.APPOINTMENT_SCHEDULED, has_appointment=False
        )
        assert result.allowed is False
        assert result.violation is TransitionViolation.MISSING_APPOINTMENT

    def test_appointment_required_later_too(self):
        result = validate_transition(
            CaseStage.ASSESSMENT_IN_PROGRESS, CaseStage.ASSESSMENT_COMPLETED, has_appointment=False
        )
        assert result.violation is TransitionViolation.MISSING_APPOINTMENT

    def test_skip_reported_before_missing_appointment(self):
        result = validate_transition(CaseStage.REQUEST_ACCEPTED, CaseStage.APPOINTMENT_SCHEDULED, False)
        assert result.violation is TransitionViolation.INVALID


class TestCaseInvariants:
    """Test the standing appointment-link check."""

    def test_link_required_from_threshold(self):
        assert check_case_invariants(CaseStage.APPOINTMENT_SCHEDULED, has_appointment=False) is not None
        assert check_case_invariants(CaseStage.ARCHIVED, has_appointment=False) is not None

    def test_link_forbidden_before_threshold(self):
        assert check_case_invariants(CaseStage.INSPECTION_SCHEDULED, has_appointment=True) is not None

    def test_valid_combinations(self):
        assert check_case_invariants(CaseStage.REQUEST_SUBMITTED, has_appointment=False) is None
        assert check_case_invariants(CaseStage.FRC_IN_PROGRESS, has_appointment=True) is None

    def test_cancelled_is_exempt(self):
        assert check_case_invariants(CaseStage.CANCELLED, has_appointment=True) is None
        assert check_case_invariants(CaseStage.CANCELLED, has_appointment=False) is None


class TestFallback:
    """Test which stages re-open on appointment cancellation."""

    def test_fallback_stage(self):
        assert FALLBACK_STAGE is CaseStage.INSPECTION_SCHEDULED

    def test_allowed_from_appointment_onward(self):
        assert fallback_allowed(CaseStage.APPOINTMENT_SCHEDULED)
        assert fallback_allowed(CaseStage.FRC_COMPLETED)

    def test_not_allowed_before_appointment_or_when_terminal(self):
        assert not fallback_allowed(CaseStage.INSPECTION_SCHEDULED)
        assert not fallback_allowed(CaseStage.ARCHIVED)
        assert not fallback_allowed(CaseStage.CANCELLED)
