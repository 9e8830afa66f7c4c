"""Tests for case-scoped log context and the rendered JSON log lines."""

import json
import logging
import uuid

import pytest
import structlog

from assessment_pipeline.core.correlation import bind_correlation_id
from assessment_pipeline.core.logging import case_log_context, configure_structlog
from assessment_pipeline.domain.stages import CaseStage


@pytest.fixture
def json_log_lines(capsys):
    """Configure JSON logging onto captured stdout; returns a reader of parsed lines."""
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    configure_structlog(log_level="INFO", json_logs=True)

    def read() -> list[dict]:
        out = capsys.readouterr().out
        return [json.loads(line) for line in out.splitlines() if line.startswith("{")]

    yield read

    structlog.reset_defaults()
    root.handlers[:] = saved_handlers
    root.setLevel(saved_level)


def _events(lines: list[dict], event: str) -> list[dict]:
    return [line for line in lines if line["event"] == event]


@pytest.mark.unit
def test_case_log_context_binds_and_restores():
    case_id = uuid.uuid4()

    with case_log_context(actor="adjuster", request_id=None):
        with case_log_context(case_id=case_id, stage=CaseStage.FRC_COMPLETED):
            bound = structlog.contextvars.get_contextvars()
            assert bound == {"actor": "adjuster", "case_id": str(case_id), "stage": "frc_completed"}
        assert structlog.contextvars.get_contextvars() == {"actor": "adjuster"}

    assert structlog.contextvars.get_contextvars() == {}


@pytest.mark.integration
async def test_transition_lines_carry_case(pipeline, drive_case, json_log_lines):
    case = await drive_case(CaseStage.APPOINTMENT_SCHEDULED)
    json_log_lines()

    with bind_correlation_id("req-42"):
        await pipeline.lifecycle.start_assessment(case.request_id, actor="adjuster-7")

    [line] = _events(json_log_lines(), "stage_transitioned")
    assert line["workflow_action"] == "start_assessment"
    assert line["actor"] == "adjuster-7"
    assert line["request_id"] == str(case.request_id)
    assert line["case_id"] == str(case.id)
    assert line["display_number"] == case.display_number
    assert line["correlation_id"] == "req-42"
    assert line["level"] == "info"
    assert line["logger"] == "assessment_pipeline.services.transitions"


@pytest.mark.integration
async def test_cancel_lines_carry_display_number(pipeline, drive_case, json_log_lines):
    case = await drive_case(CaseStage.APPOINTMENT_SCHEDULED)
    json_log_lines()

    await pipeline.lifecycle.cancel_appointment(case.request_id, case.appointment_id, actor="dispatcher")

    [line] = _events(json_log_lines(), "case_reopened_after_appointment_cancel")
    assert line["workflow_action"] == "cancel_appointment"
    assert line["display_number"] == case.display_number
    assert line["actor"] == "dispatcher"


@pytest.mark.integration
async def test_context_cleared_after_action(pipeline, drive_case, json_log_lines):
    case = await drive_case(CaseStage.REQUEST_ACCEPTED)

    await pipeline.lifecycle.cancel_case(case.request_id)

    assert structlog.contextvars.get_contextvars() == {}
    structlog.get_logger("assessment_pipeline.tests").info("after_action")
    [line] = _events(json_log_lines(), "after_action")
    assert "case_id" not in line
    assert "workflow_action" not in line
