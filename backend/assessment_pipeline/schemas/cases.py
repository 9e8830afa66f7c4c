"""Pydantic schemas for read-only case views."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from assessment_pipeline.domain.stages import CaseStage


class CaseDocumentView(BaseModel):
    """Read-only view consumed by document generation.

    Documents print the display number and stage; they never write back.
    """

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: uuid.UUID
    display_number: str
    request_id: uuid.UUID
    stage: CaseStage
    created_at: datetime
    estimate_finalized_at: datetime | None = None
    completed_at: datetime | None = None
