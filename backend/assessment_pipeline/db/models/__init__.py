"""Re-export all models so Base.metadata sees them."""

from assessment_pipeline.db.models.appointment import Appointment
from assessment_pipeline.db.models.audit_entry import AuditEntry
from assessment_pipeline.db.models.case import Case
from assessment_pipeline.db.models.inspection import Inspection
from assessment_pipeline.db.models.sequence_counter import SequenceCounter

__all__ = [
    "Appointment",
    "AuditEntry",
    "Case",
    "Inspection",
    "SequenceCounter",
]
