"""ORM models.  Importing this package registers every kernel table."""

from inspex_kernel.models.asset import Asset
from inspex_kernel.models.certification import CertificationArtifact
from inspex_kernel.models.inspection import (
    InspectionCheck,
    InspectionPoint,
    InspectionSession,
)
from inspex_kernel.models.sequence_counter import SequenceCounter
from inspex_kernel.models.workflow_log import WorkflowLogEntry

__all__ = [
    "Asset",
    "CertificationArtifact",
    "InspectionCheck",
    "InspectionPoint",
    "InspectionSession",
    "SequenceCounter",
    "WorkflowLogEntry",
]
