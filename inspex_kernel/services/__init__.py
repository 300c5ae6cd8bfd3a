"""Services for the inspection kernel (write side)."""

from inspex_kernel.services.artifact_generator import ArtifactGenerator
from inspex_kernel.services.asset_registry import AssetRegistry, generate_serial_number
from inspex_kernel.services.certification_engine import CertificationEngine
from inspex_kernel.services.inspection_service import InspectionService
from inspex_kernel.services.notification_dispatcher import NotificationDispatcher
from inspex_kernel.services.sequence_service import SequenceService
from inspex_kernel.services.template_store import TemplateStore
from inspex_kernel.services.workflow_log_service import WorkflowLogService, WorkflowLogWriter

__all__ = [
    "ArtifactGenerator",
    "AssetRegistry",
    "CertificationEngine",
    "InspectionService",
    "NotificationDispatcher",
    "SequenceService",
    "TemplateStore",
    "WorkflowLogService",
    "WorkflowLogWriter",
    "generate_serial_number",
]
