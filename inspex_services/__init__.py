"""
inspex_services -- outer adapters and the composition root.

Responsibility:
    Concrete implementations of the kernel's collaborator ports (object
    storage, identity directory, notification sinks) and ``InspexWorkflow``,
    which wires every kernel component together from configuration.

Architecture position:
    Services -- depends on ``inspex_kernel`` and ``inspex_config``.

    Dependency direction (enforced by tests/architecture/test_kernel_boundary.py):
        inspex_services/ -> inspex_kernel/   (allowed)
        inspex_services/ -> inspex_config/   (allowed)
        inspex_kernel/   -> inspex_services/ (FORBIDDEN)
        inspex_kernel/   -> inspex_config/   (FORBIDDEN)
"""

from inspex_services.email_notifier import LoggingNotificationSink, SmtpNotificationSink
from inspex_services.identity import StaticIdentityDirectory
from inspex_services.storage import InMemoryObjectStorage, LocalObjectStorage
from inspex_services.workflow_container import InspexWorkflow

__all__ = [
    "InMemoryObjectStorage",
    "InspexWorkflow",
    "LocalObjectStorage",
    "LoggingNotificationSink",
    "SmtpNotificationSink",
    "StaticIdentityDirectory",
]
