"""
Kernel Invariants Contract.

These invariants are structural law for the door certification workflow.
They are enforced by the certification engine, the inspection service,
partial unique indexes and ORM listeners.  No configuration may relax them.

This module exists solely to declare these invariants explicitly, so that
tests and the consistency checker can name what they verify.
"""

from enum import Enum, unique


@unique
class KernelInvariant(str, Enum):
    """Non-configurable invariants enforced by the kernel."""

    CERTIFICATE_BINDING = "certificate_binding"
    """A door is certified if and only if exactly one active certificate
    artifact exists for it.  Enforced by CertificationEngine writing status
    and artifact in one transaction and by the partial unique index
    uq_certification_artifacts_one_active."""

    SINGLE_ACTIVE_SESSION = "single_active_session"
    """At most one in_progress inspection session per door.  Enforced by the
    version-checked asset update in InspectionService.start_inspection and
    by the partial unique index uq_inspection_sessions_one_active."""

    COMPLETION_GATE = "completion_gate"
    """A session completes only when every check is explicitly true or
    false.  Enforced by InspectionService.complete_inspection."""

    CERTIFY_GATE = "certify_gate"
    """Certification requires every check of the latest completed session
    to be true.  Enforced by CertificationEngine.certify."""

    CERTIFY_IDEMPOTENCY = "certify_idempotency"
    """Certifying the same door on the same session twice returns the first
    artifact.  Enforced by the dedupe key and its unique index."""

    LOG_AFTER_COMMIT = "log_after_commit"
    """Workflow log entries are written only after the transition they
    describe has committed, and are never updated or deleted."""


ALL_KERNEL_INVARIANTS: frozenset[KernelInvariant] = frozenset(KernelInvariant)

# The kernel package may not import from these packages.
# Enforced by tests/architecture/test_kernel_boundary.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "inspex_services",
    "inspex_config",
)
