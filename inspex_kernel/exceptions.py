"""
Typed Exception Hierarchy for the Inspex Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Several actors (inspector, engineer, administrator, client) drive the same
door through the workflow concurrently.  Callers must be able to tell a
stale request (refresh and retry) from a blocked one (fix the checklist)
without parsing messages:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (failed points, current state, ...)

Example - RIGHT way:
    try:
        engine.certify(actor, asset_id)
    except FailedChecksError as e:
        show(f"Cannot certify: {', '.join(e.failed_points)} failed")
    except ConflictError:
        reload_and_ask_user_again()

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from InspexKernelError:

    InspexKernelError (base)
    |
    +-- NotFoundError
    |   +-- AssetNotFoundError
    |   +-- InspectionSessionNotFoundError
    |   +-- InspectionPointNotFoundError
    |   +-- ArtifactNotFoundError
    |   +-- NoCompletedInspectionError
    |
    +-- ConflictError
    |   +-- ActiveInspectionExistsError
    |   +-- ConcurrentModificationError
    |   +-- DuplicateAssetError
    |
    +-- PreconditionFailedError
    |   +-- ChecksIncompleteError
    |   +-- FailedChecksError
    |   +-- RejectionReasonRequiredError
    |   +-- InvalidTransitionError
    |   +-- EmptyChecklistError
    |
    +-- StorageError
    |   +-- DocumentWriteError
    |   +-- DocumentReadError
    |   +-- DocumentDeleteError
    |
    +-- TransientError
    |   +-- CommitFailedError
    |
    +-- UnauthorizedError
    |   +-- RoleNotPermittedError
    |
    +-- AuditError
    |   +-- AuditChainBrokenError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- ConfigurationError

===============================================================================
PROPAGATION RULES
===============================================================================

Family          | Caller behaviour
----------------|-------------------------------------------------------------
NotFound        | Surface directly, no retry
Precondition    | Surface directly, no retry (state must change first)
Unauthorized    | Surface directly, no retry
Conflict        | Refresh state and retry the whole operation if still wanted
Storage         | Operation did not commit; retry later
Transient       | Operation did not commit; safe to retry (certify is idempotent)

Notification failures never appear here: they are logged and swallowed by
the dispatcher.  An audit log append failure after a committed transition is
logged at CRITICAL and never raised to the caller.
"""


class InspexKernelError(Exception):
    """Base exception for all inspex kernel errors."""

    code: str = "INSPEX_KERNEL_ERROR"


# ---------------------------------------------------------------------------
# NotFound
# ---------------------------------------------------------------------------


class NotFoundError(InspexKernelError):
    """Base for missing-entity errors."""

    code: str = "NOT_FOUND"


class AssetNotFoundError(NotFoundError):
    """The referenced door does not exist."""

    code: str = "ASSET_NOT_FOUND"

    def __init__(self, asset_id: str):
        self.asset_id = str(asset_id)
        super().__init__(f"Asset not found: {asset_id}")


class InspectionSessionNotFoundError(NotFoundError):
    """The inspection session does not exist, or is not in the required state."""

    code: str = "INSPECTION_SESSION_NOT_FOUND"

    def __init__(self, session_id: str, required_status: str | None = None):
        self.session_id = str(session_id)
        self.required_status = required_status
        if required_status:
            msg = f"No {required_status} inspection session {session_id}"
        else:
            msg = f"Inspection session not found: {session_id}"
        super().__init__(msg)


class InspectionPointNotFoundError(NotFoundError):
    """The checklist point does not exist or is not part of the session."""

    code: str = "INSPECTION_POINT_NOT_FOUND"

    def __init__(self, point_id: str):
        self.point_id = str(point_id)
        super().__init__(f"Inspection point not found: {point_id}")


class ArtifactNotFoundError(NotFoundError):
    """No certificate artifact matches the reference."""

    code: str = "ARTIFACT_NOT_FOUND"

    def __init__(self, reference: str):
        self.reference = str(reference)
        super().__init__(f"Certificate artifact not found: {reference}")


class NoCompletedInspectionError(NotFoundError):
    """The door has no completed, non-superseded inspection session."""

    code: str = "NO_COMPLETED_INSPECTION"

    def __init__(self, asset_id: str):
        self.asset_id = str(asset_id)
        super().__init__(f"No completed inspection found for asset {asset_id}")


# ---------------------------------------------------------------------------
# Conflict
# ---------------------------------------------------------------------------


class ConflictError(InspexKernelError):
    """Base for conflicts: refresh and retry the whole operation."""

    code: str = "CONFLICT"


class ActiveInspectionExistsError(ConflictError):
    """An in_progress inspection session already exists for the door."""

    code: str = "ACTIVE_INSPECTION_EXISTS"

    def __init__(self, asset_id: str, session_id: str | None = None):
        self.asset_id = str(asset_id)
        self.session_id = str(session_id) if session_id else None
        super().__init__(
            f"An inspection is already in progress for asset {asset_id}"
        )


class ConcurrentModificationError(ConflictError):
    """A concurrent writer changed the record between read and write."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, entity_type: str, entity_id: str, operation: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.operation = operation
        super().__init__(
            f"{entity_type} {entity_id} was modified by another transaction "
            f"during {operation}"
        )


class DuplicateAssetError(ConflictError):
    """A door with this serial number is already registered."""

    code: str = "DUPLICATE_ASSET"

    def __init__(self, serial_number: str):
        self.serial_number = serial_number
        super().__init__(f"Asset with serial number {serial_number} already exists")


# ---------------------------------------------------------------------------
# PreconditionFailed
# ---------------------------------------------------------------------------


class PreconditionFailedError(InspexKernelError):
    """Base for blocked operations: state must change before retrying."""

    code: str = "PRECONDITION_FAILED"


class ChecksIncompleteError(PreconditionFailedError):
    """One or more checks in the session are still unset."""

    code: str = "CHECKS_INCOMPLETE"

    def __init__(self, session_id: str, unset_points: list[str]):
        self.session_id = str(session_id)
        self.unset_points = unset_points
        super().__init__(
            f"Cannot complete inspection {session_id}: "
            f"{len(unset_points)} check(s) not evaluated ({', '.join(unset_points)})"
        )


class FailedChecksError(PreconditionFailedError):
    """Certification blocked because checks in the latest session failed."""

    code: str = "FAILED_CHECKS"

    def __init__(self, asset_id: str, session_id: str, failed_points: list[str]):
        self.asset_id = str(asset_id)
        self.session_id = str(session_id)
        self.failed_points = failed_points
        super().__init__(
            f"Cannot certify with failed checks: {', '.join(failed_points)}"
        )


class RejectionReasonRequiredError(PreconditionFailedError):
    """A rejection must carry a non-blank reason."""

    code: str = "REJECTION_REASON_REQUIRED"

    def __init__(self, asset_id: str):
        self.asset_id = str(asset_id)
        super().__init__(f"A rejection reason is required for asset {asset_id}")


class InvalidTransitionError(PreconditionFailedError):
    """The action is not allowed from the door's current state."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, asset_id: str, action: str, current_state: str):
        self.asset_id = str(asset_id)
        self.action = action
        self.current_state = current_state
        super().__init__(
            f"Cannot {action} asset {asset_id} from state {current_state}"
        )


class EmptyChecklistError(PreconditionFailedError):
    """No active inspection points exist, so no session can be started."""

    code: str = "EMPTY_CHECKLIST"

    def __init__(self, asset_id: str):
        self.asset_id = str(asset_id)
        super().__init__(
            f"Cannot start inspection for asset {asset_id}: checklist has no active points"
        )


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


class StorageError(InspexKernelError):
    """Base for durable document storage failures."""

    code: str = "STORAGE_ERROR"

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Storage operation failed for {key}: {reason}")


class DocumentWriteError(StorageError):
    code: str = "DOCUMENT_WRITE_FAILED"


class DocumentReadError(StorageError):
    code: str = "DOCUMENT_READ_FAILED"


class DocumentDeleteError(StorageError):
    code: str = "DOCUMENT_DELETE_FAILED"


# ---------------------------------------------------------------------------
# Transient
# ---------------------------------------------------------------------------


class TransientError(InspexKernelError):
    """Base for retryable failures; nothing was committed."""

    code: str = "TRANSIENT"


class CommitFailedError(TransientError):
    """The record store rejected the commit of a transition."""

    code: str = "COMMIT_FAILED"

    def __init__(self, operation: str, asset_id: str, reason: str):
        self.operation = operation
        self.asset_id = str(asset_id)
        self.reason = reason
        super().__init__(
            f"{operation} for asset {asset_id} could not be committed: {reason}"
        )


# ---------------------------------------------------------------------------
# Unauthorized
# ---------------------------------------------------------------------------


class UnauthorizedError(InspexKernelError):
    """Base for authorization failures."""

    code: str = "UNAUTHORIZED"


class RoleNotPermittedError(UnauthorizedError):
    """The caller's role may not perform this operation."""

    code: str = "ROLE_NOT_PERMITTED"

    def __init__(self, operation: str, role: str, allowed_roles: list[str]):
        self.operation = operation
        self.role = role
        self.allowed_roles = allowed_roles
        super().__init__(
            f"Role {role} may not {operation} "
            f"(allowed: {', '.join(allowed_roles)})"
        )


# ---------------------------------------------------------------------------
# Audit / immutability
# ---------------------------------------------------------------------------


class AuditError(InspexKernelError):
    """Base for workflow audit log errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Workflow log hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, entry_id: str, expected_hash: str, actual_hash: str):
        self.entry_id = str(entry_id)
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {entry_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )


class ImmutabilityError(InspexKernelError):
    """Base for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.reason = reason
        super().__init__(
            f"Cannot modify immutable {entity_type} {entity_id}: {reason}"
        )


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(InspexKernelError):
    """Configuration file or environment override is invalid."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, setting: str, reason: str):
        self.setting = setting
        self.reason = reason
        super().__init__(f"Invalid configuration for {setting}: {reason}")
