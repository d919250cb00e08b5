"""Error taxonomy shared by the snapshot workflows and provider adapters.

Provider adapters classify every failure once, at their boundary, into a
:class:`CloudError` tagged with an :class:`ErrorKind`. Workflow code branches
on that tag instead of re-parsing messages at each call site.
"""
from __future__ import annotations

from collections.abc import Mapping
from enum import Enum

from .exit_codes import ExitCode


class ErrorKind(str, Enum):
    """Machine-readable category assigned by a provider adapter."""

    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    TRANSPORT = "transport"
    UNKNOWN = "unknown"


class PadctlError(RuntimeError):
    """Base class for errors raised by padctl workflows."""

    exit_code: ExitCode = ExitCode.PROVIDER

    def __init__(self, message: str, *, context: Mapping[str, object] | None = None) -> None:
        """Store *message* and an optional diagnostic *context*."""
        super().__init__(message)
        self.context: dict[str, object] = dict(context or {})


class ValidationError(PadctlError):
    """Raised when input is rejected before any remote call is made."""

    exit_code = ExitCode.VALIDATION


class InvalidNameError(ValidationError):
    """Raised when a snapshot name does not match the allowed pattern."""


class InvalidIdError(ValidationError):
    """Raised when a resource identifier is malformed."""


class CloudError(PadctlError):
    """Failure reported by a cloud provider adapter."""

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind = ErrorKind.UNKNOWN,
        code: str | None = None,
        status: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Create a classified provider error."""
        super().__init__(message, context=context)
        self.kind = kind
        self.code = code
        self.status = status

    @property
    def is_not_found(self) -> bool:
        """Return ``True`` when the resource does not exist (or is not attached)."""
        return self.kind is ErrorKind.NOT_FOUND

    @property
    def is_conflict(self) -> bool:
        """Return ``True`` for transient busy/protected conflicts."""
        return self.kind is ErrorKind.CONFLICT


class CriticalError(PadctlError):
    """Unrecoverable failure that requires operator attention.

    Raised when a volume deletion is rejected permanently or keeps failing
    after the retry budget is spent. A snapshot may already exist at that
    point while the volume itself is left behind.
    """

    exit_code = ExitCode.CRITICAL

    def __init__(
        self,
        message: str,
        *,
        resource_id: str,
        operation: str,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Record the resource and the operation that could not complete."""
        merged = {"resource_id": resource_id, "operation": operation}
        merged.update(dict(context or {}))
        super().__init__(message, context=merged)
        self.resource_id = resource_id
        self.operation = operation


class RootVolumeProtectionError(PadctlError):
    """Raised when a data-disk operation targets the instance boot volume."""

    exit_code = ExitCode.VALIDATION


class SnapshotSourceMissingError(PadctlError):
    """Raised when the volume to snapshot no longer exists."""

    exit_code = ExitCode.VALIDATION


class InstanceOperationError(PadctlError):
    """Raised when an instance power action fails."""


class InstanceTimeoutError(InstanceOperationError):
    """Raised when an instance does not reach the expected state in time."""


class WorkflowError(PadctlError):
    """Failure of a multi-step workflow, tagged with the failing phase."""

    def __init__(
        self,
        message: str,
        *,
        phase: str,
        cleanup_required: bool = False,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Record which *phase* failed and whether manual cleanup is needed."""
        merged = {"phase": phase, "cleanup_required": cleanup_required}
        merged.update(dict(context or {}))
        super().__init__(message, context=merged)
        self.phase = phase
        self.cleanup_required = cleanup_required


class RestoreError(WorkflowError):
    """Raised when a restore fails before the configuration step."""


class RestoreConfigurationError(RestoreError):
    """Raised when the post-restore configuration pass fails.

    The snapshot and the restored volume are preserved for manual recovery;
    ``rollback_succeeded`` tells whether the original disk was re-attached.
    """

    exit_code = ExitCode.CRITICAL

    def __init__(
        self,
        message: str,
        *,
        rollback_succeeded: bool,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Create the error for the ``configure`` phase."""
        merged = {"rollback_succeeded": rollback_succeeded}
        merged.update(dict(context or {}))
        super().__init__(message, phase="configure", cleanup_required=True, context=merged)
        self.rollback_succeeded = rollback_succeeded


class ConfigurationRunError(PadctlError):
    """Raised when the remote configuration runner fails."""


class StackStoreError(PadctlError):
    """Raised when persisted reconciler state cannot be read or written."""

    exit_code = ExitCode.ENVIRONMENT


__all__ = [
    "CloudError",
    "ConfigurationRunError",
    "CriticalError",
    "ErrorKind",
    "InstanceOperationError",
    "InstanceTimeoutError",
    "InvalidIdError",
    "InvalidNameError",
    "PadctlError",
    "RestoreConfigurationError",
    "RestoreError",
    "RootVolumeProtectionError",
    "SnapshotSourceMissingError",
    "StackStoreError",
    "ValidationError",
    "WorkflowError",
]
