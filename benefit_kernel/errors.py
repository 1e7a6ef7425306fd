"""
Kernel error taxonomy.

Every error carries a machine-readable code, a human-readable message, a
detail dict and, where one exists, an alternative pathway the caller can
offer the applicant instead of a bare failure.
"""

from typing import List, Optional


class KernelError(Exception):
    """Base class for every error the kernel surfaces to callers."""

    code = "kernel_error"

    def __init__(
        self,
        message: str,
        *,
        detail: Optional[dict] = None,
        alternative_pathway: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}
        self.alternative_pathway = alternative_pathway

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "detail": self.detail,
            "alternative_pathway": self.alternative_pathway,
        }


class ValidationError(KernelError):
    """Malformed criterion, type mismatch, zero-weight scheme or bad input."""

    code = "validation_error"


class InvalidTransitionError(ValidationError):
    """The requested step action is not allowed from the step's current state."""

    code = "invalid_transition"


class NotFoundError(KernelError):
    code = "not_found"


class CycleDetectedError(KernelError):
    """The catalog's prerequisite relation contains a cycle."""

    code = "cycle_detected"

    def __init__(self, participants: List[str], message: Optional[str] = None):
        self.participants = list(participants)
        super().__init__(
            message or f"Prerequisite cycle among document types: {' -> '.join(self.participants)}",
            detail={"participants": self.participants},
        )


class ConflictError(KernelError):
    """The caller's observed workflow version is no longer current."""

    code = "version_conflict"

    def __init__(self, workflow_id: str, expected_version: int, actual_version: Optional[int]):
        self.workflow_id = workflow_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Workflow {workflow_id} is at version {actual_version}, "
            f"not {expected_version}. Re-read status and retry.",
            detail={
                "workflow_id": workflow_id,
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
        )


class TransientFailureError(KernelError):
    """An external submission hiccup. Retried up to the configured cap."""

    code = "transient_failure"


class AuthorityUnavailableError(TransientFailureError):
    """The authority could not be reached. Transient for submissions only."""

    code = "authority_unavailable"
