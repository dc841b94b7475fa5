"""Certificate lifecycle error taxonomy.

Every error carries a stable ``error_code`` so callers (routes, batch jobs,
operators reading logs) can tell user-facing conditions apart from internal,
retryable failures.
"""

from typing import Any

from fastapi import status

from app.core.exceptions import AppError, ConflictError, NotFoundError


class NotEligibleError(AppError):
    """The learner does not satisfy an issuance condition yet (400)."""

    def __init__(self, reason: str, details: dict[str, Any] | None = None):
        self.reason = reason
        super().__init__(
            message=reason,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="NOT_ELIGIBLE",
            details=details,
        )


class AlreadyIssuedError(ConflictError):
    """An active certificate already exists for this user and course (409)."""

    def __init__(self, message: str = "Certificate already issued for this course"):
        super().__init__(message=message, resource="certificate", error_code="ALREADY_ISSUED")


class VerificationCodeTakenError(ConflictError):
    """The drawn verification code was stored by someone else first (409)."""

    def __init__(self, code: str):
        self.code = code
        super().__init__(
            message="Verification code already in use",
            resource="certificate",
            error_code="CODE_TAKEN",
        )


class CertificateNotFoundError(NotFoundError):
    def __init__(self, message: str = "Certificate not found"):
        super().__init__(message=message, resource="certificate")


class InvalidTransitionError(ConflictError):
    """A status change the certificate state machine does not allow (409)."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(
            message=f"Cannot move certificate from {current} to {target}",
            resource="certificate",
            error_code="INVALID_TRANSITION",
        )


class RenderFailureError(AppError):
    """Transient document or storage failure; the record stays FAILED (503)."""

    retryable = True

    def __init__(self, cause: str, certificate_id: str | None = None):
        self.cause = cause
        details = {"certificate_id": certificate_id} if certificate_id else None
        super().__init__(
            message="Certificate generation failed, please try again later",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code="RENDER_FAILURE",
            details=details,
        )


class DataFailureError(AppError):
    """Required certificate content is missing or malformed (422).

    Retrying will not help until the underlying data is fixed.
    """

    retryable = False

    def __init__(self, fields: list[str], certificate_id: str | None = None):
        self.fields = fields
        details: dict[str, Any] = {"fields": fields}
        if certificate_id:
            details["certificate_id"] = certificate_id
        super().__init__(
            message=f"Certificate data is incomplete: {', '.join(fields)}",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="DATA_FAILURE",
            details=details,
        )


class EvaluationFailedError(AppError):
    """A completion-facts collaborator could not be read (503)."""

    def __init__(self, source: str):
        self.source = source
        super().__init__(
            message="Could not evaluate certificate eligibility, please try again later",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code="EVALUATION_FAILED",
            details={"source": source},
        )


class CodeGenerationError(AppError):
    def __init__(self, attempts: int):
        super().__init__(
            message=f"Could not mint a unique verification code after {attempts} attempts",
            error_code="CODE_GENERATION_FAILED",
        )
