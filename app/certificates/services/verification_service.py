import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from app.certificates.models import CertificateStatus
from app.certificates.services.certificate_repository import (
    CertificateRepository,
    normalize_code,
)
from app.certificates.services.code_generator import is_well_formed

logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = "Certificate not found or invalid verification code"
REVOKED_MESSAGE = "Certificate has been revoked"
VALID_MESSAGE = "Certificate is valid"


@dataclass(frozen=True)
class PublicCertificateView:
    """What an anonymous verifier may see. No internal identifiers."""

    verification_code: str
    student_name: str
    course_name: str
    course_level: str | None
    course_category: str | None
    instructor_name: str | None
    completion_date: datetime
    issued_at: datetime
    final_score: int | None


@dataclass(frozen=True)
class VerificationResult:
    is_valid: bool
    message: str
    certificate: PublicCertificateView | None = None
    revoked_at: datetime | None = None


class VerificationService:
    def __init__(self, db: Session):
        self.repository = CertificateRepository(db)

    def verify(self, code: str) -> VerificationResult:
        """Resolve a public verification code.

        Malformed codes, unknown codes and certificates that never finished
        generating all produce the same answer.
        """
        normalized = normalize_code(code or "")
        if not is_well_formed(normalized):
            return VerificationResult(is_valid=False, message=NOT_FOUND_MESSAGE)

        certificate = self.repository.find_by_code(normalized)
        if certificate is None or certificate.status in (
            CertificateStatus.PENDING,
            CertificateStatus.FAILED,
        ):
            return VerificationResult(is_valid=False, message=NOT_FOUND_MESSAGE)

        if certificate.status == CertificateStatus.REVOKED:
            logger.info("Verification attempt for revoked certificate %s", certificate.id)
            return VerificationResult(
                is_valid=False, message=REVOKED_MESSAGE, revoked_at=certificate.revoked_at
            )

        view = PublicCertificateView(
            verification_code=certificate.verification_code,
            student_name=certificate.student_name,
            course_name=certificate.course_name,
            course_level=certificate.course_level,
            course_category=certificate.course_category,
            instructor_name=certificate.instructor_name,
            completion_date=certificate.completion_date,
            issued_at=certificate.issued_at,
            final_score=certificate.final_score,
        )
        self.repository.increment_verification_count(certificate.id)
        return VerificationResult(is_valid=True, message=VALID_MESSAGE, certificate=view)
