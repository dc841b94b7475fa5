"""Durable store for certificate records."""

import logging
from datetime import UTC, datetime
from typing import cast
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.certificates.exceptions import AlreadyIssuedError, VerificationCodeTakenError
from app.certificates.models import Certificate, CertificateStatus, CertificateTemplate
from app.core.exceptions import ConflictError
from app.core.repository import BaseRepository

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (CertificateStatus.PENDING, CertificateStatus.GENERATED)


def normalize_code(code: str) -> str:
    return code.strip().upper()


class CertificateRepository(BaseRepository[Certificate]):
    """Queries and writes over the ``certificates`` table.

    Uniqueness of the active certificate per (user, course) is guaranteed by
    a partial unique index; :meth:`reserve` translates the violation into
    :class:`AlreadyIssuedError` so racing callers get a clean answer.
    """

    def __init__(self, db: Session):
        super().__init__(db, Certificate)

    def find_active(self, user_id: UUID, course_id: UUID) -> Certificate | None:
        """Return the PENDING or GENERATED certificate for the pair, if any."""
        result = (
            self.db.query(Certificate)
            .filter(
                Certificate.user_id == user_id,
                Certificate.course_id == course_id,
                Certificate.status.in_(ACTIVE_STATUSES),
            )
            .first()
        )
        return cast(Certificate | None, result)

    def find_unrevoked(self, user_id: UUID, course_id: UUID) -> Certificate | None:
        """Return any certificate for the pair that still blocks re-issuance."""
        result = (
            self.db.query(Certificate)
            .filter(
                Certificate.user_id == user_id,
                Certificate.course_id == course_id,
                Certificate.status != CertificateStatus.REVOKED,
            )
            .first()
        )
        return cast(Certificate | None, result)

    def find_by_code(self, code: str) -> Certificate | None:
        result = (
            self.db.query(Certificate)
            .filter(Certificate.verification_code == normalize_code(code))
            .first()
        )
        return cast(Certificate | None, result)

    def code_exists(self, code: str) -> bool:
        return (
            self.db.query(Certificate.id)
            .filter(Certificate.verification_code == normalize_code(code))
            .first()
            is not None
        )

    def list_failed(
        self,
        older_than: datetime | None = None,
        include_data_failures: bool = False,
    ) -> list[Certificate]:
        """FAILED certificates, oldest failure first.

        Args:
            older_than: Only include records whose last failure happened at or
                before this moment.
            include_data_failures: Also include records whose last failure was
                marked non-retryable.
        """
        query = self.db.query(Certificate).filter(Certificate.status == CertificateStatus.FAILED)
        if older_than is not None:
            query = query.filter(Certificate.failed_at <= older_than)
        if not include_data_failures:
            query = query.filter(
                or_(
                    Certificate.failure_retryable.is_(None),
                    Certificate.failure_retryable.is_(True),
                )
            )
        return cast(list[Certificate], query.order_by(Certificate.failed_at.asc()).all())

    def list_reminder_candidates(
        self, issued_before: datetime, max_downloads: int = 1
    ) -> list[Certificate]:
        """GENERATED certificates issued before a cutoff and rarely downloaded."""
        result = (
            self.db.query(Certificate)
            .filter(
                Certificate.status == CertificateStatus.GENERATED,
                Certificate.issued_at <= issued_before,
                Certificate.download_count <= max_downloads,
            )
            .order_by(Certificate.issued_at.asc())
            .all()
        )
        return cast(list[Certificate], result)

    def list_by_ids(self, certificate_ids: list[UUID]) -> list[Certificate]:
        if not certificate_ids:
            return []
        result = (
            self.db.query(Certificate)
            .filter(Certificate.id.in_(certificate_ids))
            .order_by(Certificate.created_at.asc())
            .all()
        )
        return cast(list[Certificate], result)

    def list_generated(
        self,
        course_id: UUID | None = None,
        template: CertificateTemplate | None = None,
    ) -> list[Certificate]:
        query = self.db.query(Certificate).filter(
            Certificate.status == CertificateStatus.GENERATED
        )
        if course_id is not None:
            query = query.filter(Certificate.course_id == course_id)
        if template is not None:
            query = query.filter(Certificate.template == template)
        return cast(list[Certificate], query.order_by(Certificate.created_at.asc()).all())

    def list_for_user(self, user_id: UUID) -> list[Certificate]:
        result = (
            self.db.query(Certificate)
            .filter(Certificate.user_id == user_id)
            .order_by(Certificate.issued_at.desc())
            .all()
        )
        return cast(list[Certificate], result)

    def list_filtered(
        self,
        status: CertificateStatus | None = None,
        course_id: UUID | None = None,
        user_id: UUID | None = None,
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[list[Certificate], int]:
        query = self.db.query(Certificate)
        if status is not None:
            query = query.filter(Certificate.status == status)
        if course_id is not None:
            query = query.filter(Certificate.course_id == course_id)
        if user_id is not None:
            query = query.filter(Certificate.user_id == user_id)
        total = query.count()
        items = query.order_by(Certificate.created_at.desc()).offset(skip).limit(limit).all()
        return cast(list[Certificate], items), total

    def reserve(self, **fields: object) -> Certificate:
        """Insert a PENDING certificate and commit it.

        Raises:
            AlreadyIssuedError: Another non-revoked certificate exists for the
                same user and course (including one inserted concurrently).
            VerificationCodeTakenError: The verification code was stored by
                another certificate after it was drawn.
        """
        certificate = Certificate(status=CertificateStatus.PENDING, **fields)
        self.db.add(certificate)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            user_id = cast(UUID, fields["user_id"])
            course_id = cast(UUID, fields["course_id"])
            if self.find_unrevoked(user_id, course_id) is not None:
                logger.info(
                    "Lost certificate reservation race for user=%s course=%s", user_id, course_id
                )
                raise AlreadyIssuedError() from e
            code = cast(str, fields["verification_code"])
            if self.code_exists(code):
                raise VerificationCodeTakenError(code) from e
            raise ConflictError("Certificate could not be reserved", resource="certificate") from e
        self.db.refresh(certificate)
        return certificate

    def increment_verification_count(self, certificate_id: UUID) -> None:
        self.db.query(Certificate).filter(Certificate.id == certificate_id).update(
            {
                Certificate.verification_count: Certificate.verification_count + 1,
                Certificate.last_verified_at: datetime.now(UTC),
            },
            synchronize_session=False,
        )
        self.db.commit()

    def increment_download_count(self, certificate_id: UUID) -> None:
        self.db.query(Certificate).filter(Certificate.id == certificate_id).update(
            {
                Certificate.download_count: Certificate.download_count + 1,
                Certificate.last_downloaded_at: datetime.now(UTC),
            },
            synchronize_session=False,
        )
        self.db.commit()
