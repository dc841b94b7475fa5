"""Outbound notifications fired after certificate state changes."""

import logging
from typing import Protocol

from sqlalchemy.orm import Session

from app.certificates.models import Certificate
from app.notifications.models.notification import (
    Notification,
    NotificationStatus,
    NotificationType,
)

logger = logging.getLogger(__name__)


class CertificateNotifier(Protocol):
    def certificate_issued(self, certificate: Certificate) -> None: ...

    def certificate_revoked(self, certificate: Certificate) -> None: ...

    def certificate_reminder(self, certificate: Certificate) -> None: ...


class NullCertificateNotifier:
    def certificate_issued(self, certificate: Certificate) -> None:
        return None

    def certificate_revoked(self, certificate: Certificate) -> None:
        return None

    def certificate_reminder(self, certificate: Certificate) -> None:
        return None


class InAppCertificateNotifier:
    """Records in-app notifications for the certificate owner."""

    def __init__(self, db: Session):
        self.db = db

    def _record(
        self,
        certificate: Certificate,
        notification_type: NotificationType,
        subject: str,
        body: str,
    ) -> None:
        notification = Notification(
            user_id=certificate.user_id,
            notification_type=notification_type.value,
            subject=subject,
            body=body,
            status=NotificationStatus.SENT.value,
            course_id=certificate.course_id,
            certificate_id=certificate.id,
        )
        self.db.add(notification)
        self.db.commit()
        logger.info(
            "Recorded %s notification for certificate %s",
            notification_type.value,
            certificate.id,
        )

    def certificate_issued(self, certificate: Certificate) -> None:
        self._record(
            certificate,
            NotificationType.CERTIFICATE_ISSUED,
            subject=f"Your certificate for {certificate.course_name} is ready",
            body=(
                f"Congratulations {certificate.student_name}! "
                f"Verification code: {certificate.verification_code}. "
                f"Anyone can verify it at {certificate.verification_url}"
            ),
        )

    def certificate_revoked(self, certificate: Certificate) -> None:
        self._record(
            certificate,
            NotificationType.CERTIFICATE_REVOKED,
            subject=f"Your certificate for {certificate.course_name} was revoked",
            body=f"Reason: {certificate.revoked_reason}",
        )

    def certificate_reminder(self, certificate: Certificate) -> None:
        self._record(
            certificate,
            NotificationType.CERTIFICATE_REMINDER,
            subject=f"Don't forget your certificate for {certificate.course_name}",
            body=(
                f"Your certificate {certificate.verification_code} is waiting for you. "
                f"Download it or share {certificate.verification_url}"
            ),
        )
