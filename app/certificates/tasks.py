"""Celery tasks for certificate issuance and bulk repair."""

import logging
from dataclasses import asdict
from datetime import datetime
from typing import Any
from uuid import UUID

from app.certificates.dependencies import build_certificate_service
from app.certificates.models import CertificateTemplate
from app.core.celery_app import celery_app
from app.db.session import SessionLocal

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=0)
def retry_failed_certificates_task(
    self: Any,
    max_retries: int | None = None,
    older_than: str | None = None,
    include_data_failures: bool = False,
) -> dict[str, Any]:
    """Re-attempt generation for every FAILED certificate."""
    db = SessionLocal()
    try:
        service = build_certificate_service(db)
        result = service.retry_failed(
            max_retries=max_retries,
            older_than=datetime.fromisoformat(older_than) if older_than else None,
            include_data_failures=include_data_failures,
        )
        return asdict(result)
    finally:
        db.close()


@celery_app.task(bind=True, max_retries=0)
def bulk_regenerate_certificates_task(
    self: Any,
    course_id: str | None = None,
    template: str | None = None,
) -> dict[str, Any]:
    """Re-render GENERATED certificates, optionally for one course or template."""
    db = SessionLocal()
    try:
        service = build_certificate_service(db)
        result = service.bulk_regenerate(
            course_id=UUID(course_id) if course_id else None,
            template=CertificateTemplate(template) if template else None,
        )
        return asdict(result)
    finally:
        db.close()


@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def issue_certificate_on_completion_task(
    self: Any,
    user_id: str,
    course_id: str,
) -> dict[str, Any]:
    """Issue a certificate after a learner completes a course, if they qualify."""
    db = SessionLocal()
    try:
        service = build_certificate_service(db)
        outcome = service.issue_if_eligible(UUID(user_id), UUID(course_id))
        if outcome.generated and outcome.certificate is not None:
            certificate_id = str(outcome.certificate.id)
            logger.info("Issued certificate %s on course completion", certificate_id)
            return {"generated": True, "certificate_id": certificate_id}
        return {"generated": False, "reason": outcome.reason}
    except Exception as exc:
        logger.error(
            "Automatic certificate issuance for user=%s course=%s errored: %s",
            user_id,
            course_id,
            exc,
        )
        raise self.retry(exc=exc) from exc
    finally:
        db.close()


@celery_app.task(bind=True, max_retries=0)
def send_certificate_reminders_task(
    self: Any,
    days_old: int | None = None,
) -> dict[str, Any]:
    """Remind owners of old, rarely downloaded certificates."""
    db = SessionLocal()
    try:
        service = build_certificate_service(db)
        return asdict(service.send_reminders(days_old=days_old))
    finally:
        db.close()
