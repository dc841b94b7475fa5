import logging
from dataclasses import asdict
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from app.auth.dependencies import require_admin
from app.auth.models.user import User
from app.certificates.dependencies import get_certificate_service
from app.certificates.models import CertificateStatus
from app.certificates.schemas.analytics import CertificateAnalyticsResponse
from app.certificates.schemas.certificate import (
    AdminCertificateListResponse,
    AdminCertificateResponse,
    BulkRegenerateRequest,
    BulkNotifyRequest,
    BulkRegenerateResponse,
    NotificationBatchResponse,
    QueuedTaskResponse,
    RetryFailedRequest,
    RetryFailedResponse,
    RevokeCertificateRequest,
    SendRemindersRequest,
)
from app.certificates.services.analytics_service import CertificateAnalyticsService
from app.certificates.services.certificate_service import CertificateService
from app.certificates.tasks import (
    bulk_regenerate_certificates_task,
    retry_failed_certificates_task,
    send_certificate_reminders_task,
)
from app.core.constants import ADMIN_BATCH_RATE_LIMIT, DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from app.core.rate_limit import limiter
from app.db.session import get_db

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/certificates", response_model=AdminCertificateListResponse)
async def list_certificates(
    status: CertificateStatus | None = Query(default=None),
    course_id: UUID | None = Query(default=None),
    user_id: UUID | None = Query(default=None),
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    _admin: User = Depends(require_admin),
    service: CertificateService = Depends(get_certificate_service),
) -> AdminCertificateListResponse:
    """List certificates with optional status, course and user filters."""
    items, total = service.list_certificates(
        status=status, course_id=course_id, user_id=user_id, skip=skip, limit=limit
    )
    return AdminCertificateListResponse(
        items=[AdminCertificateResponse.model_validate(c) for c in items],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/certificates/analytics", response_model=CertificateAnalyticsResponse)
async def get_certificate_analytics(
    date_from: datetime | None = Query(default=None),
    date_to: datetime | None = Query(default=None),
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> CertificateAnalyticsResponse:
    """Certificate issuance, download and verification statistics."""
    return CertificateAnalyticsService.get_analytics(db, date_from=date_from, date_to=date_to)


@router.post("/certificates/{certificate_id}/revoke", response_model=AdminCertificateResponse)
async def revoke_certificate(
    certificate_id: UUID,
    payload: RevokeCertificateRequest,
    admin: User = Depends(require_admin),
    service: CertificateService = Depends(get_certificate_service),
) -> AdminCertificateResponse:
    """Revoke an issued certificate. The stored PDF is kept for audit."""
    certificate = service.revoke(certificate_id, payload.reason, actor_id=admin.id)
    return AdminCertificateResponse.model_validate(certificate)


@router.post(
    "/certificates/{certificate_id}/regenerate", response_model=AdminCertificateResponse
)
async def regenerate_certificate(
    certificate_id: UUID,
    _admin: User = Depends(require_admin),
    service: CertificateService = Depends(get_certificate_service),
) -> AdminCertificateResponse:
    """Re-render a certificate PDF from its stored snapshot."""
    certificate = service.regenerate(certificate_id)
    return AdminCertificateResponse.model_validate(certificate)


@router.post(
    "/certificates/bulk-regenerate",
    response_model=BulkRegenerateResponse | QueuedTaskResponse,
)
@limiter.limit(ADMIN_BATCH_RATE_LIMIT)
async def bulk_regenerate_certificates(
    request: Request,
    payload: BulkRegenerateRequest,
    async_mode: bool = Query(
        default=False,
        description="If true, run as a background Celery task and return its task_id.",
    ),
    admin: User = Depends(require_admin),
    service: CertificateService = Depends(get_certificate_service),
) -> BulkRegenerateResponse | QueuedTaskResponse:
    """Re-render every generated certificate matching the filter."""
    if async_mode:
        task = bulk_regenerate_certificates_task.delay(
            course_id=str(payload.course_id) if payload.course_id else None,
            template=payload.template.value if payload.template else None,
        )
        logger.info("Admin %s queued bulk regenerate task %s", admin.id, task.id)
        return QueuedTaskResponse(task_id=task.id)

    result = service.bulk_regenerate(course_id=payload.course_id, template=payload.template)
    return BulkRegenerateResponse(**asdict(result))


@router.post(
    "/certificates/retry-failed",
    response_model=RetryFailedResponse | QueuedTaskResponse,
)
@limiter.limit(ADMIN_BATCH_RATE_LIMIT)
async def retry_failed_certificates(
    request: Request,
    payload: RetryFailedRequest,
    async_mode: bool = Query(
        default=False,
        description="If true, run as a background Celery task and return its task_id.",
    ),
    admin: User = Depends(require_admin),
    service: CertificateService = Depends(get_certificate_service),
) -> RetryFailedResponse | QueuedTaskResponse:
    """Re-attempt generation of failed certificates."""
    if async_mode:
        task = retry_failed_certificates_task.delay(
            max_retries=payload.max_retries,
            older_than=payload.older_than.isoformat() if payload.older_than else None,
            include_data_failures=payload.include_data_failures,
        )
        logger.info("Admin %s queued retry-failed task %s", admin.id, task.id)
        return QueuedTaskResponse(task_id=task.id)

    result = service.retry_failed(
        max_retries=payload.max_retries,
        older_than=payload.older_than,
        include_data_failures=payload.include_data_failures,
    )
    return RetryFailedResponse(**asdict(result))


@router.post(
    "/certificates/send-reminders",
    response_model=NotificationBatchResponse | QueuedTaskResponse,
)
@limiter.limit(ADMIN_BATCH_RATE_LIMIT)
async def send_certificate_reminders(
    request: Request,
    payload: SendRemindersRequest,
    async_mode: bool = Query(
        default=False,
        description="If true, run as a background Celery task and return its task_id.",
    ),
    admin: User = Depends(require_admin),
    service: CertificateService = Depends(get_certificate_service),
) -> NotificationBatchResponse | QueuedTaskResponse:
    """Remind owners of old certificates they have barely downloaded."""
    if async_mode:
        task = send_certificate_reminders_task.delay(days_old=payload.days_old)
        logger.info("Admin %s queued certificate reminders task %s", admin.id, task.id)
        return QueuedTaskResponse(task_id=task.id)

    result = service.send_reminders(days_old=payload.days_old)
    return NotificationBatchResponse(**asdict(result))


@router.post("/certificates/notify", response_model=NotificationBatchResponse)
@limiter.limit(ADMIN_BATCH_RATE_LIMIT)
async def send_bulk_certificate_notifications(
    request: Request,
    payload: BulkNotifyRequest,
    _admin: User = Depends(require_admin),
    service: CertificateService = Depends(get_certificate_service),
) -> NotificationBatchResponse:
    """Re-send the "certificate issued" notification for the given certificates."""
    result = service.send_bulk_notifications(payload.certificate_ids)
    return NotificationBatchResponse(**asdict(result))
