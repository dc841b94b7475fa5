from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field, field_validator

from app.certificates.models import CertificateStatus, CertificateTemplate
from app.core.datetime_utils import UTCDatetime


class CertificateResponse(BaseModel):
    id: UUID
    user_id: UUID
    course_id: UUID
    verification_code: str
    verification_url: str
    template: CertificateTemplate
    status: CertificateStatus
    student_name: str
    course_name: str
    course_level: str | None = None
    course_category: str | None = None
    instructor_name: str | None = None
    completion_date: UTCDatetime
    issued_at: UTCDatetime
    final_score: int | None = None
    time_spent_minutes: int = 0
    snapshot_metadata: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("snapshot_metadata", "metadata"),
        serialization_alias="metadata",
    )
    file_size: int | None = None
    download_count: int = 0
    verification_count: int = 0
    created_at: UTCDatetime

    class Config:
        from_attributes = True


class AdminCertificateResponse(CertificateResponse):
    """Adds storage and failure bookkeeping that only admins see."""

    file_path: str | None = None
    mime_type: str | None = None
    generation_attempts: int = 0
    last_generated_at: UTCDatetime | None = None
    failure_reason: str | None = None
    failure_retryable: bool | None = None
    failed_at: UTCDatetime | None = None
    revoked_reason: str | None = None
    revoked_by: UUID | None = None
    revoked_at: UTCDatetime | None = None
    last_verified_at: UTCDatetime | None = None
    last_downloaded_at: UTCDatetime | None = None


class AdminCertificateListResponse(BaseModel):
    items: list[AdminCertificateResponse]
    total: int
    skip: int
    limit: int


class GenerateCertificateRequest(BaseModel):
    completion_date: datetime | None = None
    final_score: int | None = Field(default=None, ge=0, le=100)
    time_spent_minutes: int | None = Field(default=None, ge=0)
    template: CertificateTemplate | None = None
    achievements: list[str] = Field(default_factory=list, max_length=20)


class EligibilityDetailsResponse(BaseModel):
    completed_lessons: int
    total_lessons: int
    passed_quizzes: int
    total_quizzes: int
    average_quiz_score: float | None = None


class EligibilityResponse(BaseModel):
    eligible: bool
    reason: str | None = None
    details: EligibilityDetailsResponse


class PublicCertificateResponse(BaseModel):
    verification_code: str
    student_name: str
    course_name: str
    course_level: str | None = None
    course_category: str | None = None
    instructor_name: str | None = None
    completion_date: UTCDatetime
    issued_at: UTCDatetime
    final_score: int | None = None

    class Config:
        from_attributes = True


class CertificateVerifyResponse(BaseModel):
    is_valid: bool
    message: str
    certificate: PublicCertificateResponse | None = None
    revoked_at: UTCDatetime | None = None


class RevokeCertificateRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=1000)

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Reason cannot be blank")
        return v.strip()


class BulkRegenerateRequest(BaseModel):
    course_id: UUID | None = None
    template: CertificateTemplate | None = None


class RetryFailedRequest(BaseModel):
    max_retries: int | None = Field(default=None, ge=1, le=10)
    older_than: datetime | None = None
    include_data_failures: bool = False


class BatchFailureResponse(BaseModel):
    certificate_id: str
    error: str
    error_code: str
    retryable: bool


class BulkRegenerateResponse(BaseModel):
    attempted: int
    succeeded: int
    failed: int
    failures: list[BatchFailureResponse] = Field(default_factory=list)


class RetryFailedResponse(BaseModel):
    attempted: int
    succeeded: int
    still_failed: int
    failures: list[BatchFailureResponse] = Field(default_factory=list)


class QueuedTaskResponse(BaseModel):
    task_id: str
    status: str = "queued"


class SendRemindersRequest(BaseModel):
    days_old: int | None = Field(default=None, ge=0, le=365)


class BulkNotifyRequest(BaseModel):
    certificate_ids: list[UUID] = Field(min_length=1, max_length=500)


class NotificationBatchResponse(BaseModel):
    attempted: int
    sent: int
    failed: int
    failures: list[BatchFailureResponse] = Field(default_factory=list)
