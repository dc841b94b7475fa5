"""Certificate schemas."""

from app.certificates.schemas.analytics import (
    CertificateAnalyticsResponse,
    CourseCertificateCount,
    MonthlyIssuance,
)
from app.certificates.schemas.certificate import (
    AdminCertificateListResponse,
    AdminCertificateResponse,
    BatchFailureResponse,
    BulkRegenerateRequest,
    BulkRegenerateResponse,
    CertificateResponse,
    CertificateVerifyResponse,
    EligibilityDetailsResponse,
    EligibilityResponse,
    GenerateCertificateRequest,
    PublicCertificateResponse,
    QueuedTaskResponse,
    RetryFailedRequest,
    RetryFailedResponse,
    RevokeCertificateRequest,
)

__all__ = [
    "AdminCertificateListResponse",
    "AdminCertificateResponse",
    "BatchFailureResponse",
    "BulkRegenerateRequest",
    "BulkRegenerateResponse",
    "CertificateAnalyticsResponse",
    "CertificateResponse",
    "CertificateVerifyResponse",
    "CourseCertificateCount",
    "EligibilityDetailsResponse",
    "EligibilityResponse",
    "GenerateCertificateRequest",
    "MonthlyIssuance",
    "PublicCertificateResponse",
    "QueuedTaskResponse",
    "RetryFailedRequest",
    "RetryFailedResponse",
    "RevokeCertificateRequest",
]
