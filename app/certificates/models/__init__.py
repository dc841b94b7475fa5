"""Certificate models."""

from app.certificates.models.certificate import (
    ALLOWED_TRANSITIONS,
    Certificate,
    CertificateStatus,
    CertificateTemplate,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "Certificate",
    "CertificateStatus",
    "CertificateTemplate",
]
