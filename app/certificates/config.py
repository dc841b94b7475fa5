from dataclasses import dataclass

from app.certificates.models import CertificateTemplate
from app.core.config import Settings
from app.core.constants import VERIFICATION_PATH


@dataclass(frozen=True)
class CertificateConfig:
    """Certificate subsystem configuration, built once per process.

    Passed explicitly to the code generator, the renderer and the lifecycle
    service instead of having them read module-level settings.
    """

    code_prefix: str = "CERT"
    code_max_attempts: int = 5
    verification_base_url: str = "http://localhost:5173/verify"
    storage_folder: str = "certificates"
    issuer_name: str = "Learning Platform"
    default_template: CertificateTemplate = CertificateTemplate.STANDARD
    batch_workers: int = 4
    retry_max_attempts: int = 3
    reminder_days: int = 7

    @classmethod
    def from_settings(cls, settings: Settings) -> "CertificateConfig":
        return cls(
            code_prefix=settings.CERTIFICATE_CODE_PREFIX.upper(),
            code_max_attempts=settings.CERTIFICATE_CODE_MAX_ATTEMPTS,
            verification_base_url=f"{settings.FRONTEND_URL.rstrip('/')}{VERIFICATION_PATH}",
            storage_folder=settings.CERTIFICATE_STORAGE_FOLDER,
            issuer_name=settings.CERTIFICATE_ISSUER_NAME,
            default_template=CertificateTemplate(settings.CERTIFICATE_DEFAULT_TEMPLATE),
            batch_workers=max(1, settings.CERTIFICATE_BATCH_WORKERS),
            retry_max_attempts=settings.CERTIFICATE_RETRY_MAX_ATTEMPTS,
            reminder_days=settings.CERTIFICATE_REMINDER_DAYS,
        )

    def verification_url(self, code: str) -> str:
        return f"{self.verification_base_url}/{code}"
