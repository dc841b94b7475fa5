from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from app.certificates.config import CertificateConfig
from app.certificates.services.certificate_service import CertificateService
from app.certificates.services.notifier import InAppCertificateNotifier
from app.certificates.services.verification_service import VerificationService
from app.core.config import settings
from app.core.storage import StorageBackend, get_storage
from app.db.session import get_db


@lru_cache
def get_certificate_config() -> CertificateConfig:
    return CertificateConfig.from_settings(settings)


def get_certificate_storage() -> StorageBackend:
    return get_storage()


def build_certificate_service(
    db: Session,
    config: CertificateConfig | None = None,
    storage: StorageBackend | None = None,
) -> CertificateService:
    """Wire a lifecycle service for a session, outside of a request if needed."""
    return CertificateService(
        db,
        config or get_certificate_config(),
        storage or get_certificate_storage(),
        notifier=InAppCertificateNotifier(db),
    )


def get_certificate_service(
    db: Session = Depends(get_db),
    config: CertificateConfig = Depends(get_certificate_config),
    storage: StorageBackend = Depends(get_certificate_storage),
) -> CertificateService:
    return build_certificate_service(db, config, storage)


def get_verification_service(db: Session = Depends(get_db)) -> VerificationService:
    return VerificationService(db)
