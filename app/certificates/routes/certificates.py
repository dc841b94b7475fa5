from uuid import UUID

from fastapi import APIRouter, Depends, Request, Response, status

from app.auth.dependencies import get_current_user
from app.auth.models.user import User
from app.certificates.dependencies import get_certificate_service, get_verification_service
from app.certificates.schemas.certificate import (
    CertificateResponse,
    CertificateVerifyResponse,
    EligibilityDetailsResponse,
    EligibilityResponse,
    GenerateCertificateRequest,
    PublicCertificateResponse,
)
from app.certificates.services.certificate_service import CertificateService, CompletionFacts
from app.certificates.services.verification_service import VerificationService
from app.core.constants import VERIFY_RATE_LIMIT
from app.core.rate_limit import limiter

router = APIRouter()


@router.post(
    "/certificates/courses/{course_id}",
    response_model=CertificateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def generate_certificate(
    course_id: UUID,
    payload: GenerateCertificateRequest | None = None,
    current_user: User = Depends(get_current_user),
    service: CertificateService = Depends(get_certificate_service),
) -> CertificateResponse:
    """Generate a certificate for a completed course."""
    payload = payload or GenerateCertificateRequest()
    facts = CompletionFacts(
        completion_date=payload.completion_date,
        final_score=payload.final_score,
        time_spent_minutes=payload.time_spent_minutes,
        template=payload.template,
        achievements=tuple(payload.achievements),
    )
    certificate = service.generate_certificate(current_user.id, course_id, facts)
    return CertificateResponse.model_validate(certificate)


@router.get(
    "/certificates/courses/{course_id}/eligibility",
    response_model=EligibilityResponse,
)
async def get_certificate_eligibility(
    course_id: UUID,
    current_user: User = Depends(get_current_user),
    service: CertificateService = Depends(get_certificate_service),
) -> EligibilityResponse:
    """Check whether the current user can receive a certificate for a course."""
    result = service.check_eligibility(current_user.id, course_id)
    return EligibilityResponse(
        eligible=result.eligible,
        reason=result.reason,
        details=EligibilityDetailsResponse(**result.details.as_dict()),
    )


@router.get("/certificates/me", response_model=list[CertificateResponse])
async def get_my_certificates(
    current_user: User = Depends(get_current_user),
    service: CertificateService = Depends(get_certificate_service),
) -> list[CertificateResponse]:
    """Get all certificates for the current user, newest first."""
    return [
        CertificateResponse.model_validate(certificate)
        for certificate in service.list_for_user(current_user.id)
    ]


@router.get("/certificates/user/{user_id}", response_model=list[CertificateResponse])
async def get_user_certificates(
    user_id: UUID,
    current_user: User = Depends(get_current_user),
    service: CertificateService = Depends(get_certificate_service),
) -> list[CertificateResponse]:
    """Get a user's certificates (the user themselves or an admin)."""
    certificates = service.list_user_certificates(
        user_id, actor_id=current_user.id, is_admin=current_user.is_admin
    )
    return [CertificateResponse.model_validate(certificate) for certificate in certificates]


@router.get("/certificates/verify/{code}", response_model=CertificateVerifyResponse)
@limiter.limit(VERIFY_RATE_LIMIT)
async def verify_certificate(
    request: Request,
    code: str,
    service: VerificationService = Depends(get_verification_service),
) -> CertificateVerifyResponse:
    """Verify a certificate by its code (public endpoint)."""
    result = service.verify(code)
    return CertificateVerifyResponse(
        is_valid=result.is_valid,
        message=result.message,
        certificate=(
            PublicCertificateResponse.model_validate(result.certificate)
            if result.certificate
            else None
        ),
        revoked_at=result.revoked_at,
    )


@router.get("/certificates/{certificate_id}/download")
async def download_certificate(
    certificate_id: UUID,
    current_user: User = Depends(get_current_user),
    service: CertificateService = Depends(get_certificate_service),
) -> Response:
    """Download a certificate PDF (owner or admin)."""
    artifact = service.get_artifact(
        certificate_id, actor_id=current_user.id, is_admin=current_user.is_admin
    )
    return Response(
        content=artifact.content,
        media_type=artifact.mime_type,
        headers={"Content-Disposition": f'attachment; filename="{artifact.filename}"'},
    )
