"""Tests for public certificate verification."""

import pytest

from app.certificates.models import Certificate, CertificateStatus
from app.certificates.services.verification_service import (
    NOT_FOUND_MESSAGE,
    REVOKED_MESSAGE,
    VALID_MESSAGE,
    VerificationService,
)
from tests.utils.factories import create_certificate_factory


@pytest.fixture
def verifier(db_session):
    return VerificationService(db_session)


def test_generated_certificate_is_valid(verifier, db_session, test_user, test_course):
    certificate = create_certificate_factory(db_session, test_user, test_course)

    result = verifier.verify(certificate.verification_code)

    assert result.is_valid is True
    assert result.message == VALID_MESSAGE
    assert result.certificate.verification_code == certificate.verification_code
    assert result.certificate.course_name == test_course.title
    assert not hasattr(result.certificate, "user_id")


def test_lookup_is_case_insensitive(verifier, db_session, test_user, test_course):
    certificate = create_certificate_factory(db_session, test_user, test_course)

    result = verifier.verify(f" {certificate.verification_code.lower()} ")

    assert result.is_valid is True


def test_successful_verification_is_counted(verifier, db_session, test_user, test_course):
    certificate = create_certificate_factory(db_session, test_user, test_course)

    verifier.verify(certificate.verification_code)
    verifier.verify(certificate.verification_code)

    db_session.refresh(certificate)
    assert certificate.verification_count == 2
    assert certificate.last_verified_at is not None


@pytest.mark.parametrize(
    "status", [CertificateStatus.PENDING, CertificateStatus.FAILED]
)
def test_unfinished_certificates_look_unknown(verifier, db_session, test_user, test_course, status):
    certificate = create_certificate_factory(db_session, test_user, test_course, status=status)

    result = verifier.verify(certificate.verification_code)

    assert result.is_valid is False
    assert result.message == NOT_FOUND_MESSAGE
    assert result.certificate is None


def test_revoked_certificate(verifier, db_session, test_user, test_course):
    certificate = create_certificate_factory(
        db_session, test_user, test_course, status=CertificateStatus.REVOKED
    )

    result = verifier.verify(certificate.verification_code)

    assert result.is_valid is False
    assert result.message == REVOKED_MESSAGE
    assert result.revoked_at is not None
    db_session.refresh(certificate)
    assert certificate.verification_count == 0


@pytest.mark.parametrize("code", ["", "not-a-code", "CERT-2026-ZZZZZZZZZ", "CERT-2026-00000000"])
def test_malformed_and_unknown_codes(verifier, db_session, code):
    result = verifier.verify(code)

    assert result.is_valid is False
    assert result.message == NOT_FOUND_MESSAGE
    assert db_session.query(Certificate).count() == 0
