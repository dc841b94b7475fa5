"""Tests for the certificate state machine and snapshot guards."""

import pytest

from app.certificates.exceptions import InvalidTransitionError
from app.certificates.models import Certificate, CertificateStatus
from tests.utils.factories import create_certificate_factory


@pytest.mark.parametrize(
    "start, target",
    [
        (CertificateStatus.PENDING, CertificateStatus.GENERATED),
        (CertificateStatus.PENDING, CertificateStatus.FAILED),
        (CertificateStatus.FAILED, CertificateStatus.GENERATED),
        (CertificateStatus.FAILED, CertificateStatus.FAILED),
        (CertificateStatus.GENERATED, CertificateStatus.REVOKED),
    ],
)
def test_allowed_transitions(start, target):
    certificate = Certificate(status=start)
    certificate.transition_to(target)
    assert certificate.status == target


@pytest.mark.parametrize(
    "start, target",
    [
        (CertificateStatus.PENDING, CertificateStatus.REVOKED),
        (CertificateStatus.FAILED, CertificateStatus.REVOKED),
        (CertificateStatus.GENERATED, CertificateStatus.FAILED),
        (CertificateStatus.GENERATED, CertificateStatus.PENDING),
        (CertificateStatus.REVOKED, CertificateStatus.GENERATED),
    ],
)
def test_rejected_transitions(start, target):
    certificate = Certificate(status=start)

    with pytest.raises(InvalidTransitionError) as exc_info:
        certificate.transition_to(target)

    assert certificate.status == start
    assert exc_info.value.status_code == 409


def test_snapshot_fields_are_immutable(db_session, test_user, test_course):
    certificate = create_certificate_factory(db_session, test_user, test_course)

    with pytest.raises(ValueError, match="immutable"):
        certificate.student_name = "Someone Else"
    with pytest.raises(ValueError, match="immutable"):
        certificate.verification_code = "CERT-2026-00000000"


def test_bookkeeping_fields_stay_mutable(db_session, test_user, test_course):
    certificate = create_certificate_factory(db_session, test_user, test_course)

    certificate.download_count = 3
    certificate.file_path = "certificates/other.pdf"
    db_session.commit()

    db_session.refresh(certificate)
    assert certificate.download_count == 3
