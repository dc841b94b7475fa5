"""Tests for the certificate lifecycle service."""

import re
import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.certificates.exceptions import (
    AlreadyIssuedError,
    CertificateNotFoundError,
    CodeGenerationError,
    DataFailureError,
    NotEligibleError,
    RenderFailureError,
)
from app.certificates.models import Certificate, CertificateStatus, CertificateTemplate
from app.certificates.services.certificate_service import CertificateService, CompletionFacts
from app.certificates.services.code_generator import VerificationCodeGenerator
from app.certificates.services.verification_service import (
    NOT_FOUND_MESSAGE,
    REVOKED_MESSAGE,
    VerificationService,
)
from app.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.core.storage import StorageError
from app.db.session import Base
from app.notifications.models.notification import Notification, NotificationType
from tests.utils.factories import (
    complete_course_factory,
    complete_lessons_factory,
    create_certificate_factory,
    create_course_factory,
    create_user_factory,
    enroll_user_factory,
    get_course_lessons,
)

CODE_RE = re.compile(r"^[A-Z]+-\d{4}-[A-Z0-9]{8}$")


class FlakyStorage:
    """Wraps a storage backend and fails the first ``failures`` uploads."""

    def __init__(self, inner, failures=0):
        self.inner = inner
        self.failures = failures
        self.uploads = 0

    def upload(self, file_content, folder, filename, content_type=None):
        self.uploads += 1
        if self.failures > 0:
            self.failures -= 1
            raise StorageError("storage temporarily unavailable")
        return self.inner.upload(file_content, folder, filename, content_type)

    def read(self, path):
        return self.inner.read(path)

    def exists(self, path):
        return self.inner.exists(path)


def _service(db_session, certificate_config, storage, **kwargs):
    return CertificateService(db_session, certificate_config, storage, **kwargs)


class TestGenerateCertificate:
    def test_happy_path(self, certificate_service, storage, completed_course, test_user):
        certificate = certificate_service.generate_certificate(test_user.id, completed_course.id)

        assert certificate.status == CertificateStatus.GENERATED
        assert CODE_RE.match(certificate.verification_code)
        assert certificate.final_score == 92
        assert certificate.student_name == "Ada Learner"
        assert certificate.course_name == "Advanced Python"
        assert certificate.time_spent_minutes == 50
        assert certificate.template == CertificateTemplate.STANDARD
        assert certificate.verification_url == (
            f"https://learn.example.com/verify/{certificate.verification_code}"
        )
        assert certificate.file_path == f"certificates/{certificate.id}.pdf"
        assert certificate.generation_attempts == 1
        assert certificate.snapshot_metadata["completed_lessons"] == 5
        assert certificate.snapshot_metadata["skills"] == ["Python", "Testing"]
        assert storage.read(certificate.file_path).startswith(b"%PDF")

    def test_caller_facts_override_defaults(
        self, certificate_service, completed_course, test_user
    ):
        completed = datetime(2026, 1, 15, tzinfo=UTC)
        facts = CompletionFacts(
            completion_date=completed,
            final_score=97,
            time_spent_minutes=420,
            template=CertificateTemplate.CUSTOM,
            achievements=("Perfect attendance",),
        )

        certificate = certificate_service.generate_certificate(
            test_user.id, completed_course.id, facts
        )

        assert certificate.final_score == 97
        assert certificate.time_spent_minutes == 420
        assert certificate.template == CertificateTemplate.CUSTOM
        assert certificate.completion_date.date() == completed.date()
        assert certificate.snapshot_metadata["achievements"] == ["Perfect attendance"]

    def test_three_of_five_lessons_is_not_eligible(
        self, certificate_service, db_session, test_user, test_course
    ):
        enroll_user_factory(db_session, test_user, test_course)
        lessons = get_course_lessons(db_session, test_course)
        complete_lessons_factory(db_session, test_user, lessons[:3])

        with pytest.raises(NotEligibleError) as exc_info:
            certificate_service.generate_certificate(test_user.id, test_course.id)

        assert exc_info.value.reason == "2 lessons remaining to complete"
        assert exc_info.value.details["completed_lessons"] == 3
        assert db_session.query(Certificate).count() == 0

    def test_second_call_is_already_issued(
        self, certificate_service, db_session, completed_course, test_user
    ):
        certificate_service.generate_certificate(test_user.id, completed_course.id)

        with pytest.raises(AlreadyIssuedError):
            certificate_service.generate_certificate(test_user.id, completed_course.id)

        assert db_session.query(Certificate).count() == 1

    @pytest.mark.parametrize(
        "facts, field",
        [
            (CompletionFacts(final_score=101), "final_score"),
            (CompletionFacts(time_spent_minutes=-1), "time_spent_minutes"),
            (
                CompletionFacts(completion_date=datetime.now(UTC) + timedelta(days=2)),
                "completion_date",
            ),
        ],
    )
    def test_invalid_facts(self, certificate_service, completed_course, test_user, facts, field):
        with pytest.raises(ValidationError) as exc_info:
            certificate_service.generate_certificate(test_user.id, completed_course.id, facts)

        assert exc_info.value.details == {"field": field}

    def test_storage_outage_leaves_failed_record(
        self, db_session, certificate_config, storage, completed_course, test_user
    ):
        service = _service(db_session, certificate_config, FlakyStorage(storage, failures=1))

        with pytest.raises(RenderFailureError):
            service.generate_certificate(test_user.id, completed_course.id)

        certificate = db_session.query(Certificate).one()
        assert certificate.status == CertificateStatus.FAILED
        assert certificate.failure_retryable is True
        assert "storage temporarily unavailable" in certificate.failure_reason
        assert certificate.failed_at is not None
        assert certificate.file_path is None

    def test_failed_record_blocks_new_generation(
        self, db_session, certificate_config, storage, completed_course, test_user
    ):
        service = _service(db_session, certificate_config, FlakyStorage(storage, failures=1))
        with pytest.raises(RenderFailureError):
            service.generate_certificate(test_user.id, completed_course.id)

        with pytest.raises(AlreadyIssuedError):
            service.generate_certificate(test_user.id, completed_course.id)

    def test_reissue_after_revoke(
        self, certificate_service, db_session, completed_course, test_user, test_admin
    ):
        first = certificate_service.generate_certificate(test_user.id, completed_course.id)
        certificate_service.revoke(first.id, "issued in error", actor_id=test_admin.id)

        second = certificate_service.generate_certificate(test_user.id, completed_course.id)

        assert second.id != first.id
        assert second.verification_code != first.verification_code
        assert second.status == CertificateStatus.GENERATED

    def test_missing_student_name_is_data_failure(
        self, db_session, certificate_config, storage, test_course
    ):
        nameless = create_user_factory(db_session, name="")
        complete_course_factory(db_session, nameless, test_course)
        service = _service(db_session, certificate_config, storage)

        with pytest.raises(DataFailureError) as exc_info:
            service.generate_certificate(nameless.id, test_course.id)

        assert exc_info.value.fields == ["student_name"]
        assert db_session.query(Certificate).count() == 0

    def test_notifier_failure_does_not_undo_issuance(
        self, db_session, certificate_config, storage, completed_course, test_user
    ):
        notifier = MagicMock()
        notifier.certificate_issued.side_effect = RuntimeError("mail relay down")
        service = _service(db_session, certificate_config, storage, notifier=notifier)

        certificate = service.generate_certificate(test_user.id, completed_course.id)

        notifier.certificate_issued.assert_called_once()
        db_session.expire_all()
        stored = db_session.get(Certificate, certificate.id)
        assert stored.status == CertificateStatus.GENERATED

    def test_issued_notification_recorded(
        self, certificate_service, db_session, completed_course, test_user
    ):
        certificate = certificate_service.generate_certificate(test_user.id, completed_course.id)

        notification = db_session.query(Notification).one()
        assert notification.user_id == test_user.id
        assert notification.certificate_id == certificate.id
        assert notification.notification_type == NotificationType.CERTIFICATE_ISSUED.value
        assert certificate.verification_code in notification.body


class TestConcurrentIssuance:
    @pytest.fixture
    def file_session_local(self, tmp_path):
        engine = create_engine(
            f"sqlite:///{tmp_path / 'race.db'}", connect_args={"check_same_thread": False}
        )
        Base.metadata.create_all(engine)
        yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
        engine.dispose()

    def test_race_loser_gets_already_issued(self, file_session_local, certificate_config, storage):
        setup = file_session_local()
        user = create_user_factory(setup, name="Racing Learner")
        course = create_course_factory(setup)
        complete_course_factory(setup, user, course)
        user_id, course_id = user.id, course.id
        setup.close()

        session_a, session_b = file_session_local(), file_session_local()
        service_a = _service(session_a, certificate_config, storage)
        service_b = _service(session_b, certificate_config, storage)

        # Both requests pass the eligibility check before either one inserts
        stale = service_b.check_eligibility(user_id, course_id)
        assert stale.eligible is True
        service_b.evaluator.evaluate = lambda *_args: stale

        winner = service_a.generate_certificate(user_id, course_id)
        with pytest.raises(AlreadyIssuedError):
            service_b.generate_certificate(user_id, course_id)

        check = file_session_local()
        rows = check.query(Certificate).all()
        assert [row.id for row in rows] == [winner.id]
        assert rows[0].status == CertificateStatus.GENERATED
        for session in (session_a, session_b, check):
            session.close()


class TestVerificationCodeRedraw:
    """The generator's pre-check can go stale before the insert commits."""

    FIXED_NOW = datetime(2026, 3, 14, 12, 0, tzinfo=UTC)

    def _service_with_draws(self, db_session, certificate_config, storage, tokens):
        draws = iter(tokens)
        generator = VerificationCodeGenerator(
            certificate_config,
            lambda _code: False,
            clock=lambda: self.FIXED_NOW,
            token_hex=lambda _n: next(draws),
        )
        return _service(db_session, certificate_config, storage, code_generator=generator)

    def test_taken_code_is_redrawn(
        self,
        db_session,
        certificate_config,
        storage,
        completed_course,
        test_user,
        other_user,
    ):
        other_course = create_course_factory(db_session)
        create_certificate_factory(
            db_session, other_user, other_course, verification_code="CERT-2026-ABCDEF01"
        )
        service = self._service_with_draws(
            db_session, certificate_config, storage, ["abcdef01", "abcdef12"]
        )

        certificate = service.generate_certificate(test_user.id, completed_course.id)

        assert certificate.verification_code == "CERT-2026-ABCDEF12"
        assert certificate.verification_url.endswith("/CERT-2026-ABCDEF12")
        assert certificate.status == CertificateStatus.GENERATED
        assert db_session.query(Certificate).count() == 2

    def test_gives_up_after_max_attempts(
        self,
        db_session,
        certificate_config,
        storage,
        completed_course,
        test_user,
        other_user,
    ):
        other_course = create_course_factory(db_session)
        create_certificate_factory(
            db_session, other_user, other_course, verification_code="CERT-2026-ABCDEF01"
        )
        attempts = certificate_config.code_max_attempts
        service = self._service_with_draws(
            db_session, certificate_config, storage, ["abcdef01"] * attempts
        )

        with pytest.raises(CodeGenerationError):
            service.generate_certificate(test_user.id, completed_course.id)

        assert db_session.query(Certificate).count() == 1


class TestRegenerate:
    def test_regenerate_is_idempotent(
        self, certificate_service, storage, completed_course, test_user
    ):
        certificate = certificate_service.generate_certificate(test_user.id, completed_course.id)
        original = storage.read(certificate.file_path)

        first = certificate_service.regenerate(certificate.id)
        first_bytes = storage.read(first.file_path)
        second = certificate_service.regenerate(certificate.id)
        second_bytes = storage.read(second.file_path)

        assert first_bytes == second_bytes == original
        assert second.status == CertificateStatus.GENERATED
        assert second.generation_attempts == 3

    def test_regenerate_requires_generated(
        self, certificate_service, db_session, test_user, test_course
    ):
        failed = create_certificate_factory(
            db_session, test_user, test_course, status=CertificateStatus.FAILED
        )

        with pytest.raises(ConflictError) as exc_info:
            certificate_service.regenerate(failed.id)

        assert exc_info.value.error_code == "INVALID_STATE"

    def test_regenerate_failure_keeps_status(
        self, db_session, certificate_config, storage, test_user, test_course
    ):
        certificate = create_certificate_factory(db_session, test_user, test_course)
        service = _service(db_session, certificate_config, FlakyStorage(storage, failures=1))

        with pytest.raises(RenderFailureError):
            service.regenerate(certificate.id)

        db_session.refresh(certificate)
        assert certificate.status == CertificateStatus.GENERATED

    def test_unknown_certificate(self, certificate_service):
        with pytest.raises(CertificateNotFoundError):
            certificate_service.regenerate(uuid.uuid4())


class TestRevokeAndVerify:
    def test_revoke_then_verify(
        self, certificate_service, db_session, completed_course, test_user, test_admin
    ):
        certificate = certificate_service.generate_certificate(test_user.id, completed_course.id)
        verifier = VerificationService(db_session)

        valid = verifier.verify(certificate.verification_code)
        assert valid.is_valid is True
        assert valid.certificate.student_name == "Ada Learner"

        certificate_service.revoke(certificate.id, "policy violation", actor_id=test_admin.id)

        revoked = verifier.verify(certificate.verification_code)
        assert revoked.is_valid is False
        assert revoked.message == REVOKED_MESSAGE
        assert revoked.certificate is None
        assert revoked.revoked_at is not None

        unknown = verifier.verify("CERT-2026-00000000")
        assert unknown.message == NOT_FOUND_MESSAGE
        assert unknown.message != revoked.message

    def test_revoke_records_audit_fields(
        self, certificate_service, db_session, test_user, test_course, test_admin
    ):
        certificate = create_certificate_factory(db_session, test_user, test_course)

        revoked = certificate_service.revoke(certificate.id, "  policy violation ", test_admin.id)

        assert revoked.status == CertificateStatus.REVOKED
        assert revoked.revoked_reason == "policy violation"
        assert revoked.revoked_by == test_admin.id
        assert revoked.revoked_at is not None
        notification = db_session.query(Notification).one()
        assert notification.notification_type == NotificationType.CERTIFICATE_REVOKED.value

    def test_revoke_requires_reason(self, certificate_service, db_session, test_user, test_course):
        certificate = create_certificate_factory(db_session, test_user, test_course)

        with pytest.raises(ValidationError):
            certificate_service.revoke(certificate.id, "   ", actor_id=test_user.id)

    def test_revoke_twice_is_invalid_transition(
        self, certificate_service, db_session, test_user, test_course, test_admin
    ):
        certificate = create_certificate_factory(
            db_session, test_user, test_course, status=CertificateStatus.REVOKED
        )

        with pytest.raises(ConflictError) as exc_info:
            certificate_service.revoke(certificate.id, "again", actor_id=test_admin.id)

        assert exc_info.value.error_code == "INVALID_TRANSITION"


class TestArtifactAccess:
    @pytest.fixture
    def issued(self, certificate_service, completed_course, test_user):
        return certificate_service.generate_certificate(test_user.id, completed_course.id)

    def test_owner_download_counts(self, certificate_service, db_session, issued, test_user):
        artifact = certificate_service.get_artifact(issued.id, actor_id=test_user.id)

        assert artifact.content.startswith(b"%PDF")
        assert artifact.mime_type == "application/pdf"
        assert artifact.filename == f"certificate-{issued.verification_code}.pdf"
        db_session.refresh(issued)
        assert issued.download_count == 1
        assert issued.last_downloaded_at is not None

    def test_other_user_is_forbidden(self, certificate_service, issued, other_user):
        with pytest.raises(ForbiddenError):
            certificate_service.get_artifact(issued.id, actor_id=other_user.id)

    def test_admin_can_read_revoked_artifact(
        self, certificate_service, issued, test_user, test_admin
    ):
        certificate_service.revoke(issued.id, "policy violation", actor_id=test_admin.id)

        with pytest.raises(NotFoundError):
            certificate_service.get_artifact(issued.id, actor_id=test_user.id)

        artifact = certificate_service.get_artifact(
            issued.id, actor_id=test_admin.id, is_admin=True
        )
        assert artifact.content.startswith(b"%PDF")

    def test_missing_file_is_not_found(
        self, db_session, certificate_service, test_user, test_course
    ):
        certificate = create_certificate_factory(
            db_session, test_user, test_course, file_path="certificates/missing.pdf"
        )

        with pytest.raises(NotFoundError):
            certificate_service.get_artifact(certificate.id, actor_id=test_user.id)


class TestIssueIfEligible:
    def test_issues_when_eligible(self, certificate_service, completed_course, test_user):
        outcome = certificate_service.issue_if_eligible(test_user.id, completed_course.id)

        assert outcome.generated is True
        assert outcome.certificate.status == CertificateStatus.GENERATED

    def test_reports_reason_without_raising(self, certificate_service, test_user, test_course):
        outcome = certificate_service.issue_if_eligible(test_user.id, test_course.id)

        assert outcome.generated is False
        assert outcome.certificate is None
        assert outcome.reason == "Not enrolled in this course"


class TestListing:
    def test_list_for_user_newest_first(self, certificate_service, db_session, test_user):
        older_course = create_course_factory(db_session)
        newer_course = create_course_factory(db_session)
        now = datetime.now(UTC)
        older = create_certificate_factory(
            db_session, test_user, older_course, issued_at=now - timedelta(days=10)
        )
        newer = create_certificate_factory(db_session, test_user, newer_course, issued_at=now)

        assert [c.id for c in certificate_service.list_for_user(test_user.id)] == [
            newer.id,
            older.id,
        ]

    def test_list_certificates_filters(self, certificate_service, db_session, test_user):
        course = create_course_factory(db_session)
        other_course = create_course_factory(db_session)
        create_certificate_factory(db_session, test_user, course)
        failed = create_certificate_factory(
            db_session, test_user, other_course, status=CertificateStatus.FAILED
        )

        items, total = certificate_service.list_certificates(status=CertificateStatus.FAILED)

        assert total == 1
        assert items[0].id == failed.id

    def test_list_certificates_by_user(
        self, certificate_service, db_session, test_user, other_user
    ):
        course = create_course_factory(db_session)
        mine = create_certificate_factory(db_session, test_user, course)
        create_certificate_factory(db_session, other_user, course)

        items, total = certificate_service.list_certificates(user_id=test_user.id)

        assert total == 1
        assert items[0].id == mine.id

    def test_user_certificates_visible_to_owner_and_admin(
        self, certificate_service, db_session, test_user, test_admin
    ):
        course = create_course_factory(db_session)
        issued = create_certificate_factory(db_session, test_user, course)

        as_owner = certificate_service.list_user_certificates(test_user.id, actor_id=test_user.id)
        as_admin = certificate_service.list_user_certificates(
            test_user.id, actor_id=test_admin.id, is_admin=True
        )

        assert [c.id for c in as_owner] == [issued.id]
        assert [c.id for c in as_admin] == [issued.id]

    def test_user_certificates_hidden_from_other_users(
        self, certificate_service, test_user, other_user
    ):
        with pytest.raises(ForbiddenError):
            certificate_service.list_user_certificates(test_user.id, actor_id=other_user.id)
