"""Certificate lifecycle: issue, regenerate, revoke and bulk repair.

State machine::

    PENDING --render+store ok--> GENERATED --revoke--> REVOKED
    PENDING --render/store error--> FAILED --retry ok--> GENERATED
                                    FAILED --retry exhausted--> FAILED

The artifact is always written before the status that points at it is
committed. Batch operations render in a small thread pool but write to the
database only from the calling thread.
"""

import logging
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from app.certificates.config import CertificateConfig
from app.certificates.exceptions import (
    AlreadyIssuedError,
    CertificateNotFoundError,
    CodeGenerationError,
    DataFailureError,
    NotEligibleError,
    RenderFailureError,
    VerificationCodeTakenError,
)
from app.certificates.models import Certificate, CertificateStatus, CertificateTemplate
from app.certificates.services.certificate_repository import CertificateRepository
from app.certificates.services.code_generator import VerificationCodeGenerator
from app.certificates.services.collaborators import Collaborators
from app.certificates.services.document_renderer import (
    CertificateDocumentData,
    CertificateDocumentRenderer,
)
from app.certificates.services.eligibility_service import (
    RULE_ALREADY_ISSUED,
    EligibilityEvaluator,
    EligibilityResult,
    read_source,
)
from app.certificates.services.notifier import CertificateNotifier, NullCertificateNotifier
from app.core.constants import (
    CERTIFICATE_FILE_EXTENSION,
    CERTIFICATE_MIME_TYPE,
    FAILURE_REASON_MAX_LENGTH,
)
from app.core.datetime_utils import ensure_utc, utcnow
from app.core.exceptions import (
    AppError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from app.core.storage import StorageBackend, StorageError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompletionFacts:
    """Caller-supplied facts captured into the certificate snapshot.

    Anything left as ``None`` is derived from the collaborators: the
    completion date from the enrollment, the final score from the average
    quiz score and the time spent from watched lesson time.
    """

    completion_date: datetime | None = None
    final_score: int | None = None
    time_spent_minutes: int | None = None
    template: CertificateTemplate | None = None
    achievements: tuple[str, ...] = ()


@dataclass(frozen=True)
class BatchFailure:
    certificate_id: str
    error: str
    error_code: str
    retryable: bool


@dataclass
class BulkRegenerateResult:
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    failures: list[BatchFailure] = field(default_factory=list)


@dataclass
class RetryFailedResult:
    attempted: int = 0
    succeeded: int = 0
    still_failed: int = 0
    failures: list[BatchFailure] = field(default_factory=list)


@dataclass
class NotificationBatchResult:
    attempted: int = 0
    sent: int = 0
    failed: int = 0
    failures: list[BatchFailure] = field(default_factory=list)


@dataclass(frozen=True)
class IssueOutcome:
    generated: bool
    certificate: Certificate | None = None
    reason: str | None = None


@dataclass(frozen=True)
class CertificateArtifact:
    content: bytes
    mime_type: str
    filename: str


@dataclass
class _StoredArtifact:
    path: str
    size: int


@dataclass
class _ItemOutcome:
    certificate_id: UUID
    attempts: int = 0
    artifact: _StoredArtifact | None = None
    error: Exception | None = None


def _describe(error: Exception) -> tuple[str, str, bool]:
    """Return (message, error_code, retryable) for a per-item failure."""
    if isinstance(error, RenderFailureError):
        return error.cause, error.error_code, True
    if isinstance(error, DataFailureError):
        return error.message, error.error_code, False
    if isinstance(error, AppError):
        return error.message, error.error_code, False
    return str(error) or type(error).__name__, "INTERNAL_ERROR", True


class CertificateService:
    def __init__(
        self,
        db: Session,
        config: CertificateConfig,
        storage: StorageBackend,
        collaborators: Collaborators | None = None,
        renderer: CertificateDocumentRenderer | None = None,
        notifier: CertificateNotifier | None = None,
        code_generator: VerificationCodeGenerator | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.config = config
        self.storage = storage
        self.repository = CertificateRepository(db)
        self.collaborators = collaborators or Collaborators.from_session(db)
        self.evaluator = EligibilityEvaluator(self.collaborators, self.repository)
        self.renderer = renderer or CertificateDocumentRenderer(config)
        self.notifier: CertificateNotifier = notifier or NullCertificateNotifier()
        self.code_generator = code_generator or VerificationCodeGenerator(
            config, self.repository.code_exists, clock=clock
        )
        self._clock = clock

    # -- queries -------------------------------------------------------------

    def get_certificate(self, certificate_id: UUID) -> Certificate:
        certificate = self.repository.get_by_id(certificate_id)
        if certificate is None:
            raise CertificateNotFoundError()
        return certificate

    def check_eligibility(self, user_id: UUID, course_id: UUID) -> EligibilityResult:
        return self.evaluator.evaluate(user_id, course_id)

    def list_for_user(self, user_id: UUID) -> list[Certificate]:
        return self.repository.list_for_user(user_id)

    def list_user_certificates(
        self, user_id: UUID, actor_id: UUID, is_admin: bool = False
    ) -> list[Certificate]:
        """Certificates of ``user_id``, visible to that user or an admin."""
        if user_id != actor_id and not is_admin:
            raise ForbiddenError("You can only view your own certificates")
        return self.repository.list_for_user(user_id)

    def list_certificates(
        self,
        status: CertificateStatus | None = None,
        course_id: UUID | None = None,
        user_id: UUID | None = None,
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[list[Certificate], int]:
        return self.repository.list_filtered(
            status=status, course_id=course_id, user_id=user_id, skip=skip, limit=limit
        )

    # -- issuance ------------------------------------------------------------

    def generate_certificate(
        self,
        user_id: UUID,
        course_id: UUID,
        facts: CompletionFacts | None = None,
    ) -> Certificate:
        """Evaluate eligibility, reserve a record and produce its artifact.

        Raises:
            NotEligibleError: An eligibility rule failed.
            AlreadyIssuedError: A non-revoked certificate exists, including
                one created by a concurrent request.
            ValidationError: The completion facts are out of range.
            EvaluationFailedError: A collaborator could not be read.
            RenderFailureError: Rendering or storage failed; the record is
                left FAILED for :meth:`retry_failed`.
            DataFailureError: Snapshot content is unusable; the record is
                left FAILED and needs manual attention.
        """
        facts = facts or CompletionFacts()

        eligibility = self.evaluator.evaluate(user_id, course_id)
        if not eligibility.eligible:
            if eligibility.failed_rule == RULE_ALREADY_ISSUED:
                raise AlreadyIssuedError()
            raise NotEligibleError(
                eligibility.reason or "Not eligible for a certificate",
                details=eligibility.details.as_dict(),
            )

        self._validate_facts(facts)
        snapshot = self._build_snapshot(user_id, course_id, facts, eligibility)

        certificate = self._reserve_with_fresh_code(
            user_id=user_id,
            course_id=course_id,
            template=facts.template or self.config.default_template,
            **snapshot,
        )
        logger.info(
            "Reserved certificate %s (%s) for user=%s course=%s",
            certificate.id,
            certificate.verification_code,
            user_id,
            course_id,
        )

        self._produce_artifact(certificate)
        self._notify(self.notifier.certificate_issued, certificate)
        return certificate

    def _reserve_with_fresh_code(self, **fields: Any) -> Certificate:
        """Reserve the record, drawing a new code when the stored one is taken.

        The generator checks codes before handing them out, but a concurrent
        insert can still claim the same code before this one commits.
        """
        attempts = self.config.code_max_attempts
        for attempt in range(1, attempts + 1):
            code = self.code_generator.generate()
            try:
                return self.repository.reserve(
                    verification_code=code,
                    verification_url=self.config.verification_url(code),
                    **fields,
                )
            except VerificationCodeTakenError:
                logger.warning(
                    "Verification code %s taken at reservation (attempt %d/%d)",
                    code,
                    attempt,
                    attempts,
                )
        raise CodeGenerationError(attempts)

    def issue_if_eligible(
        self,
        user_id: UUID,
        course_id: UUID,
        facts: CompletionFacts | None = None,
    ) -> IssueOutcome:
        """Issue a certificate when the learner qualifies, without raising for "no"."""
        try:
            certificate = self.generate_certificate(user_id, course_id, facts)
        except (NotEligibleError, AlreadyIssuedError) as e:
            return IssueOutcome(generated=False, reason=e.message)
        except (RenderFailureError, DataFailureError) as e:
            logger.warning(
                "Automatic certificate issuance for user=%s course=%s left a failed record: %s",
                user_id,
                course_id,
                e.message,
            )
            return IssueOutcome(generated=False, reason=e.message)
        return IssueOutcome(generated=True, certificate=certificate)

    def _validate_facts(self, facts: CompletionFacts) -> None:
        if facts.final_score is not None and not 0 <= facts.final_score <= 100:
            raise ValidationError("Final score must be between 0 and 100", field="final_score")
        if facts.time_spent_minutes is not None and facts.time_spent_minutes < 0:
            raise ValidationError("Time spent cannot be negative", field="time_spent_minutes")
        if (
            facts.completion_date is not None
            and ensure_utc(facts.completion_date) > ensure_utc(self._clock())
        ):
            raise ValidationError(
                "Completion date cannot be in the future", field="completion_date"
            )

    def _build_snapshot(
        self,
        user_id: UUID,
        course_id: UUID,
        facts: CompletionFacts,
        eligibility: EligibilityResult,
    ) -> dict[str, Any]:
        student_name = read_source(
            "users", lambda: self.collaborators.users.get_display_name(user_id)
        )
        course = read_source("courses", lambda: self.collaborators.courses.get_summary(course_id))

        missing = []
        if not student_name:
            missing.append("student_name")
        if course is None or not course.name:
            missing.append("course_name")
        if missing or course is None:
            raise DataFailureError(missing)

        details = eligibility.details
        final_score = facts.final_score
        if final_score is None and details.average_quiz_score is not None:
            final_score = round(details.average_quiz_score)
        time_spent = facts.time_spent_minutes
        if time_spent is None:
            time_spent = eligibility.watched_seconds // 60

        now = self._clock()
        return {
            "student_name": student_name,
            "course_name": course.name,
            "course_level": course.level,
            "course_category": course.category,
            "instructor_name": course.instructor_name,
            "completion_date": facts.completion_date or eligibility.enrollment_completed_at or now,
            "issued_at": now,
            "final_score": final_score,
            "time_spent_minutes": time_spent,
            "snapshot_metadata": {
                "completed_lessons": details.completed_lessons,
                "total_lessons": details.total_lessons,
                "passed_quizzes": details.passed_quizzes,
                "total_quizzes": details.total_quizzes,
                "average_quiz_score": details.average_quiz_score,
                "estimated_hours": course.estimated_hours,
                "skills": list(course.skills),
                "achievements": list(facts.achievements),
            },
        }

    # -- artifact production -------------------------------------------------

    def _render_and_store(
        self, data: CertificateDocumentData, template: CertificateTemplate
    ) -> _StoredArtifact:
        """Render and upload one artifact. Safe to call from worker threads."""
        document = self.renderer.render(data, template)
        try:
            path = self.storage.upload(
                document.content,
                self.config.storage_folder,
                f"{data.certificate_id}{CERTIFICATE_FILE_EXTENSION}",
                CERTIFICATE_MIME_TYPE,
            )
        except Exception as e:
            logger.error("Storing certificate %s failed: %s", data.certificate_id, e)
            raise RenderFailureError(str(e), certificate_id=data.certificate_id) from e
        return _StoredArtifact(path=path, size=document.byte_size)

    def _produce_artifact(self, certificate: Certificate) -> Certificate:
        certificate.generation_attempts = (certificate.generation_attempts or 0) + 1
        try:
            artifact = self._render_and_store(
                CertificateDocumentData.from_certificate(certificate), certificate.template
            )
        except RenderFailureError as e:
            self._mark_failed(certificate, e.cause, retryable=True)
            raise
        except DataFailureError as e:
            self._mark_failed(certificate, e.message, retryable=False)
            raise
        return self._mark_generated(certificate, artifact)

    def _mark_generated(self, certificate: Certificate, artifact: _StoredArtifact) -> Certificate:
        certificate.file_path = artifact.path
        certificate.mime_type = CERTIFICATE_MIME_TYPE
        certificate.file_size = artifact.size
        certificate.last_generated_at = self._clock()
        certificate.failure_reason = None
        certificate.failure_retryable = None
        certificate.failed_at = None
        certificate.transition_to(CertificateStatus.GENERATED)
        self.repository.save(certificate)
        logger.info("Certificate %s generated at %s", certificate.id, artifact.path)
        return certificate

    def _mark_failed(self, certificate: Certificate, reason: str, retryable: bool) -> Certificate:
        certificate.transition_to(CertificateStatus.FAILED)
        certificate.failure_reason = reason[:FAILURE_REASON_MAX_LENGTH]
        certificate.failure_retryable = retryable
        certificate.failed_at = self._clock()
        self.repository.save(certificate)
        logger.warning(
            "Certificate %s failed (retryable=%s, attempts=%d): %s",
            certificate.id,
            retryable,
            certificate.generation_attempts,
            reason,
        )
        return certificate

    # -- post-issuance -------------------------------------------------------

    def regenerate(self, certificate_id: UUID) -> Certificate:
        """Re-render a GENERATED certificate from its snapshot, overwriting the artifact.

        The status stays GENERATED whether or not rendering succeeds; a
        failure leaves the previous artifact in place and is raised.
        """
        certificate = self.get_certificate(certificate_id)
        if certificate.status != CertificateStatus.GENERATED:
            raise ConflictError(
                "Only generated certificates can be regenerated",
                resource="certificate",
                error_code="INVALID_STATE",
            )
        artifact = self._render_and_store(
            CertificateDocumentData.from_certificate(certificate), certificate.template
        )
        self._apply_regenerated(certificate, artifact)
        self.db.commit()
        logger.info("Certificate %s regenerated", certificate.id)
        return certificate

    def _apply_regenerated(self, certificate: Certificate, artifact: _StoredArtifact) -> None:
        certificate.file_path = artifact.path
        certificate.mime_type = CERTIFICATE_MIME_TYPE
        certificate.file_size = artifact.size
        certificate.last_generated_at = self._clock()
        certificate.generation_attempts = (certificate.generation_attempts or 0) + 1

    def revoke(self, certificate_id: UUID, reason: str, actor_id: UUID) -> Certificate:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A revocation reason is required", field="reason")

        certificate = self.get_certificate(certificate_id)
        certificate.transition_to(CertificateStatus.REVOKED)
        certificate.revoked_reason = reason
        certificate.revoked_by = actor_id
        certificate.revoked_at = self._clock()
        self.repository.save(certificate)
        logger.info("Certificate %s revoked by %s: %s", certificate.id, actor_id, reason)

        self._notify(self.notifier.certificate_revoked, certificate)
        return certificate

    def get_artifact(
        self, certificate_id: UUID, actor_id: UUID, is_admin: bool = False
    ) -> CertificateArtifact:
        """Return the stored document for its owner or an admin.

        Owners can only download certificates that are currently valid;
        admins can also fetch the artifacts kept for revoked certificates.
        """
        certificate = self.get_certificate(certificate_id)
        if certificate.user_id != actor_id and not is_admin:
            raise ForbiddenError("You do not have access to this certificate")
        if not is_admin and certificate.status != CertificateStatus.GENERATED:
            raise NotFoundError("Certificate file not available", resource="certificate_file")
        if not certificate.file_path:
            raise NotFoundError("Certificate file not available", resource="certificate_file")

        try:
            content = self.storage.read(certificate.file_path)
        except StorageError as e:
            logger.error("Artifact for certificate %s unreadable: %s", certificate.id, e)
            raise NotFoundError(
                "Certificate file not available", resource="certificate_file"
            ) from e

        self.repository.increment_download_count(certificate.id)
        return CertificateArtifact(
            content=content,
            mime_type=certificate.mime_type or CERTIFICATE_MIME_TYPE,
            filename=f"certificate-{certificate.verification_code}{CERTIFICATE_FILE_EXTENSION}",
        )

    # -- bulk repair ---------------------------------------------------------

    def bulk_regenerate(
        self,
        course_id: UUID | None = None,
        template: CertificateTemplate | None = None,
    ) -> BulkRegenerateResult:
        certificates = self.repository.list_generated(course_id=course_id, template=template)
        result = BulkRegenerateResult(attempted=len(certificates))

        for certificate, outcome in self._run_batch(certificates, max_attempts=1):
            if outcome.artifact is not None:
                try:
                    self._apply_regenerated(certificate, outcome.artifact)
                    self.db.commit()
                except Exception as e:
                    self.db.rollback()
                    outcome.error = e
            if outcome.error is None:
                result.succeeded += 1
                continue
            result.failed += 1
            result.failures.append(self._batch_failure(certificate.id, outcome.error))

        logger.info(
            "Bulk regenerate finished: attempted=%d succeeded=%d failed=%d",
            result.attempted,
            result.succeeded,
            result.failed,
        )
        return result

    def retry_failed(
        self,
        max_retries: int | None = None,
        older_than: datetime | None = None,
        include_data_failures: bool = False,
    ) -> RetryFailedResult:
        """Re-attempt generation of FAILED certificates from their snapshots.

        Each item gets up to ``max_retries`` attempts; a data failure stops
        retrying that item early. Eligibility is not re-evaluated. Records
        whose last failure was a data failure are skipped unless
        ``include_data_failures`` is set.
        """
        if max_retries is None:
            max_retries = self.config.retry_max_attempts
        if max_retries < 1:
            raise ValidationError("max_retries must be at least 1", field="max_retries")
        certificates = self.repository.list_failed(
            older_than=older_than, include_data_failures=include_data_failures
        )
        result = RetryFailedResult(attempted=len(certificates))

        for certificate, outcome in self._run_batch(certificates, max_attempts=max_retries):
            try:
                certificate.generation_attempts = (
                    certificate.generation_attempts or 0
                ) + outcome.attempts
                if outcome.artifact is not None:
                    self._mark_generated(certificate, outcome.artifact)
                else:
                    message, _, retryable = _describe(outcome.error)  # type: ignore[arg-type]
                    self._mark_failed(certificate, message, retryable=retryable)
            except Exception as e:
                self.db.rollback()
                outcome.error = outcome.error or e
                outcome.artifact = None
                logger.error("Could not record retry outcome for %s: %s", certificate.id, e)

            if outcome.artifact is not None:
                result.succeeded += 1
                continue
            result.still_failed += 1
            result.failures.append(self._batch_failure(certificate.id, outcome.error))

        logger.info(
            "Retry of failed certificates finished: attempted=%d succeeded=%d still_failed=%d",
            result.attempted,
            result.succeeded,
            result.still_failed,
        )
        return result

    def _run_batch(
        self, certificates: Iterable[Certificate], max_attempts: int
    ) -> Iterable[tuple[Certificate, _ItemOutcome]]:
        """Render and store each certificate in the worker pool.

        Yields results in completion order on the calling thread, which is the
        only place the session is touched.
        """
        jobs: list[tuple[Certificate, CertificateDocumentData | None, Exception | None]] = []
        for certificate in certificates:
            try:
                data = CertificateDocumentData.from_certificate(certificate)
            except Exception as e:
                jobs.append((certificate, None, e))
                continue
            jobs.append((certificate, data, None))
        if not jobs:
            return

        with ThreadPoolExecutor(max_workers=self.config.batch_workers) as pool:
            futures = {}
            for certificate, data, error in jobs:
                if data is None:
                    yield certificate, _ItemOutcome(certificate_id=certificate.id, error=error)
                    continue
                future = pool.submit(
                    self._attempt, certificate.id, data, certificate.template, max_attempts
                )
                futures[future] = certificate
            for future in as_completed(futures):
                yield futures[future], future.result()

    def _attempt(
        self,
        certificate_id: UUID,
        data: CertificateDocumentData,
        template: CertificateTemplate,
        max_attempts: int,
    ) -> _ItemOutcome:
        outcome = _ItemOutcome(certificate_id=certificate_id)
        for _ in range(max(1, max_attempts)):
            outcome.attempts += 1
            try:
                outcome.artifact = self._render_and_store(data, template)
                outcome.error = None
                return outcome
            except DataFailureError as e:
                outcome.error = e
                return outcome
            except Exception as e:
                outcome.error = e
                logger.warning(
                    "Attempt %d for certificate %s failed: %s", outcome.attempts, certificate_id, e
                )
        return outcome

    @staticmethod
    def _batch_failure(certificate_id: UUID, error: Exception | None) -> BatchFailure:
        message, code, retryable = _describe(error or RuntimeError("unknown error"))
        logger.warning("Certificate %s failed in batch: %s", certificate_id, message)
        return BatchFailure(
            certificate_id=str(certificate_id),
            error=message,
            error_code=code,
            retryable=retryable,
        )

    # -- outbound notifications ----------------------------------------------

    def send_reminders(self, days_old: int | None = None) -> NotificationBatchResult:
        """Remind owners of certificates issued ``days_old`` days ago and barely downloaded."""
        if days_old is None:
            days_old = self.config.reminder_days
        if days_old < 0:
            raise ValidationError("days_old cannot be negative", field="days_old")
        cutoff = self._clock() - timedelta(days=days_old)
        certificates = self.repository.list_reminder_candidates(issued_before=cutoff)
        result = self._send_each(self.notifier.certificate_reminder, certificates)
        logger.info(
            "Certificate reminders finished: attempted=%d sent=%d failed=%d",
            result.attempted,
            result.sent,
            result.failed,
        )
        return result

    def send_bulk_notifications(self, certificate_ids: list[UUID]) -> NotificationBatchResult:
        """Re-send the "certificate issued" notification for valid certificates."""
        certificates = [
            c
            for c in self.repository.list_by_ids(certificate_ids)
            if c.status == CertificateStatus.GENERATED
        ]
        result = self._send_each(self.notifier.certificate_issued, certificates)
        logger.info(
            "Bulk certificate notifications finished: attempted=%d sent=%d failed=%d",
            result.attempted,
            result.sent,
            result.failed,
        )
        return result

    def _send_each(
        self, send: Callable[[Certificate], None], certificates: list[Certificate]
    ) -> NotificationBatchResult:
        result = NotificationBatchResult(attempted=len(certificates))
        for certificate in certificates:
            try:
                send(certificate)
            except Exception as e:
                self.db.rollback()
                result.failed += 1
                result.failures.append(
                    BatchFailure(
                        certificate_id=str(certificate.id),
                        error=str(e) or type(e).__name__,
                        error_code="NOTIFICATION_FAILED",
                        retryable=True,
                    )
                )
                logger.warning("Notification for certificate %s failed: %s", certificate.id, e)
                continue
            result.sent += 1
        return result

    def _notify(self, send: Callable[[Certificate], None], certificate: Certificate) -> None:
        try:
            send(certificate)
        except Exception:
            self.db.rollback()
            logger.exception("Certificate notification failed for %s", certificate.id)
