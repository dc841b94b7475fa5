"""Certificate eligibility evaluation.

Eligibility is decided by an ordered list of named rules, evaluated
short-circuit in a fixed order:

1. ``enrollment``  - the user has an active or completed enrollment
2. ``lessons``     - every published lesson is completed
3. ``quizzes``     - every required quiz has at least one passing attempt
4. ``already_issued`` - no non-revoked certificate exists for the pair

The first failing rule supplies the reason. Collaborator outages surface as
:class:`EvaluationFailedError`; they never turn into an "ineligible" verdict.
"""

import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, TypeVar
from uuid import UUID

from app.certificates.exceptions import EvaluationFailedError
from app.certificates.models import Certificate
from app.certificates.services.certificate_repository import CertificateRepository
from app.certificates.services.collaborators import (
    Collaborators,
    EnrollmentInfo,
    LessonCounts,
    QuizCounts,
)
from app.courses.models import EnrollmentStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")

ELIGIBLE_ENROLLMENT_STATUSES = frozenset(
    {EnrollmentStatus.ACTIVE.value, EnrollmentStatus.COMPLETED.value}
)

RULE_ENROLLMENT = "enrollment"
RULE_LESSONS = "lessons"
RULE_QUIZZES = "quizzes"
RULE_ALREADY_ISSUED = "already_issued"


@dataclass(frozen=True)
class EligibilityFacts:
    enrollment: EnrollmentInfo | None
    lessons: LessonCounts
    quizzes: QuizCounts
    existing: Certificate | None


@dataclass(frozen=True)
class EligibilityDetails:
    completed_lessons: int
    total_lessons: int
    passed_quizzes: int
    total_quizzes: int
    average_quiz_score: float | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class EligibilityResult:
    eligible: bool
    details: EligibilityDetails
    reason: str | None = None
    failed_rule: str | None = None
    watched_seconds: int = 0
    enrollment_completed_at: datetime | None = None


@dataclass(frozen=True)
class EligibilityRule:
    name: str
    check: Callable[[EligibilityFacts], str | None]


def _plural(count: int, singular: str, plural: str) -> str:
    return f"{count} {singular if count == 1 else plural}"


def _check_enrollment(facts: EligibilityFacts) -> str | None:
    if facts.enrollment is None or facts.enrollment.status not in ELIGIBLE_ENROLLMENT_STATUSES:
        return "Not enrolled in this course"
    return None


def _check_lessons(facts: EligibilityFacts) -> str | None:
    remaining = facts.lessons.total - facts.lessons.completed
    if remaining > 0:
        return f"{_plural(remaining, 'lesson', 'lessons')} remaining to complete"
    return None


def _check_quizzes(facts: EligibilityFacts) -> str | None:
    remaining = facts.quizzes.total - facts.quizzes.passed
    if remaining > 0:
        return f"{_plural(remaining, 'required quiz', 'required quizzes')} not yet passed"
    return None


def _check_not_issued(facts: EligibilityFacts) -> str | None:
    if facts.existing is not None:
        return "Certificate already issued for this course"
    return None


RULES: tuple[EligibilityRule, ...] = (
    EligibilityRule(RULE_ENROLLMENT, _check_enrollment),
    EligibilityRule(RULE_LESSONS, _check_lessons),
    EligibilityRule(RULE_QUIZZES, _check_quizzes),
    EligibilityRule(RULE_ALREADY_ISSUED, _check_not_issued),
)


def read_source(source: str, reader: Callable[[], T]) -> T:
    """Call a collaborator, turning any failure into :class:`EvaluationFailedError`."""
    try:
        return reader()
    except Exception as e:
        logger.error("Certificate data source %s unavailable: %s", source, e)
        raise EvaluationFailedError(source) from e


class EligibilityEvaluator:
    def __init__(self, collaborators: Collaborators, repository: CertificateRepository):
        self.collaborators = collaborators
        self.repository = repository

    def gather_facts(self, user_id: UUID, course_id: UUID) -> EligibilityFacts:
        c = self.collaborators
        return EligibilityFacts(
            enrollment=read_source("enrollment", lambda: c.enrollments.get(user_id, course_id)),
            lessons=read_source(
                "progress", lambda: c.progress.count_completed_lessons(user_id, course_id)
            ),
            quizzes=read_source(
                "quiz_attempts", lambda: c.quizzes.count_passed_required(user_id, course_id)
            ),
            existing=self.repository.find_unrevoked(user_id, course_id),
        )

    @staticmethod
    def decide(facts: EligibilityFacts) -> EligibilityResult:
        completed_at = facts.enrollment.completed_at if facts.enrollment else None
        details = EligibilityDetails(
            completed_lessons=facts.lessons.completed,
            total_lessons=facts.lessons.total,
            passed_quizzes=facts.quizzes.passed,
            total_quizzes=facts.quizzes.total,
            average_quiz_score=facts.quizzes.average_score,
        )
        for rule in RULES:
            reason = rule.check(facts)
            if reason is not None:
                return EligibilityResult(
                    eligible=False,
                    details=details,
                    reason=reason,
                    failed_rule=rule.name,
                    watched_seconds=facts.lessons.watched_seconds,
                    enrollment_completed_at=completed_at,
                )
        return EligibilityResult(
            eligible=True,
            details=details,
            watched_seconds=facts.lessons.watched_seconds,
            enrollment_completed_at=completed_at,
        )

    def evaluate(self, user_id: UUID, course_id: UUID) -> EligibilityResult:
        result = self.decide(self.gather_facts(user_id, course_id))
        if not result.eligible:
            logger.info(
                "User %s not eligible for course %s certificate: %s",
                user_id,
                course_id,
                result.reason,
            )
        return result
