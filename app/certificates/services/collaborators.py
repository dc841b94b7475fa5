"""Read-only views over the records that decide certificate issuance.

Enrollment, progress, quiz and catalog data belong to other parts of the
platform. The certificate subsystem only depends on the small protocols
below; the ``Sql*`` classes implement them over the shared database.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol
from uuid import UUID

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from app.auth.models.user import User
from app.courses.models import (
    Course,
    Enrollment,
    Lesson,
    LessonProgress,
    LessonStatus,
    Module,
    Quiz,
    QuizAttempt,
)


@dataclass(frozen=True)
class EnrollmentInfo:
    status: str
    enrolled_at: datetime
    completed_at: datetime | None = None


@dataclass(frozen=True)
class LessonCounts:
    completed: int
    total: int
    watched_seconds: int = 0


@dataclass(frozen=True)
class QuizCounts:
    passed: int
    total: int
    average_score: float | None = None


@dataclass(frozen=True)
class CourseSummary:
    name: str
    level: str | None
    category: str | None
    instructor_name: str | None
    estimated_hours: int = 0
    skills: list[str] = field(default_factory=list)


class EnrollmentReader(Protocol):
    def get(self, user_id: UUID, course_id: UUID) -> EnrollmentInfo | None: ...


class ProgressReader(Protocol):
    def count_completed_lessons(self, user_id: UUID, course_id: UUID) -> LessonCounts: ...


class QuizAttemptReader(Protocol):
    def count_passed_required(self, user_id: UUID, course_id: UUID) -> QuizCounts: ...


class UserDirectory(Protocol):
    def get_display_name(self, user_id: UUID) -> str | None: ...


class CourseCatalog(Protocol):
    def get_summary(self, course_id: UUID) -> CourseSummary | None: ...


class SqlEnrollmentReader:
    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: UUID, course_id: UUID) -> EnrollmentInfo | None:
        enrollment = (
            self.db.query(Enrollment)
            .filter(Enrollment.user_id == user_id, Enrollment.course_id == course_id)
            .first()
        )
        if enrollment is None:
            return None
        return EnrollmentInfo(
            status=enrollment.status.value,
            enrolled_at=enrollment.enrolled_at,
            completed_at=enrollment.completed_at,
        )


class SqlProgressReader:
    def __init__(self, db: Session):
        self.db = db

    def count_completed_lessons(self, user_id: UUID, course_id: UUID) -> LessonCounts:
        """Count published lessons and the ones the user has completed."""
        lesson_ids = [
            lesson_id
            for (lesson_id,) in self.db.query(Lesson.id)
            .join(Module, Lesson.module_id == Module.id)
            .filter(Module.course_id == course_id, Lesson.status == LessonStatus.AVAILABLE)
            .all()
        ]
        if not lesson_ids:
            return LessonCounts(completed=0, total=0)

        completed, watched = (
            self.db.query(
                func.coalesce(
                    func.sum(case((LessonProgress.is_completed.is_(True), 1), else_=0)), 0
                ),
                func.coalesce(func.sum(LessonProgress.watched_seconds), 0),
            )
            .filter(
                LessonProgress.user_id == user_id,
                LessonProgress.lesson_id.in_(lesson_ids),
            )
            .one()
        )
        return LessonCounts(
            completed=int(completed or 0), total=len(lesson_ids), watched_seconds=int(watched)
        )


class SqlQuizAttemptReader:
    def __init__(self, db: Session):
        self.db = db

    def count_passed_required(self, user_id: UUID, course_id: UUID) -> QuizCounts:
        """Required quizzes passed at least once, plus the mean best score.

        The average covers every quiz the user attempted in the course,
        required or not, using the best attempt per quiz.
        """
        required_ids = {
            quiz_id
            for (quiz_id,) in self.db.query(Quiz.id)
            .filter(
                Quiz.course_id == course_id,
                Quiz.is_required.is_(True),
                Quiz.is_published.is_(True),
            )
            .all()
        }

        per_quiz = (
            self.db.query(
                QuizAttempt.quiz_id,
                func.max(QuizAttempt.score),
                func.max(case((QuizAttempt.passed.is_(True), 1), else_=0)),
            )
            .join(Quiz, QuizAttempt.quiz_id == Quiz.id)
            .filter(QuizAttempt.user_id == user_id, Quiz.course_id == course_id)
            .group_by(QuizAttempt.quiz_id)
            .all()
        )

        passed = sum(
            1 for quiz_id, _, was_passed in per_quiz if was_passed and quiz_id in required_ids
        )
        best_scores = [best for _, best, _ in per_quiz if best is not None]
        average = sum(best_scores) / len(best_scores) if best_scores else None
        return QuizCounts(passed=passed, total=len(required_ids), average_score=average)


class SqlUserDirectory:
    def __init__(self, db: Session):
        self.db = db

    def get_display_name(self, user_id: UUID) -> str | None:
        row = self.db.query(User.name).filter(User.id == user_id).first()
        return row[0] if row else None


class SqlCourseCatalog:
    def __init__(self, db: Session):
        self.db = db

    def get_summary(self, course_id: UUID) -> CourseSummary | None:
        course = self.db.query(Course).filter(Course.id == course_id).first()
        if course is None:
            return None
        return CourseSummary(
            name=course.title,
            level=course.difficulty,
            category=course.category,
            instructor_name=course.instructor_name,
            estimated_hours=course.estimated_hours,
            skills=list(course.skills or []),
        )


@dataclass
class Collaborators:
    """The full set of read collaborators the lifecycle service needs."""

    enrollments: EnrollmentReader
    progress: ProgressReader
    quizzes: QuizAttemptReader
    users: UserDirectory
    courses: CourseCatalog

    @classmethod
    def from_session(cls, db: Session) -> "Collaborators":
        return cls(
            enrollments=SqlEnrollmentReader(db),
            progress=SqlProgressReader(db),
            quizzes=SqlQuizAttemptReader(db),
            users=SqlUserDirectory(db),
            courses=SqlCourseCatalog(db),
        )
