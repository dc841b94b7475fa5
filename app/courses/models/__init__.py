"""Course models."""

from app.courses.models.course import Course, Lesson, LessonStatus, Module
from app.courses.models.enrollment import Enrollment, EnrollmentStatus
from app.courses.models.progress import LessonProgress
from app.courses.models.quiz import Quiz, QuizAttempt

__all__ = [
    "Course",
    "Module",
    "Lesson",
    "LessonStatus",
    "Enrollment",
    "EnrollmentStatus",
    "LessonProgress",
    "Quiz",
    "QuizAttempt",
]
