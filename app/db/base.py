"""
Database base module - imports all models for Alembic migration detection.

This module imports all SQLAlchemy models to ensure they are registered
with Alembic for automatic migration generation. While the imports appear
unused, they are essential for the migration system to work properly.
"""

from app.auth.models.user import User
from app.certificates.models.certificate import Certificate
from app.courses.models.course import Course, Lesson, Module
from app.courses.models.enrollment import Enrollment
from app.courses.models.progress import LessonProgress
from app.courses.models.quiz import Quiz, QuizAttempt
from app.notifications.models.notification import Notification

# Export all models for Alembic
__all__ = [
    "User",
    "Certificate",
    "Course",
    "Lesson",
    "Module",
    "Enrollment",
    "LessonProgress",
    "Quiz",
    "QuizAttempt",
    "Notification",
]
