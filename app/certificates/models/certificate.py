import enum
import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, Enum, ForeignKey, Index, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from app.certificates.exceptions import InvalidTransitionError
from app.db.session import Base


class CertificateStatus(str, enum.Enum):
    PENDING = "pending"
    GENERATED = "generated"
    FAILED = "failed"
    REVOKED = "revoked"


class CertificateTemplate(str, enum.Enum):
    STANDARD = "standard"
    PREMIUM = "premium"
    CUSTOM = "custom"


ALLOWED_TRANSITIONS: dict[CertificateStatus, frozenset[CertificateStatus]] = {
    CertificateStatus.PENDING: frozenset({CertificateStatus.GENERATED, CertificateStatus.FAILED}),
    CertificateStatus.FAILED: frozenset({CertificateStatus.GENERATED, CertificateStatus.FAILED}),
    CertificateStatus.GENERATED: frozenset({CertificateStatus.REVOKED}),
    CertificateStatus.REVOKED: frozenset(),
}

# Captured at issue time; never rewritten afterwards
SNAPSHOT_FIELDS = (
    "verification_code",
    "verification_url",
    "student_name",
    "course_name",
    "course_level",
    "course_category",
    "instructor_name",
    "completion_date",
    "issued_at",
    "final_score",
    "time_spent_minutes",
    "snapshot_metadata",
)

_ACTIVE_WHERE = text("status <> 'revoked'")


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [e.value for e in enum_cls]


class Certificate(Base):
    __tablename__ = "certificates"
    __table_args__ = (
        # At most one non-revoked certificate per (user, course), enforced by the database
        Index(
            "uq_certificates_active_user_course",
            "user_id",
            "course_id",
            unique=True,
            postgresql_where=_ACTIVE_WHERE,
            sqlite_where=_ACTIVE_WHERE,
        ),
        Index("ix_certificates_status_failed_at", "status", "failed_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4, index=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    course_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("courses.id", ondelete="CASCADE"), index=True
    )

    verification_code: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    verification_url: Mapped[str] = mapped_column(String(512))
    template: Mapped[CertificateTemplate] = mapped_column(
        Enum(CertificateTemplate, values_callable=_enum_values, name="certificate_template"),
        default=CertificateTemplate.STANDARD,
    )
    status: Mapped[CertificateStatus] = mapped_column(
        Enum(CertificateStatus, values_callable=_enum_values, name="certificate_status"),
        default=CertificateStatus.PENDING,
        index=True,
    )

    student_name: Mapped[str] = mapped_column(String(255))
    course_name: Mapped[str] = mapped_column(String(255))
    course_level: Mapped[str | None] = mapped_column(String(50), default=None)
    course_category: Mapped[str | None] = mapped_column(String(100), default=None)
    instructor_name: Mapped[str | None] = mapped_column(String(255), default=None)
    completion_date: Mapped[datetime] = mapped_column()
    issued_at: Mapped[datetime] = mapped_column(default=lambda: datetime.now(UTC))
    final_score: Mapped[int | None] = mapped_column(default=None)
    time_spent_minutes: Mapped[int] = mapped_column(default=0)
    snapshot_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON().with_variant(JSONB(), "postgresql"), default=dict
    )

    file_path: Mapped[str | None] = mapped_column(default=None)
    mime_type: Mapped[str | None] = mapped_column(String(100), default=None)
    file_size: Mapped[int | None] = mapped_column(default=None)
    last_generated_at: Mapped[datetime | None] = mapped_column(default=None)
    generation_attempts: Mapped[int] = mapped_column(default=0)

    failure_reason: Mapped[str | None] = mapped_column(Text, default=None)
    failure_retryable: Mapped[bool | None] = mapped_column(default=None)
    failed_at: Mapped[datetime | None] = mapped_column(default=None)

    revoked_reason: Mapped[str | None] = mapped_column(Text, default=None)
    revoked_by: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), default=None
    )
    revoked_at: Mapped[datetime | None] = mapped_column(default=None)

    verification_count: Mapped[int] = mapped_column(default=0)
    download_count: Mapped[int] = mapped_column(default=0)
    last_verified_at: Mapped[datetime | None] = mapped_column(default=None)
    last_downloaded_at: Mapped[datetime | None] = mapped_column(default=None)

    created_at: Mapped[datetime] = mapped_column(default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC)
    )

    user = relationship("User", foreign_keys=[user_id], backref="certificates")
    course = relationship("Course")

    @validates(*SNAPSHOT_FIELDS)
    def _guard_snapshot(self, key: str, value: Any) -> Any:
        current = getattr(self, key, None)
        if current is not None and current != value:
            raise ValueError(f"Certificate field '{key}' is immutable once issued")
        return value

    @property
    def is_valid(self) -> bool:
        return self.status == CertificateStatus.GENERATED

    @property
    def has_artifact(self) -> bool:
        return self.file_path is not None

    def transition_to(self, target: CertificateStatus) -> None:
        current = CertificateStatus(self.status)
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(current.value, target.value)
        self.status = target

    def __repr__(self) -> str:
        return f"<Certificate(id={self.id}, code={self.verification_code}, status={self.status}, user_id={self.user_id}, course_id={self.course_id})>"  # noqa: E501
