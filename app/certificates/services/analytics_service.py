"""Certificate analytics service."""

from collections import Counter
from datetime import UTC, datetime, timedelta

from sqlalchemy import func
from sqlalchemy.orm import Query, Session

from app.certificates.models import Certificate, CertificateStatus
from app.certificates.schemas.analytics import (
    CertificateAnalyticsResponse,
    CourseCertificateCount,
    MonthlyIssuance,
)
from app.core.constants import ANALYTICS_MONTHS_BACK, ANALYTICS_TOP_COURSES_LIMIT
from app.core.datetime_utils import ensure_utc

ISSUED_STATUSES = (CertificateStatus.GENERATED, CertificateStatus.REVOKED)


def _month_key(value: datetime) -> str:
    return ensure_utc(value).strftime("%Y-%m")


def _last_months(now: datetime, count: int) -> list[str]:
    """Return ``count`` YYYY-MM keys ending with the month of ``now``, oldest first."""
    year, month = now.year, now.month
    keys = []
    for _ in range(count):
        keys.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(keys))


class CertificateAnalyticsService:
    """Aggregates over the certificates table for the admin dashboard."""

    @staticmethod
    def _scoped(
        db: Session, date_from: datetime | None, date_to: datetime | None
    ) -> Query[Certificate]:
        query = db.query(Certificate)
        if date_from is not None:
            query = query.filter(Certificate.issued_at >= date_from)
        if date_to is not None:
            query = query.filter(Certificate.issued_at <= date_to)
        return query

    @staticmethod
    def get_top_courses(
        db: Session,
        limit: int = ANALYTICS_TOP_COURSES_LIMIT,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> list[CourseCertificateCount]:
        """Courses with the most issued certificates.

        The course name comes from the certificate snapshot, so renamed or
        deleted courses still show the name learners saw.
        """
        rows = (
            CertificateAnalyticsService._scoped(db, date_from, date_to)
            .filter(Certificate.status.in_(ISSUED_STATUSES))
            .with_entities(
                Certificate.course_id,
                func.max(Certificate.course_name).label("course_name"),
                func.count(Certificate.id).label("count"),
            )
            .group_by(Certificate.course_id)
            .order_by(func.count(Certificate.id).desc())
            .limit(limit)
            .all()
        )
        return [
            CourseCertificateCount(
                course_id=str(r.course_id), course_name=r.course_name, count=r.count
            )
            for r in rows
        ]

    @staticmethod
    def get_monthly_issuance(
        db: Session, now: datetime | None = None, months: int = ANALYTICS_MONTHS_BACK
    ) -> list[MonthlyIssuance]:
        now = ensure_utc(now or datetime.now(UTC))
        keys = _last_months(now, months)
        start = datetime(int(keys[0][:4]), int(keys[0][5:]), 1, tzinfo=UTC)

        issued_dates = (
            db.query(Certificate.issued_at)
            .filter(
                Certificate.status.in_(ISSUED_STATUSES),
                Certificate.issued_at >= start,
            )
            .all()
        )
        counts = Counter(_month_key(issued_at) for (issued_at,) in issued_dates)
        return [MonthlyIssuance(month=key, count=counts.get(key, 0)) for key in keys]

    @staticmethod
    def get_analytics(
        db: Session,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        now: datetime | None = None,
    ) -> CertificateAnalyticsResponse:
        """Build the full certificate analytics payload.

        Args:
            db: Database session.
            date_from: Only count certificates issued at or after this moment.
            date_to: Only count certificates issued at or before this moment.
            now: Reference time for the "this week/month" windows.

        Returns:
            CertificateAnalyticsResponse with totals and breakdowns.
        """
        now = ensure_utc(now or datetime.now(UTC))
        today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        month_start = today_start.replace(day=1)
        week_start = today_start - timedelta(days=today_start.weekday())

        scoped = CertificateAnalyticsService._scoped(db, date_from, date_to)
        issued = scoped.filter(Certificate.status.in_(ISSUED_STATUSES))

        by_status = {status.value: 0 for status in CertificateStatus}
        for status, count in (
            scoped.with_entities(Certificate.status, func.count(Certificate.id))
            .group_by(Certificate.status)
            .all()
        ):
            by_status[CertificateStatus(status).value] = count

        by_template = {
            template.value: count
            for template, count in issued.with_entities(
                Certificate.template, func.count(Certificate.id)
            )
            .group_by(Certificate.template)
            .all()
        }

        downloads, verifications = issued.with_entities(
            func.coalesce(func.sum(Certificate.download_count), 0),
            func.coalesce(func.sum(Certificate.verification_count), 0),
        ).one()
        issued_count = issued.count()

        return CertificateAnalyticsResponse(
            total=sum(by_status.values()),
            by_status=by_status,
            by_template=by_template,
            issued_this_month=issued.filter(Certificate.issued_at >= month_start).count(),
            issued_this_week=issued.filter(Certificate.issued_at >= week_start).count(),
            top_courses=CertificateAnalyticsService.get_top_courses(
                db, date_from=date_from, date_to=date_to
            ),
            issued_by_month=CertificateAnalyticsService.get_monthly_issuance(db, now=now),
            total_downloads=int(downloads),
            average_downloads=round(int(downloads) / issued_count, 2) if issued_count else 0.0,
            total_verifications=int(verifications),
            date_from=date_from,
            date_to=date_to,
        )
