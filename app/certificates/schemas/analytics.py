"""Certificate analytics schemas for the admin dashboard."""

from pydantic import BaseModel, Field

from app.core.datetime_utils import UTCDatetime


class CourseCertificateCount(BaseModel):
    course_id: str
    course_name: str
    count: int


class MonthlyIssuance(BaseModel):
    month: str = Field(description="Calendar month as YYYY-MM")
    count: int


class CertificateAnalyticsResponse(BaseModel):
    total: int = Field(description="Certificates matching the date range, any status")
    by_status: dict[str, int]
    by_template: dict[str, int]
    issued_this_month: int
    issued_this_week: int
    top_courses: list[CourseCertificateCount]
    issued_by_month: list[MonthlyIssuance]
    total_downloads: int
    average_downloads: float = Field(description="Downloads per generated certificate")
    total_verifications: int
    date_from: UTCDatetime | None = None
    date_to: UTCDatetime | None = None
