"""Certificate PDF rendering.

Every template shares the same required regions (title, recipient, course,
issuing metadata, verification block with a QR code, footer with the
verification URL). Templates may change headings, colours and add optional
regions, but the required ones are always drawn by :class:`CertificateLayout`.

Rendering is a pure function of :class:`CertificateDocumentData` and the
template: the canvas runs in invariant mode, so identical input produces
identical bytes.
"""

import io
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType

import qrcode
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.units import cm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from app.certificates.config import CertificateConfig
from app.certificates.exceptions import DataFailureError, RenderFailureError
from app.certificates.models import Certificate, CertificateTemplate

logger = logging.getLogger(__name__)

REQUIRED_REGIONS = ("title", "recipient", "course", "issuing", "verification", "footer")

MAX_TITLE_CHARS = 60


@dataclass(frozen=True)
class CertificateDocumentData:
    """Everything printed on a certificate, taken from its content snapshot."""

    certificate_id: str
    student_name: str
    course_name: str
    verification_code: str
    verification_url: str
    completion_date: datetime | None
    issued_at: datetime | None
    course_level: str | None = None
    course_category: str | None = None
    instructor_name: str | None = None
    final_score: int | None = None
    time_spent_minutes: int = 0
    completed_lessons: int | None = None
    total_lessons: int | None = None
    skills: tuple[str, ...] = ()
    achievements: tuple[str, ...] = ()

    @classmethod
    def from_certificate(cls, certificate: Certificate) -> "CertificateDocumentData":
        metadata = certificate.snapshot_metadata or {}
        return cls(
            certificate_id=str(certificate.id),
            student_name=certificate.student_name,
            course_name=certificate.course_name,
            verification_code=certificate.verification_code,
            verification_url=certificate.verification_url,
            completion_date=certificate.completion_date,
            issued_at=certificate.issued_at,
            course_level=certificate.course_level,
            course_category=certificate.course_category,
            instructor_name=certificate.instructor_name,
            final_score=certificate.final_score,
            time_spent_minutes=certificate.time_spent_minutes or 0,
            completed_lessons=metadata.get("completed_lessons"),
            total_lessons=metadata.get("total_lessons"),
            skills=tuple(metadata.get("skills") or ()),
            achievements=tuple(metadata.get("achievements") or ()),
        )


@dataclass(frozen=True)
class RenderedDocument:
    content: bytes
    regions: Mapping[str, tuple[str, ...]] = field(default_factory=dict)

    @property
    def byte_size(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class Palette:
    background: str
    frame: str
    accent: str
    text: str
    muted: str


def validate_document_data(data: CertificateDocumentData) -> list[str]:
    """Return the names of missing or malformed required fields."""
    invalid = [
        name
        for name in ("student_name", "course_name", "verification_code", "verification_url")
        if not (getattr(data, name) or "").strip()
    ]
    if data.completion_date is None:
        invalid.append("completion_date")
    if data.issued_at is None:
        invalid.append("issued_at")
    if data.final_score is not None and not 0 <= data.final_score <= 100:
        invalid.append("final_score")
    if data.time_spent_minutes < 0:
        invalid.append("time_spent_minutes")
    return invalid


def _format_date(value: datetime) -> str:
    return value.strftime("%B %d, %Y")


def _truncate(text: str, limit: int = MAX_TITLE_CHARS) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


def _qr_png(url: str) -> io.BytesIO:
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=6,
        border=2,
    )
    qr.add_data(url)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    buf.seek(0)
    return buf


class CertificateLayout:
    """Standard landscape A4 certificate.

    Subclasses override :meth:`heading`, :meth:`intro`, :meth:`extra_regions`
    and the palette. :meth:`regions` and :meth:`draw` are not meant to be
    overridden; they always emit the required regions.
    """

    template = CertificateTemplate.STANDARD
    palette = Palette(
        background="#ffffff",
        frame="#1a56db",
        accent="#93bbfb",
        text="#111827",
        muted="#6b7280",
    )

    def __init__(self, issuer_name: str):
        self.issuer_name = issuer_name

    def heading(self) -> tuple[str, ...]:
        return ("CERTIFICATE OF COMPLETION",)

    def intro(self) -> tuple[str, str]:
        return ("This is to certify that", "has successfully completed the course")

    def extra_regions(self, data: CertificateDocumentData) -> dict[str, tuple[str, ...]]:
        details = []
        if data.course_level:
            details.append(f"Level: {data.course_level}")
        if data.course_category:
            details.append(f"Category: {data.course_category}")
        if data.completed_lessons is not None and data.total_lessons is not None:
            details.append(f"Lessons Completed: {data.completed_lessons}/{data.total_lessons}")
        return {"details": tuple(details)} if details else {}

    def regions(self, data: CertificateDocumentData) -> dict[str, tuple[str, ...]]:
        issuing = [f"Completion Date: {_format_date(data.completion_date)}"]  # type: ignore[arg-type]
        if data.instructor_name:
            issuing.insert(0, f"Instructor: {data.instructor_name}")
        if data.final_score is not None:
            issuing.append(f"Final Score: {data.final_score}%")
        if data.time_spent_minutes:
            issuing.append(f"Time Spent: {data.time_spent_minutes / 60:.1f} hours")
        issuing.append(f"Issued: {_format_date(data.issued_at)}")  # type: ignore[arg-type]

        regions = {
            "title": (*self.heading(), self.issuer_name),
            "recipient": (self.intro()[0], data.student_name),
            "course": (self.intro()[1], data.course_name),
            "issuing": tuple(issuing),
            "verification": (
                f"Verification Code: {data.verification_code}",
                data.verification_url,
            ),
            "footer": (f"Verify this certificate at: {data.verification_url}",),
        }
        for name, lines in self.extra_regions(data).items():
            regions.setdefault(name, lines)
        return regions

    def decorate(self, c: canvas.Canvas, page_w: float, page_h: float) -> None:
        margin = 1.5 * cm
        c.setStrokeColor(colors.HexColor(self.palette.frame))
        c.setLineWidth(3)
        c.rect(margin, margin, page_w - 2 * margin, page_h - 2 * margin)

        inner = 2 * cm
        c.setStrokeColor(colors.HexColor(self.palette.accent))
        c.setLineWidth(1)
        c.rect(inner, inner, page_w - 2 * inner, page_h - 2 * inner)

    def draw_extra(
        self,
        c: canvas.Canvas,
        regions: Mapping[str, tuple[str, ...]],
        page_w: float,
        page_h: float,
    ) -> None:
        details = regions.get("details")
        if not details:
            return
        c.setFillColor(colors.HexColor(self.palette.muted))
        c.setFont("Helvetica", 10)
        c.drawCentredString(page_w / 2, page_h - 11.8 * cm, "  |  ".join(details))

    def draw(
        self,
        c: canvas.Canvas,
        regions: Mapping[str, tuple[str, ...]],
        qr_image: ImageReader,
        page_w: float,
        page_h: float,
    ) -> None:
        center_x = page_w / 2

        c.setFillColor(colors.HexColor(self.palette.background))
        c.rect(0, 0, page_w, page_h, fill=1, stroke=0)
        self.decorate(c, page_w, page_h)

        *heading, issuer = regions["title"]
        y = page_h - 3.5 * cm
        c.setFillColor(colors.HexColor(self.palette.frame))
        for index, line in enumerate(heading):
            size = 30 if index == 0 else 20
            c.setFont("Helvetica-Bold", size)
            c.drawCentredString(center_x, y, line)
            y -= 1 * cm
        c.setFillColor(colors.HexColor(self.palette.muted))
        c.setFont("Helvetica", 11)
        c.drawCentredString(center_x, y, issuer)

        intro, student_name = regions["recipient"]
        c.setFont("Helvetica", 14)
        c.drawCentredString(center_x, page_h - 6.8 * cm, intro)
        c.setFillColor(colors.HexColor(self.palette.frame))
        c.setFont("Helvetica-Bold", 26)
        c.drawCentredString(center_x, page_h - 8 * cm, _truncate(student_name))
        name_width = c.stringWidth(_truncate(student_name), "Helvetica-Bold", 26)
        c.setStrokeColor(colors.HexColor(self.palette.accent))
        c.setLineWidth(0.5)
        c.line(
            center_x - name_width / 2 - 1 * cm,
            page_h - 8.3 * cm,
            center_x + name_width / 2 + 1 * cm,
            page_h - 8.3 * cm,
        )

        completed_text, course_name = regions["course"]
        c.setFillColor(colors.HexColor(self.palette.muted))
        c.setFont("Helvetica", 12)
        c.drawCentredString(center_x, page_h - 9.2 * cm, completed_text)
        c.setFillColor(colors.HexColor(self.palette.text))
        c.setFont("Helvetica-Bold", 18)
        c.drawCentredString(center_x, page_h - 10.2 * cm, _truncate(course_name))

        c.setFillColor(colors.HexColor(self.palette.muted))
        c.setFont("Helvetica", 10)
        c.drawCentredString(center_x, page_h - 11 * cm, "  |  ".join(regions["issuing"]))

        self.draw_extra(c, regions, page_w, page_h)

        qr_size = 2.8 * cm
        c.drawImage(qr_image, page_w - 3.5 * cm - qr_size, 2.5 * cm, width=qr_size, height=qr_size)
        code_line, _ = regions["verification"]
        c.setFillColor(colors.HexColor(self.palette.text))
        c.setFont("Courier", 10)
        c.drawCentredString(center_x, 3 * cm, code_line)

        c.setFillColor(colors.HexColor(self.palette.muted))
        c.setFont("Helvetica", 8)
        c.drawCentredString(center_x, 2.3 * cm, regions["footer"][0])


class PremiumLayout(CertificateLayout):
    template = CertificateTemplate.PREMIUM
    palette = Palette(
        background="#0d0d1a",
        frame="#8a5cf5",
        accent="#66d1de",
        text="#ffffff",
        muted="#cccccc",
    )

    def heading(self) -> tuple[str, ...]:
        return ("CERTIFICATE", "OF EXCELLENCE")

    def intro(self) -> tuple[str, str]:
        return ("This certifies that", "has demonstrated mastery in")

    def extra_regions(self, data: CertificateDocumentData) -> dict[str, tuple[str, ...]]:
        regions = super().extra_regions(data)
        if data.skills:
            regions["skills"] = tuple(data.skills)
        return regions

    def draw_extra(
        self,
        c: canvas.Canvas,
        regions: Mapping[str, tuple[str, ...]],
        page_w: float,
        page_h: float,
    ) -> None:
        super().draw_extra(c, regions, page_w, page_h)
        skills = regions.get("skills")
        if not skills:
            return
        c.setFillColor(colors.HexColor(self.palette.accent))
        c.setFont("Helvetica-Bold", 11)
        c.drawString(3 * cm, page_h - 13 * cm, "Skills Acquired:")
        c.setFont("Helvetica", 10)
        for index, skill in enumerate(skills[:5]):
            c.drawString(3.4 * cm, page_h - (13.6 + index * 0.5) * cm, f"- {skill}")


class CustomLayout(PremiumLayout):
    template = CertificateTemplate.CUSTOM
    palette = Palette(
        background="#fdfaf3",
        frame="#b8860b",
        accent="#d4af37",
        text="#1f2937",
        muted="#4b5563",
    )

    def heading(self) -> tuple[str, ...]:
        return ("CERTIFICATE OF ACHIEVEMENT",)

    def extra_regions(self, data: CertificateDocumentData) -> dict[str, tuple[str, ...]]:
        regions = super().extra_regions(data)
        if data.achievements:
            regions["achievements"] = tuple(data.achievements)
        return regions

    def draw_extra(
        self,
        c: canvas.Canvas,
        regions: Mapping[str, tuple[str, ...]],
        page_w: float,
        page_h: float,
    ) -> None:
        super().draw_extra(c, regions, page_w, page_h)
        achievements = regions.get("achievements")
        if not achievements:
            return
        c.setFillColor(colors.HexColor(self.palette.text))
        c.setFont("Helvetica-Bold", 11)
        c.drawString(page_w / 2 + 1 * cm, page_h - 13 * cm, "Achievements:")
        c.setFont("Helvetica", 10)
        for index, achievement in enumerate(achievements[:5]):
            c.drawString(
                page_w / 2 + 1.4 * cm, page_h - (13.6 + index * 0.5) * cm, f"- {achievement}"
            )


LAYOUTS: dict[CertificateTemplate, type[CertificateLayout]] = {
    CertificateTemplate.STANDARD: CertificateLayout,
    CertificateTemplate.PREMIUM: PremiumLayout,
    CertificateTemplate.CUSTOM: CustomLayout,
}


class CertificateDocumentRenderer:
    def __init__(self, config: CertificateConfig):
        self.config = config

    def layout_for(self, template: CertificateTemplate) -> CertificateLayout:
        return LAYOUTS[CertificateTemplate(template)](self.config.issuer_name)

    def render(
        self, data: CertificateDocumentData, template: CertificateTemplate
    ) -> RenderedDocument:
        """Render a certificate as a single-page PDF.

        Raises:
            DataFailureError: Required content is missing or malformed.
            RenderFailureError: The document could not be produced.
        """
        invalid = validate_document_data(data)
        if invalid:
            raise DataFailureError(invalid, certificate_id=data.certificate_id)

        layout = self.layout_for(template)
        regions = layout.regions(data)
        missing = [name for name in REQUIRED_REGIONS if not regions.get(name)]
        if missing:
            raise DataFailureError(missing, certificate_id=data.certificate_id)

        try:
            buf = io.BytesIO()
            page_w, page_h = landscape(A4)
            c = canvas.Canvas(buf, pagesize=landscape(A4), invariant=1)
            c.setTitle(f"Certificate {data.verification_code}")
            c.setAuthor(self.config.issuer_name)
            layout.draw(c, regions, ImageReader(_qr_png(data.verification_url)), page_w, page_h)
            c.showPage()
            c.save()
            content = buf.getvalue()
        except Exception as e:
            logger.error("Rendering certificate %s failed: %s", data.certificate_id, e)
            raise RenderFailureError(str(e), certificate_id=data.certificate_id) from e

        return RenderedDocument(content=content, regions=MappingProxyType(regions))
