"""
ArtifactGenerator -- renders certificate documents and stores them.

Responsibility:
    Turns a CertificateContent snapshot (door, completed session with its
    ordered checks, engineer, optional signature) into a fixed-layout PDF
    and writes it to object storage under a collision-resistant key.

Architecture position:
    Kernel > Services.  Side effects are limited to storage I/O: it reads
    nothing from the record store and mutates no status, which is what lets
    CertificationEngine run "generate, then commit, else delete the
    document" as a saga.

Failure modes:
    - DocumentWriteError (a StorageError) if rendering or the storage write
      does not complete.
"""

from __future__ import annotations

import io
from uuid import uuid4
from xml.sax.saxutils import escape

from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.lib.utils import ImageReader
from reportlab.platypus import Image, Paragraph, SimpleDocTemplate, Spacer

from inspex_kernel.domain.clock import Clock, SystemClock
from inspex_kernel.domain.dtos import CertificateContent, DocumentRef
from inspex_kernel.domain.ports import ObjectStorage
from inspex_kernel.exceptions import DocumentWriteError, StorageError
from inspex_kernel.logging_config import get_logger

logger = get_logger("services.artifact_generator")

DEFAULT_TITLE = "REFUGE BAY DOOR INSPECTION CERTIFICATE"
DEFAULT_STATEMENT = (
    "I hereby certify that the above refuge bay door has been inspected "
    "and meets the required standards."
)


class ArtifactGenerator:
    """Renders and stores certificate PDFs."""

    def __init__(
        self,
        storage: ObjectStorage,
        clock: Clock | None = None,
        key_prefix: str = "certificates/",
        title: str = DEFAULT_TITLE,
        statement: str = DEFAULT_STATEMENT,
    ):
        self._storage = storage
        self._clock = clock or SystemClock()
        self._key_prefix = key_prefix
        self._title = title
        self._statement = statement

    def generate(self, content: CertificateContent) -> DocumentRef:
        """
        Render ``content`` and write it to storage.

        Raises:
            DocumentWriteError: Rendering or the storage write failed.
        """
        filename = self.filename_for(content)
        key = f"{self._key_prefix}{filename}"

        try:
            pdf = self.render(content)
        except Exception as exc:
            logger.error(
                "certificate_render_failed",
                extra={"asset_id": str(content.asset.asset_id)},
                exc_info=True,
            )
            raise DocumentWriteError(key, f"render failed: {exc}") from exc

        try:
            ref = self._storage.put(key, pdf, content_type="application/pdf")
        except StorageError:
            raise
        except Exception as exc:
            raise DocumentWriteError(key, str(exc)) from exc

        logger.info(
            "certificate_document_stored",
            extra={
                "asset_id": str(content.asset.asset_id),
                "storage_key": ref,
                "size_bytes": len(pdf),
            },
        )
        return DocumentRef(storage_key=ref, filename=filename, size_bytes=len(pdf))

    def filename_for(self, content: CertificateContent) -> str:
        """certificate-<serial>-<epoch millis>-<random>.pdf"""
        millis = int(self._clock.now().timestamp() * 1000)
        serial = content.asset.serial_number.replace("/", "-")
        return f"certificate-{serial}-{millis}-{uuid4().hex[:8]}.pdf"

    def render(self, content: CertificateContent) -> bytes:
        """Build the certificate PDF in memory."""
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            rightMargin=54,
            leftMargin=54,
            topMargin=54,
            bottomMargin=36,
            title=self._title,
        )

        styles = getSampleStyleSheet()
        title_style = ParagraphStyle(
            "CertificateTitle",
            parent=styles["Heading1"],
            fontSize=18,
            alignment=TA_CENTER,
            spaceAfter=18,
        )
        heading_style = ParagraphStyle(
            "CertificateHeading",
            parent=styles["Heading2"],
            fontSize=13,
            spaceBefore=12,
            spaceAfter=6,
        )
        body = styles["BodyText"]
        note_style = ParagraphStyle(
            "CheckNote", parent=body, leftIndent=18, fontSize=9,
        )

        session = content.session

        story = [Paragraph(escape(self._title), title_style)]

        story.append(Paragraph("DOOR INFORMATION", heading_style))
        for label, value in self.door_information(content):
            story.append(Paragraph(f"<b>{label}:</b> {escape(value)}", body))

        story.append(Paragraph("INSPECTION RESULTS", heading_style))
        for line, notes in self.inspection_results(content):
            story.append(Paragraph(escape(line), body))
            if notes:
                story.append(Paragraph(f"Notes: {escape(notes)}", note_style))
        if session.notes:
            story.append(Spacer(1, 0.1 * inch))
            story.append(Paragraph(f"<b>Inspector notes:</b> {escape(session.notes)}", body))

        story.append(Paragraph("CERTIFICATION", heading_style))
        story.append(Paragraph(escape(self._statement), body))
        story.append(Spacer(1, 0.15 * inch))
        story.append(Paragraph(f"<b>Engineer:</b> {escape(content.engineer.name)}", body))
        story.append(
            Paragraph(f"<b>Date:</b> {content.issued_at.date().isoformat()}", body)
        )

        signature_image = self._signature_flowable(content)
        if content.signature:
            story.append(Paragraph("<b>Signature:</b> [Digital Signature Applied]", body))
            if signature_image is not None:
                story.append(signature_image)
        else:
            story.append(Paragraph("<b>Signature:</b> [No Signature]", body))

        doc.build(story)
        return buffer.getvalue()

    @staticmethod
    def door_information(content: CertificateContent) -> list[tuple[str, str]]:
        asset = content.asset
        session = content.session
        inspected_on = (session.completed_at or session.started_at).date().isoformat()
        return [
            ("PO Number", asset.po_number or "N/A"),
            ("Serial Number", asset.serial_number),
            ("Drawing Number", asset.drawing_number or "N/A"),
            ("Description", asset.description or "N/A"),
            ("Size", asset.size),
            ("Pressure Rating", f"{asset.pressure_kpa} kPa"),
            ("Inspection Date", inspected_on),
            ("Inspector", content.inspector_name),
        ]

    @staticmethod
    def inspection_results(content: CertificateContent) -> list[tuple[str, str | None]]:
        """``("n. name: PASS|FAIL", notes)`` per check, in checklist order."""
        return [
            (f"{position}. {check.point_name}: {'PASS' if check.is_checked else 'FAIL'}", check.notes)
            for position, check in enumerate(content.session.checks, start=1)
        ]

    @staticmethod
    def _signature_flowable(content: CertificateContent) -> Image | None:
        if not content.signature:
            return None
        try:
            reader = ImageReader(io.BytesIO(content.signature))
            width, height = reader.getSize()
        except Exception:
            logger.warning(
                "signature_image_unreadable",
                extra={"engineer_id": str(content.engineer.actor_id)},
            )
            return None
        target_width = 2.0 * inch
        scale = target_width / float(width) if width else 1.0
        return Image(
            io.BytesIO(content.signature),
            width=target_width,
            height=float(height) * scale,
        )
