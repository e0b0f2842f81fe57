"""
PDF rendering of a completed fact-find (ReportLab).
"""

import base64
import binascii
import logging
from html import escape
from io import BytesIO
from typing import Optional

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Image, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from ..errors import ExportError
from .summary import FactFindDocument

logger = logging.getLogger(__name__)

DECLARATION = (
    "I confirm that the information provided in this fact-find is true and "
    "accurate to the best of my knowledge."
)


def _signature_image(data_url: Optional[str]) -> Optional[Image]:
    """Decode a ``data:image/png;base64,...`` signature into a flowable."""
    if not data_url:
        return None
    _, _, encoded = data_url.partition("base64,")
    try:
        raw = base64.b64decode(encoded or data_url, validate=True)
    except (binascii.Error, ValueError):
        logger.warning("Signature is not valid base64, leaving it out of the PDF")
        return None
    try:
        image = Image(BytesIO(raw), width=60 * mm, height=25 * mm, kind="proportional")
    except Exception as e:
        logger.warning("Signature image unreadable (%s), leaving it out of the PDF", e)
        return None
    image.hAlign = "LEFT"
    return image


def generate_fact_find_pdf(document: FactFindDocument) -> bytes:
    """
    Render the fact-find as a PDF.

    Layout: title, client and date, a two-column question/answer table, the
    truth declaration and, when present, the client's signature.

    Raises:
        ExportError: If ReportLab cannot build the document
    """
    styles = getSampleStyleSheet()
    cell = ParagraphStyle("Cell", parent=styles["BodyText"], fontSize=9, leading=11)
    header = ParagraphStyle("Header", parent=cell, fontName="Helvetica-Bold", textColor=colors.white)

    story = [
        Paragraph(escape(document.title), styles["Title"]),
        Paragraph(f"Client: {escape(document.client_name or document.client_email)}", styles["Normal"]),
        Paragraph(f"Date: {document.display_date}", styles["Normal"]),
        Paragraph(f"Reference: fact-find-{document.session_id}", styles["Normal"]),
        Spacer(1, 8 * mm),
    ]

    rows = [[Paragraph("Question", header), Paragraph("Answer", header)]]
    for item in document.items:
        rows.append([Paragraph(escape(item.question), cell), Paragraph(escape(item.answer), cell)])
    table = Table(rows, colWidths=[95 * mm, 75 * mm], repeatRows=1)
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#1f3b57")),
        ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.HexColor("#f2f5f8")]),
    ]))
    story.append(table)

    story.extend([
        Spacer(1, 10 * mm),
        Paragraph("Declaration", styles["Heading2"]),
        Paragraph(DECLARATION, styles["Normal"]),
        Spacer(1, 6 * mm),
    ])
    signature = _signature_image(document.signature_data)
    if signature is not None:
        story.extend([Paragraph("Signature:", styles["Normal"]), signature])

    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        title=document.title,
        leftMargin=20 * mm,
        rightMargin=20 * mm,
        topMargin=18 * mm,
        bottomMargin=18 * mm,
    )
    try:
        doc.build(story)
    except Exception as e:
        logger.error("PDF generation failed for session %s: %s", document.session_id, e)
        raise ExportError(f"PDF generation failed: {e}") from e
    return buffer.getvalue()
