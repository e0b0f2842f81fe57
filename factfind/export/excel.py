"""
Excel export of a completed fact-find (openpyxl).

Sheet layout:

    1  <title>                       (bold, 16pt)
    2  Session ID      | <id>
    3  Date Completed  | <ISO timestamp>
    4  Client Name     | <name or email>
    5  Client Email    | <email>
    6
    7  Question        | Answer      (bold)
    8+ one row per answer
"""

import logging
from io import BytesIO

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font

from ..errors import ExportError
from .summary import FactFindDocument

logger = logging.getLogger(__name__)

SHEET_TITLE = "Fact Find Data"
DEFAULT_TITLE = "Insurance Fact Find Summary"
HEADER_ROW = 7
XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def generate_fact_find_excel(document: FactFindDocument, title: str = DEFAULT_TITLE) -> bytes:
    """
    Build the XLSX workbook for a fact-find.

    Args:
        document: Completed fact-find
        title: Text of the first row (admins may override it in config)

    Raises:
        ExportError: If the workbook cannot be written
    """
    completed = document.completed_at or document.generated_at

    wb = Workbook()
    ws = wb.active
    ws.title = SHEET_TITLE

    ws.append([title or DEFAULT_TITLE])
    ws.append(["Session ID", document.session_id])
    ws.append(["Date Completed", completed.isoformat()])
    ws.append(["Client Name", document.client_name or document.client_email])
    ws.append(["Client Email", document.client_email])
    ws.append([])
    ws.append(["Question", "Answer"])
    for item in document.items:
        ws.append([item.question, item.answer])

    ws.cell(row=1, column=1).font = Font(bold=True, size=16)
    for cell in ws[HEADER_ROW]:
        cell.font = Font(bold=True)
    for row in ws.iter_rows(min_row=HEADER_ROW + 1):
        for cell in row:
            cell.alignment = Alignment(wrap_text=True, vertical="top")

    ws.column_dimensions["A"].width = 40
    ws.column_dimensions["B"].width = 60

    buffer = BytesIO()
    try:
        wb.save(buffer)
    except (OSError, ValueError) as e:
        logger.error("Excel export failed for session %s: %s", document.session_id, e)
        raise ExportError(f"Excel export failed: {e}") from e
    return buffer.getvalue()
