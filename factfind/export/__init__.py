"""
Export collaborators: PDF, Excel and email.
"""

from .mailer import FactFindMailer, parse_recipients, render_email_body
from .excel import XLSX_MIMETYPE, generate_fact_find_excel
from .pdf import generate_fact_find_pdf
from .summary import FactFindDocument, SummaryItem, build_summary, summary_html

__all__ = [
    "FactFindMailer",
    "parse_recipients",
    "render_email_body",
    "XLSX_MIMETYPE",
    "generate_fact_find_excel",
    "generate_fact_find_pdf",
    "FactFindDocument",
    "SummaryItem",
    "build_summary",
    "summary_html",
]
