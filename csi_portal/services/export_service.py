"""
CSI Portal
Report exports — Excel (openpyxl) and PDF (reportlab).

Both exports run ``report_service.generate_report`` with the caller's
filters (DepartmentHead isolation included) and record an ``Export``
audit row. Cell values that a spreadsheet would evaluate as a formula
are neutralised with a leading quote.
"""

import io
import logging
from html import escape

from openpyxl import Workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from csi_portal.services import audit_service, report_service
from csi_portal.utils.helpers import utcnow

logger = logging.getLogger(__name__)

HEADER_FILL = PatternFill(start_color="354A5F", end_color="354A5F", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True, size=11)
THIN_BORDER = Border(
    left=Side(style="thin"), right=Side(style="thin"),
    top=Side(style="thin"), bottom=Side(style="thin"),
)
TAKEN_OUT_FILL = PatternFill(start_color="FDEDEC", end_color="FDEDEC", fill_type="solid")

FORMULA_PREFIXES = ("=", "+", "-", "@")
PDF_DETAIL_ROWS = 20

DETAIL_COLUMNS = [
    ("Response ID", "response_id"),
    ("Respondent Email", "respondent_email"),
    ("Respondent Name", "respondent_name"),
    ("Submitted At", "submitted_at"),
    ("Business Unit", "business_unit_name"),
    ("Division", "division_name"),
    ("Department", "department_name"),
    ("Application", "application_name"),
    ("Question", "prompt_text"),
    ("Type", "question_type"),
    ("Value", "value"),
    ("Comment", "comment_value"),
    ("Takeout Status", "takeout_status"),
    ("Takeout Reason", "takeout_reason"),
]


def sanitize_for_excel(value):
    """Drop characters openpyxl refuses and prefix = + - @ so nothing runs as a formula."""
    if not isinstance(value, str):
        return value
    value = ILLEGAL_CHARACTERS_RE.sub("", value)
    if value.startswith(FORMULA_PREFIXES):
        return "'" + value
    return value


def _detail_value(row: dict):
    if row.get("text_value"):
        return row["text_value"]
    if row.get("numeric_value") is not None:
        return row["numeric_value"]
    if row.get("date_value"):
        return row["date_value"]
    if row.get("matrix_values"):
        return ", ".join(f"{k}: {v}" for k, v in row["matrix_values"].items())
    return ""


def export_filename(report: dict, extension: str) -> str:
    return f"survey-report-{report['survey']['id']}-{utcnow():%Y%m%d%H%M%S}.{extension}"


def _record_export(report: dict, fmt: str):
    audit_service.log_export("Report", {
        "survey_id": report["survey"]["id"],
        "format": fmt,
        "filters": report["filters"],
        "row_count": len(report["responses"]),
    })


# ═════════════════════════════════════════════════════════════════════════════
# Excel
# ═════════════════════════════════════════════════════════════════════════════

def _apply_header_style(ws, row: int, col_count: int) -> None:
    for col in range(1, col_count + 1):
        cell = ws.cell(row=row, column=col)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.border = THIN_BORDER
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)


def _auto_width(ws) -> None:
    """Size columns to content, capped at 60 chars."""
    for col in ws.columns:
        max_len = 0
        for cell in col:
            if cell.value is not None:
                max_len = max(max_len, min(len(str(cell.value)), 60))
        ws.column_dimensions[get_column_letter(col[0].column)].width = max(max_len + 4, 12)


def build_workbook(report: dict) -> Workbook:
    survey, stats = report["survey"], report["statistics"]
    wb = Workbook()

    ws = wb.active
    ws.title = "Summary"
    ws["A1"] = sanitize_for_excel(survey["title"])
    ws["A1"].font = Font(size=16, bold=True, color="354A5F")
    ws["A2"] = f"Period: {survey['start_date'][:10]} - {survey['end_date'][:10]}"
    ws["A2"].font = Font(italic=True, color="666666")
    ws["A3"] = "Taken-out answers included" if report["filters"]["include_taken_out"] else "Taken-out answers excluded"

    ws.append([])
    ws.append(["Metric", "Value"])
    _apply_header_style(ws, ws.max_row, 2)
    for label, key in (
        ("Total Responses", "total_responses"),
        ("Unique Respondents", "unique_respondents"),
        ("Average Rating", "average_rating"),
        ("Min Rating", "min_rating"),
        ("Max Rating", "max_rating"),
        ("Active Answers", "active_count"),
        ("Proposed Takeouts", "proposed_count"),
        ("Taken Out", "taken_out_count"),
    ):
        ws.append([label, stats[key] if stats[key] is not None else "-"])
    _auto_width(ws)

    details = wb.create_sheet("Details")
    details.append([header for header, _ in DETAIL_COLUMNS])
    _apply_header_style(details, 1, len(DETAIL_COLUMNS))
    for row in report["responses"]:
        values = {**row, "value": _detail_value(row)}
        details.append([sanitize_for_excel(values.get(key)) for _, key in DETAIL_COLUMNS])
        if row["takeout_status"] == "TakenOut":
            for cell in details[details.max_row]:
                cell.fill = TAKEN_OUT_FILL
    details.freeze_panes = "A2"
    _auto_width(details)

    dist = wb.create_sheet("Rating Distribution")
    dist.append(["Rating", "Count", "Percentage"])
    _apply_header_style(dist, 1, 3)
    total = sum(d["count"] for d in report["rating_distribution"]) or 1
    for d in report["rating_distribution"]:
        dist.append([d["rating"], d["count"], f"{d['count'] / total * 100:.1f}%"])
    _auto_width(dist)

    return wb


def export_excel(data: dict, user=None) -> tuple[io.BytesIO, str]:
    report = report_service.generate_report(data, user)
    wb = build_workbook(report)
    buf = io.BytesIO()
    wb.save(buf)
    buf.seek(0)
    _record_export(report, "xlsx")
    logger.info("Excel report exported for survey %s", report["survey"]["id"])
    return buf, export_filename(report, "xlsx")


# ═════════════════════════════════════════════════════════════════════════════
# PDF
# ═════════════════════════════════════════════════════════════════════════════

_TABLE_STYLE = TableStyle([
    ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#354A5F")),
    ("TEXTCOLOR", (0, 0), (-1, 0), colors.whitesmoke),
    ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
    ("FONTSIZE", (0, 0), (-1, -1), 9),
    ("BOTTOMPADDING", (0, 0), (-1, 0), 8),
    ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
    ("VALIGN", (0, 0), (-1, -1), "TOP"),
])


def _footer(canvas, doc):
    canvas.saveState()
    canvas.setFont("Helvetica", 8)
    canvas.setFillColor(colors.grey)
    canvas.drawString(doc.leftMargin, 0.4 * inch, f"CSI Portal - generated {utcnow():%d %b %Y %H:%M} UTC")
    canvas.drawRightString(doc.pagesize[0] - doc.rightMargin, 0.4 * inch, f"Page {doc.page}")
    canvas.restoreState()


def _cell(text, style):
    text = ILLEGAL_CHARACTERS_RE.sub("", str(text if text is not None else ""))
    return Paragraph(escape(text), style)


def build_pdf(report: dict) -> bytes:
    survey, stats = report["survey"], report["statistics"]
    buf = io.BytesIO()
    doc = SimpleDocTemplate(
        buf, pagesize=landscape(A4),
        leftMargin=0.6 * inch, rightMargin=0.6 * inch,
        topMargin=0.6 * inch, bottomMargin=0.7 * inch,
        title=f"Survey Report - {survey['title']}",
    )
    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(
        "ReportTitle", parent=styles["Heading1"], fontSize=20,
        alignment=TA_CENTER, textColor=colors.HexColor("#354A5F"), spaceAfter=12,
    )
    heading = ParagraphStyle(
        "ReportHeading", parent=styles["Heading2"], fontSize=13,
        spaceBefore=14, spaceAfter=6, textColor=colors.HexColor("#354A5F"),
    )
    small = ParagraphStyle("Small", parent=styles["Normal"], fontSize=8, leading=10)

    story = [
        Paragraph(f"Survey Report: {escape(survey['title'])}", title_style),
        Paragraph(f"Period: {survey['start_date'][:10]} to {survey['end_date'][:10]}", styles["Normal"]),
        Paragraph(f"Status: {survey['status']}", styles["Normal"]),
        Paragraph(
            "Taken-out answers included" if report["filters"]["include_taken_out"]
            else "Taken-out answers excluded",
            styles["Normal"],
        ),
        Spacer(1, 10),
        Paragraph("Summary Statistics", heading),
    ]

    def fmt(value):
        return "-" if value is None else str(value)

    summary = [
        ["Metric", "Value"],
        ["Total Responses", fmt(stats["total_responses"])],
        ["Unique Respondents", fmt(stats["unique_respondents"])],
        ["Average Rating", fmt(stats["average_rating"])],
        ["Min / Max Rating", f"{fmt(stats['min_rating'])} / {fmt(stats['max_rating'])}"],
        ["Taken Out", fmt(stats["taken_out_count"])],
        ["Proposed Takeouts", fmt(stats["proposed_count"])],
    ]
    table = Table(summary, colWidths=[2.5 * inch, 2 * inch], hAlign="LEFT")
    table.setStyle(_TABLE_STYLE)
    story.append(table)

    if report["rating_distribution"]:
        story.append(Paragraph("Rating Distribution", heading))
        total = sum(d["count"] for d in report["rating_distribution"]) or 1
        rows = [["Rating", "Count", "Percentage"]] + [
            [str(d["rating"]), str(d["count"]), f"{d['count'] / total * 100:.1f}%"]
            for d in report["rating_distribution"]
        ]
        table = Table(rows, colWidths=[1.2 * inch, 1 * inch, 1.2 * inch], hAlign="LEFT")
        table.setStyle(_TABLE_STYLE)
        story.append(table)

    details = report["responses"][:PDF_DETAIL_ROWS]
    if details:
        story.append(Paragraph(
            f"Response Details (first {len(details)} of {len(report['responses'])})", heading,
        ))
        rows = [["Respondent", "Department", "Application", "Question", "Value", "Status"]]
        for row in details:
            rows.append([
                _cell(row["respondent_email"], small),
                _cell(row["department_name"], small),
                _cell(row["application_name"], small),
                _cell(row["prompt_text"], small),
                _cell(_detail_value(row), small),
                _cell(row["takeout_status"], small),
            ])
        table = Table(
            rows, repeatRows=1,
            colWidths=[1.9 * inch, 1.3 * inch, 1.3 * inch, 2.8 * inch, 1.7 * inch, 1.0 * inch],
        )
        table.setStyle(_TABLE_STYLE)
        story.append(table)

    doc.build(story, onFirstPage=_footer, onLaterPages=_footer)
    return buf.getvalue()


def export_pdf(data: dict, user=None) -> tuple[io.BytesIO, str]:
    report = report_service.generate_report(data, user)
    buf = io.BytesIO(build_pdf(report))
    _record_export(report, "pdf")
    logger.info("PDF report exported for survey %s", report["survey"]["id"])
    return buf, export_filename(report, "pdf")
