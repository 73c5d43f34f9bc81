"""
Results export — CSV and Excel renditions of the prioritized item list.

Rows follow the Results order: by rank when anything is ranked (unranked
items after them in CD3 order), otherwise by CD3. Numbers are rendered
with two decimals.

Usage:
    from prioritizer.services.export_service import generate_items_csv

    body = generate_items_csv(items, state)
    filename = generate_export_filename()
"""

import csv
import io
import logging
from datetime import datetime, timezone

from openpyxl import Workbook
from openpyxl.styles import Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from prioritizer.services import sequencing

logger = logging.getLogger(__name__)

EXPORT_COLUMNS = [
    "Rank",
    "Item Name",
    "Link",
    "Urgency",
    "Urgency Title",
    "Value",
    "Value Title",
    "Duration",
    "Duration Title",
    "Cost of Delay",
    "CD3",
    "Confidence Weighted CD3",
    "Active Status",
    "Notes Count",
    "Notes",
    "Has Confidence Survey",
    "Created Date",
]

HEADER_FILL = PatternFill(start_color="354A5F", end_color="354A5F", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True, size=11)
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)


# ── Row building ─────────────────────────────────────────────────────────


def _bucket_title(buckets, category, level):
    if not level:
        return ""
    return buckets[category][level].title


def _format_notes(notes):
    return "; ".join(n.text for n in notes if n.text and n.text.strip())


def _format_date(value):
    if not value:
        return ""
    try:
        return datetime.fromisoformat(value).strftime("%Y-%m-%d %H:%M:%S")
    except (TypeError, ValueError):
        return value


def _fixed(value):
    return f"{(value or 0):.2f}"


def build_export_rows(items, state):
    """List of row lists (without the header) in export order."""
    buckets = state.buckets
    rows = []
    for index, item in enumerate(sequencing.get_results(items)):
        urgency = item.level_of("urgency")
        value = item.level_of("value")
        duration = item.level_of("duration")
        weighted = item.confidence_weighted_cd3 if item.has_confidence_survey else None
        rows.append([
            item.sequence if item.sequence is not None else index + 1,
            item.name,
            item.link or "",
            urgency or "",
            _bucket_title(buckets, "urgency", urgency),
            value or "",
            _bucket_title(buckets, "value", value),
            duration or "",
            _bucket_title(buckets, "duration", duration),
            _fixed(item.cost_of_delay),
            _fixed(item.cd3),
            _fixed(weighted) if weighted is not None else "",
            "Active" if item.active else "Inactive",
            len(item.notes),
            _format_notes(item.notes),
            "Yes" if item.has_confidence_survey else "No",
            _format_date(item.created_at),
        ])
    return rows


# ── Renditions ───────────────────────────────────────────────────────────


def generate_items_csv(items, state) -> str:
    """Header row plus one row per item. Quoting follows RFC 4180."""
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(EXPORT_COLUMNS)
    writer.writerows(build_export_rows(items, state))
    return buf.getvalue()


def generate_items_xlsx(items, state) -> io.BytesIO:
    """Same rows as the CSV in a single styled worksheet.

    Returns a BytesIO buffer ready for Flask send_file.
    """
    wb = Workbook()
    ws = wb.active
    ws.title = "Results"

    for col, header in enumerate(EXPORT_COLUMNS, 1):
        cell = ws.cell(row=1, column=col, value=header)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.border = THIN_BORDER

    for row_idx, row in enumerate(build_export_rows(items, state), start=2):
        for col, val in enumerate(row, 1):
            ws.cell(row=row_idx, column=col, value=val).border = THIN_BORDER

    widths = [8, 40, 40, 9, 14, 9, 14, 9, 14, 14, 10, 24, 14, 12, 50, 22, 20]
    for col, width in enumerate(widths, 1):
        ws.column_dimensions[get_column_letter(col)].width = width
    ws.freeze_panes = "A2"

    output = io.BytesIO()
    wb.save(output)
    output.seek(0)
    logger.debug("Generated xlsx export with %d rows", len(items))
    return output


def generate_export_filename(extension="csv", today=None) -> str:
    """``prioritizer-export-YYYY-MM-DD.<extension>`` for today (UTC)."""
    today = today or datetime.now(timezone.utc).date()
    return f"prioritizer-export-{today.isoformat()}.{extension}"
