"""Workbook, Gestore text and PDF exports of activity rows."""

from __future__ import annotations

import datetime as dt
import hashlib
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Sequence, Tuple

from fastapi import HTTPException, status
from openpyxl import Workbook
from openpyxl.utils import get_column_letter
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import cm
from reportlab.pdfgen import canvas
from sqlalchemy.orm import Session

from .models import ExportRecord, utcnow
from .records import ActivityRow, minutes_to_hours
from .services import fetch_activity_rows
from .summaries import RangeSummary, client_totals, range_summary

GESTORE_HEADER = ("Data", "Cliente", "Titolo", "Minuti", "Rif Verbale", "ICON")
EXPORT_FORMATS = ("xlsx", "pdf", "txt")

ACTIVITY_COLUMNS = (
    ("Data", 12),
    ("Cliente", 28),
    ("Titolo", 30),
    ("Descrizione", 40),
    ("Minuti", 10),
    ("Rif Verbale", 18),
    ("Risorsa/ICON", 18),
    ("In gestore", 12),
    ("Verbale fatto", 12),
)
DAILY_TASK_COLUMNS = (
    ("Data", 12),
    ("Cliente", 28),
    ("Titolo", 30),
    ("Rif Verbale", 18),
    ("ICON", 16),
    ("Minuti", 10),
)
SUMMARY_COLUMNS = (("Cliente", 32), ("Minuti", 12), ("Ore", 10))
PENDING_COLUMNS = (
    ("Data", 12),
    ("Cliente", 28),
    ("Titolo", 30),
    ("Minuti", 10),
    ("Rif Verbale", 18),
)

_CONTROL_WHITESPACE = re.compile(r"[\t\r\n]+")


@dataclass(slots=True)
class GestoreLine:
    date: dt.date
    client_name: str
    label: str
    title: str
    minutes: int
    reference: str
    icon: str


def format_hours(minutes: int) -> str:
    return f"{minutes_to_hours(minutes):.2f}"


def _yes_no(value: bool) -> str:
    return "SI" if value else "NO"


def is_pending(row: ActivityRow) -> bool:
    """Rows not yet transferred to the Gestore."""
    return row.in_gestore is False


# ----------------------------------------------------------------------
# Workbook
# ----------------------------------------------------------------------


def _add_sheet(wb: Workbook, title: str, columns: Sequence[Tuple[str, int]], first: bool = False):
    ws = wb.active if first else wb.create_sheet()
    ws.title = title
    ws.append([header for header, _width in columns])
    for index, (_header, width) in enumerate(columns, start=1):
        ws.column_dimensions[get_column_letter(index)].width = width
    return ws


def write_workbook(path: Path, rows: Iterable[ActivityRow]) -> Path:
    rows = list(rows)
    wb = Workbook()

    ws = _add_sheet(wb, "Attivita", ACTIVITY_COLUMNS, first=True)
    for row in rows:
        ws.append(
            [
                row.date.isoformat(),
                row.client_display,
                row.title,
                row.description or "",
                row.minutes,
                row.reference_verbale or "",
                row.resource_icon or "",
                _yes_no(row.in_gestore),
                _yes_no(row.verbale_done),
            ]
        )

    ws = _add_sheet(wb, "Daily Task ICON", DAILY_TASK_COLUMNS)
    for row in rows:
        ws.append(
            [
                row.date.isoformat(),
                row.client_display,
                row.title,
                row.reference_verbale or "",
                row.resource_icon or "",
                row.minutes,
            ]
        )

    ws = _add_sheet(wb, "Riepilogo", SUMMARY_COLUMNS)
    for total in client_totals(rows):
        ws.append([total.client_name, total.total_minutes, minutes_to_hours(total.total_minutes)])
        ws.cell(row=ws.max_row, column=3).number_format = "0.00"

    ws = _add_sheet(wb, "Da inserire", PENDING_COLUMNS)
    for row in rows:
        if not is_pending(row):
            continue
        ws.append(
            [
                row.date.isoformat(),
                row.client_display,
                row.title,
                row.minutes,
                row.reference_verbale or "",
            ]
        )

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    wb.save(path)
    return path


# ----------------------------------------------------------------------
# Gestore text
# ----------------------------------------------------------------------


def group_gestore_lines(rows: Iterable[ActivityRow]) -> List[GestoreLine]:
    """Collapse rows sharing date, client and label into one summed line.

    Title and ICON come from the first row of each group in input order.
    """
    groups: Dict[Tuple[dt.date, str, str], GestoreLine] = {}
    for row in rows:
        key = (row.date, row.client_display, row.label)
        line = groups.get(key)
        if line is None:
            groups[key] = GestoreLine(
                date=row.date,
                client_name=row.client_display,
                label=row.label,
                title=row.title,
                minutes=row.minutes,
                reference=row.reference_verbale or "",
                icon=row.resource_icon or "",
            )
        else:
            line.minutes += row.minutes
    return [groups[key] for key in sorted(groups)]


def _cell(value: object) -> str:
    return _CONTROL_WHITESPACE.sub(" ", str(value))


def render_gestore_text(lines: Iterable[GestoreLine]) -> str:
    output = ["\t".join(GESTORE_HEADER)]
    for line in lines:
        output.append(
            "\t".join(
                _cell(value)
                for value in (
                    line.date.isoformat(),
                    line.client_name,
                    line.title,
                    line.minutes,
                    line.reference,
                    line.icon,
                )
            )
        )
    return "\n".join(output)


def gestore_text(rows: Iterable[ActivityRow]) -> str:
    return render_gestore_text(group_gestore_lines(rows))


# ----------------------------------------------------------------------
# PDF
# ----------------------------------------------------------------------


def write_summary_pdf(path: Path, title: str, summary: RangeSummary) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    pdf = canvas.Canvas(str(path), pagesize=A4)
    width, height = A4
    y = height - 2 * cm
    pdf.setTitle(title)
    pdf.setFont("Helvetica-Bold", 16)
    pdf.drawString(2 * cm, y, title)
    y -= 1 * cm
    pdf.setFont("Helvetica", 11)
    pdf.drawString(
        2 * cm,
        y,
        f"Totale: {summary.total_minutes} min ({format_hours(summary.total_minutes)} h), "
        f"{summary.total_entries} attività",
    )
    y -= 1.2 * cm
    pdf.setFont("Helvetica", 12)
    column_widths = [10 * cm, 3 * cm]
    pdf.drawString(2 * cm, y, "Cliente")
    pdf.drawRightString(2 * cm + column_widths[0] + column_widths[1] - 0.2 * cm, y, "Minuti")
    pdf.drawRightString(width - 2 * cm, y, "Ore")
    y -= 0.8 * cm
    pdf.setFont("Helvetica", 11)
    for total in summary.by_client:
        pdf.drawString(2 * cm, y, total.client_name[:60])
        pdf.drawRightString(2 * cm + column_widths[0] + column_widths[1] - 0.2 * cm, y, str(total.total_minutes))
        pdf.drawRightString(width - 2 * cm, y, format_hours(total.total_minutes))
        y -= 0.7 * cm
        if y < 2 * cm:
            pdf.showPage()
            y = height - 2 * cm
            pdf.setFont("Helvetica", 11)
    pdf.save()
    return path


# ----------------------------------------------------------------------
# Stored exports
# ----------------------------------------------------------------------


def _checksum_file(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            digest.update(chunk)
    return digest.hexdigest()


def export_range(
    db: Session,
    export_dir: Path,
    start_date: dt.date,
    end_date: dt.date,
    export_format: str,
) -> ExportRecord:
    if export_format not in EXPORT_FORMATS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Formato di export non supportato")
    if end_date < start_date:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Intervallo di date non valido")

    rows = fetch_activity_rows(db, start_date, end_date)
    filename = f"taskdesk_{start_date}_{end_date}_{int(utcnow().timestamp())}.{export_format}"
    path = Path(export_dir) / filename

    if export_format == "xlsx":
        write_workbook(path, rows)
    elif export_format == "pdf":
        write_summary_pdf(path, f"TaskDesk Riepilogo {start_date} – {end_date}", range_summary(rows, start_date, end_date))
    else:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(gestore_text(rows), encoding="utf-8")

    export = ExportRecord(
        format=export_format,
        range_start=start_date,
        range_end=end_date,
        path=str(path),
        checksum=_checksum_file(path),
    )
    db.add(export)
    db.commit()
    db.refresh(export)
    return export


def get_export(db: Session, export_id: int) -> ExportRecord:
    export = db.get(ExportRecord, export_id)
    if not export:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Export non trovato")
    return export
