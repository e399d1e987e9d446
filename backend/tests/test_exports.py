from __future__ import annotations

import datetime as dt
from collections import defaultdict
from pathlib import Path

from openpyxl import load_workbook

from taskdesk import services
from taskdesk.exports import (
    GESTORE_HEADER,
    export_range,
    gestore_text,
    group_gestore_lines,
    render_gestore_text,
    write_summary_pdf,
    write_workbook,
)
from taskdesk.models import ExportRecord
from taskdesk.summaries import range_summary


def _sample_rows(make_row):
    return [
        make_row("2026-01-15", 45, title="Riunione", client_name="Beta", reference_verbale="VB-7", resource_icon="MR"),
        make_row("2026-01-14", 30, title="Analisi", client_name="Acme", reference_verbale="VB-1", resource_icon="LB"),
        make_row("2026-01-14", 20, title="Analisi bis", client_name="Acme", reference_verbale="VB-1", resource_icon="XX"),
        make_row("2026-01-14", 10, title="Supporto", reference_verbale=""),
        make_row("2026-01-16", 25, title="Supporto", client_name="Acme", in_gestore=True),
    ]


def test_gestore_lines_match_summary_groups(make_row):
    rows = _sample_rows(make_row)
    summary = range_summary(rows, dt.date(2026, 1, 1), dt.date(2026, 1, 31))
    from_lines = defaultdict(int)
    for line in group_gestore_lines(rows):
        from_lines[(line.client_name, line.label)] += line.minutes
    from_groups = {(group.client_name, group.label): group.total_minutes for group in summary.groups}
    assert dict(from_lines) == from_groups
    assert sum(from_lines.values()) == summary.total_minutes


def test_gestore_lines_are_sorted_and_keep_first_title(make_row):
    lines = group_gestore_lines(_sample_rows(make_row))
    keys = [(line.date, line.client_name, line.label) for line in lines]
    assert keys == sorted(keys)
    acme = next(line for line in lines if line.label == "VB-1")
    assert acme.minutes == 50
    assert acme.title == "Analisi"
    assert acme.icon == "LB"


def test_gestore_text_layout(make_row):
    text = gestore_text(_sample_rows(make_row))
    lines = text.split("\n")
    assert lines[0] == "Data\tCliente\tTitolo\tMinuti\tRif Verbale\tICON"
    assert "\t".join(GESTORE_HEADER) == lines[0]
    assert lines[1] == "2026-01-14\tAcme\tAnalisi\t50\tVB-1\tLB"
    assert lines[2] == "2026-01-14\tNessun cliente\tSupporto\t10\t\t"
    assert lines[-1] == "2026-01-16\tAcme\tSupporto\t25\t\t"
    assert len(lines) == 5


def test_gestore_text_flattens_control_characters(make_row):
    rows = [make_row("2026-01-14", 30, title="Riga\tuno\nriga due", client_name="Acme")]
    data_line = render_gestore_text(group_gestore_lines(rows)).split("\n")[1]
    assert data_line.split("\t") == ["2026-01-14", "Acme", "Riga uno riga due", "30", "", ""]


def test_gestore_text_is_deterministic(make_row):
    rows = _sample_rows(make_row)
    assert gestore_text(rows) == gestore_text(list(rows))
    assert gestore_text([]) == "\t".join(GESTORE_HEADER)


def test_workbook_sheets(tmp_path, make_row):
    path = write_workbook(tmp_path / "mese.xlsx", _sample_rows(make_row))
    wb = load_workbook(path)
    assert wb.sheetnames == ["Attivita", "Daily Task ICON", "Riepilogo", "Da inserire"]

    activity_rows = list(wb["Attivita"].iter_rows(min_row=2, values_only=True))
    assert len(activity_rows) == 5
    assert activity_rows[3][1] == "Nessun cliente"
    assert activity_rows[4][7] == "SI"

    summary_rows = list(wb["Riepilogo"].iter_rows(min_row=2, values_only=True))
    assert summary_rows == [("Acme", 75, 1.25), ("Beta", 45, 0.75), ("Nessun cliente", 10, 0.17)]
    assert wb["Riepilogo"].cell(row=2, column=3).number_format == "0.00"

    pending = list(wb["Da inserire"].iter_rows(min_row=2, values_only=True))
    assert len(pending) == 4
    assert all(row[2] != "Supporto" or row[1] != "Acme" for row in pending)


def test_summary_pdf_is_written(tmp_path, make_row):
    rows = _sample_rows(make_row)
    summary = range_summary(rows, dt.date(2026, 1, 1), dt.date(2026, 1, 31))
    path = write_summary_pdf(tmp_path / "riepilogo.pdf", "Riepilogo gennaio", summary)
    assert path.read_bytes().startswith(b"%PDF")


def test_export_range_records_checksum(session, tmp_path):
    services.create_activity(session, "2026-01-14", "Analisi", 30, client_name="Acme")
    record = export_range(session, tmp_path / "exports", dt.date(2026, 1, 1), dt.date(2026, 1, 31), "txt")
    assert record.id is not None
    assert record.checksum and len(record.checksum) == 64
    content = Path(record.path).read_text(encoding="utf-8")
    assert "Acme\tAnalisi\t30" in content
    assert session.query(ExportRecord).count() == 1
