"""
PDF export of timesheet reports.

A report is first built as a list of ``(style, text)`` lines, then drawn onto
a reportlab canvas, paginating as needed.
"""

from datetime import date
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from shared.logging_config import get_client_logger
from shared.models import Project, TimeEntry
from shared.reports import (calculate_total_hours, entries_in_range,
                            get_week_range, project_stats)

logger = get_client_logger()

Line = Tuple[str, str]

STYLES = {
    'title': ('Helvetica-Bold', 16, 24),
    'subtitle': ('Helvetica', 10, 18),
    'heading': ('Helvetica-Bold', 12, 20),
    'text': ('Helvetica', 10, 14),
    'row': ('Courier', 9, 12),
    'total': ('Helvetica-Bold', 11, 18),
    'blank': ('Helvetica', 10, 10),
}

MARGIN = 40


def _row(day: str, project: str, task: str, hours: float) -> str:
    return f"{day:<11} {project[:20]:<20} {task[:34]:<34} {hours:>6.2f}"


def build_report_lines(projects: Iterable[Project], entries: List[TimeEntry], title: str,
                       start: Optional[date] = None, end: Optional[date] = None) -> List[Line]:
    """Lay out a report: summary, time by project, then every entry"""
    projects = list(projects)
    names = {p.id: p.name for p in projects}
    entries = sorted(entries, key=lambda e: (e.date, names.get(e.project_id, '')))
    total = calculate_total_hours(entries)
    stats = project_stats(projects, entries)

    lines: List[Line] = [('title', title)]
    if start and end:
        lines.append(('subtitle', f"Period: {start.isoformat()} to {end.isoformat()}"))
    lines.append(('blank', ''))

    lines.append(('heading', 'Summary'))
    lines.append(('text', f"Total hours: {total:.2f}"))
    lines.append(('text', f"Entries: {len(entries)}"))
    lines.append(('text', f"Projects: {len(stats)}"))
    lines.append(('blank', ''))

    if stats:
        lines.append(('heading', 'Time by project'))
        for stat in stats:
            lines.append(('text', f"{stat.project.name}: {stat.hours:.2f}h ({stat.percentage:.1f}%)"))
        lines.append(('blank', ''))

    lines.append(('heading', 'Entries'))
    if not entries:
        lines.append(('text', 'No entries recorded.'))
    else:
        lines.append(('row', f"{'Date':<11} {'Project':<20} {'Task':<34} {'Hours':>6}"))
        for entry in entries:
            lines.append(('row', _row(entry.date, names.get(entry.project_id, 'Unknown'), entry.task, entry.hours)))
    lines.append(('blank', ''))
    lines.append(('total', f"Total: {total:.2f} hours"))
    return lines


def export_to_pdf(filename: Path, lines: List[Line], pagesize=A4) -> Path:
    """Draw report lines into a PDF file"""
    filename = Path(filename)
    width, height = pagesize
    c = canvas.Canvas(str(filename), pagesize=pagesize)
    y = height - MARGIN

    for style, text in lines:
        font, size, leading = STYLES.get(style, STYLES['text'])
        if y - leading < MARGIN:
            c.showPage()
            y = height - MARGIN

        c.setFont(font, size)
        if style == 'title':
            c.drawCentredString(width / 2, y, text)
        elif text:
            c.drawString(MARGIN, y, text)
        y -= leading

    c.save()
    logger.info(f"Report exported to {filename}")
    return filename


def export_weekly_timesheet(filename: Path, projects: Iterable[Project], entries: Iterable[TimeEntry],
                            week_offset: int = 0, today: Optional[date] = None) -> Path:
    start, end = get_week_range(week_offset, today)
    week_entries = entries_in_range(entries, start, end)
    lines = build_report_lines(projects, week_entries, 'Weekly Timesheet', start, end)
    return export_to_pdf(filename, lines)


def export_all_entries(filename: Path, projects: Iterable[Project], entries: Iterable[TimeEntry]) -> Path:
    entries = list(entries)
    start = end = None
    if entries:
        dates = sorted(e.date for e in entries)
        start, end = date.fromisoformat(dates[0]), date.fromisoformat(dates[-1])
    lines = build_report_lines(projects, entries, 'Timesheet Report', start, end)
    return export_to_pdf(filename, lines)
