"""
Report helpers: week ranges, grouping and totals for timesheet views and exports.
"""

from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from shared.models import Project, TimeEntry


@dataclass
class ProjectStat:
    """Aggregated hours for one project"""
    project: Project
    hours: float
    percentage: float
    entry_count: int


def get_week_range(offset: int = 0, today: Optional[date] = None) -> Tuple[date, date]:
    """Monday..Sunday of the current week, shifted by ``offset`` weeks"""
    today = today or date.today()
    target = today + timedelta(weeks=offset)
    start = target - timedelta(days=target.weekday())
    return start, start + timedelta(days=6)


def get_week_days(offset: int = 0, today: Optional[date] = None) -> List[date]:
    start, _ = get_week_range(offset, today)
    return [start + timedelta(days=i) for i in range(7)]


def entries_in_range(entries: Iterable[TimeEntry], start: date, end: date) -> List[TimeEntry]:
    """Entries whose date falls within [start, end]"""
    start_str, end_str = start.isoformat(), end.isoformat()
    # ISO dates compare correctly as strings
    return [e for e in entries if start_str <= e.date <= end_str]


def group_entries_by_project(entries: Iterable[TimeEntry]) -> Dict[str, List[TimeEntry]]:
    grouped: Dict[str, List[TimeEntry]] = OrderedDict()
    for entry in entries:
        grouped.setdefault(entry.project_id, []).append(entry)
    return grouped


def calculate_total_hours(entries: Iterable[TimeEntry]) -> float:
    return sum(entry.hours for entry in entries)


def project_stats(projects: Iterable[Project], entries: List[TimeEntry]) -> List[ProjectStat]:
    """Hours per project, largest first. Projects without hours are left out."""
    grouped = group_entries_by_project(entries)
    total = calculate_total_hours(entries)

    stats = []
    for project in projects:
        project_entries = grouped.get(project.id, [])
        hours = calculate_total_hours(project_entries)
        if hours <= 0:
            continue
        percentage = (hours / total) * 100 if total > 0 else 0.0
        stats.append(ProjectStat(project, hours, percentage, len(project_entries)))

    stats.sort(key=lambda stat: stat.hours, reverse=True)
    return stats


def daily_totals(entries: Iterable[TimeEntry], days: Iterable[date]) -> Dict[date, float]:
    """Total hours for each of the given days"""
    totals = OrderedDict((day, 0.0) for day in days)
    for entry in entries:
        for day in totals:
            if entry.date == day.isoformat():
                totals[day] += entry.hours
    return totals


def format_duration(hours: float) -> str:
    """1.5 -> '1h 30m'"""
    h = int(hours)
    m = int(round((hours - h) * 60))
    if m == 60:
        h, m = h + 1, 0
    return f"{h}h {m}m"


def format_elapsed(seconds: int) -> str:
    """5400 -> '01:30:00'"""
    seconds = max(0, int(seconds))
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"
