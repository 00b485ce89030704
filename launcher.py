#!/usr/bin/env python3
"""
Timesheet Application Launcher
Command line entry point for the REST server and the local-first client.
"""

import argparse
import signal
import sys
from datetime import date
from pathlib import Path

from termcolor import colored

DEFAULT_COLOR = '#3b82f6'


def _print_status(status: dict):
    state = status['state']
    color = {'synced': 'green', 'pending': 'yellow', 'failed': 'red', 'offline': 'red'}.get(state, 'cyan')
    line = f"Sync: {colored(state, color)} (backend={status['backend']})"
    if status.get('last_sync'):
        line += f" last sync {status['last_sync']}"
    print(line)
    if status.get('last_error'):
        print(colored(f"  {status['last_error']}", 'red'))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='timesheet', description="Personal time tracking with local-first sync")
    parser.add_argument('--debug', action='store_true', help="Enable debug logging")
    commands = parser.add_subparsers(dest='command', required=True)

    server = commands.add_parser('server', help="Run the REST server")
    server.add_argument('--host', default=None)
    server.add_argument('--port', type=int, default=None)

    projects = commands.add_parser('projects', help="Manage projects")
    project_commands = projects.add_subparsers(dest='action', required=True)
    project_commands.add_parser('list')
    add = project_commands.add_parser('add')
    add.add_argument('name')
    add.add_argument('--color', default=DEFAULT_COLOR)
    rename = project_commands.add_parser('rename')
    rename.add_argument('id')
    rename.add_argument('name')
    rename.add_argument('--color', default=None)
    delete = project_commands.add_parser('delete')
    delete.add_argument('id')

    entries = commands.add_parser('entries', help="Manage time entries")
    entry_commands = entries.add_subparsers(dest='action', required=True)
    listing = entry_commands.add_parser('list')
    listing.add_argument('--week', type=int, default=None, help="Week offset (0 = this week)")
    listing.add_argument('--project', default=None)
    add = entry_commands.add_parser('add')
    add.add_argument('project_id')
    add.add_argument('hours', type=float)
    add.add_argument('--task', default='')
    add.add_argument('--date', default=None, help="YYYY-MM-DD, default today")
    delete = entry_commands.add_parser('delete')
    delete.add_argument('id')

    timer = commands.add_parser('timer', help="Start/stop the active timer")
    timer_commands = timer.add_subparsers(dest='action', required=True)
    start = timer_commands.add_parser('start')
    start.add_argument('project_id')
    start.add_argument('--task', default='')
    timer_commands.add_parser('stop')
    timer_commands.add_parser('status')
    timer_commands.add_parser('clear')

    report = commands.add_parser('report', help="Print a weekly report")
    report.add_argument('--week', type=int, default=0)

    export = commands.add_parser('export', help="Export a PDF report")
    export.add_argument('path', type=Path)
    export.add_argument('--week', type=int, default=None, help="Export one week instead of everything")

    commands.add_parser('sync', help="Sync with the configured remote now")
    commands.add_parser('watch', help="Keep running so background sync can push changes")

    config = commands.add_parser('config', help="Show or change sync settings")
    config_commands = config.add_subparsers(dest='action', required=True)
    config_commands.add_parser('show')
    setting = config_commands.add_parser('set')
    setting.add_argument('name')
    setting.add_argument('value')

    return parser


def run_projects(app, args):
    engine = app.engine
    if args.action == 'list':
        for project in engine.projects:
            count = len(engine.entries_for_project(project.id))
            print(f"{project.id}  {colored(project.name, attrs=['bold'])}  {project.color}  ({count} entries)")
    elif args.action == 'add':
        project = engine.add_project(args.name, args.color)
        print(f"Created project {project.id}")
    elif args.action == 'rename':
        engine.update_project(args.id, name=args.name, color=args.color)
        print("Project updated")
    elif args.action == 'delete':
        removed = engine.delete_project(args.id)
        print(f"Project deleted along with {removed} entries")


def run_entries(app, args):
    from shared.reports import entries_in_range, get_week_range

    engine = app.engine
    if args.action == 'list':
        entries = engine.entries
        if args.week is not None:
            entries = entries_in_range(entries, *get_week_range(args.week))
        if args.project:
            entries = [e for e in entries if e.project_id == args.project]
        names = {p.id: p.name for p in engine.projects}
        for entry in sorted(entries, key=lambda e: e.date):
            print(f"{entry.id}  {entry.date}  {names.get(entry.project_id, '?'):<20} {entry.hours:>6.2f}h  {entry.task}")
    elif args.action == 'add':
        entry = engine.add_entry(args.project_id, args.task, args.date or date.today().isoformat(), args.hours)
        print(f"Created entry {entry.id}")
    elif args.action == 'delete':
        engine.delete_entry(args.id)
        print("Entry deleted")


def run_timer(app, args):
    from shared.reports import format_elapsed

    timer = app.timer
    if args.action == 'start':
        timer.start(args.project_id, args.task)
        print(colored("Timer started", 'green'))
    elif args.action == 'stop':
        entry = timer.stop()
        if entry is None:
            print("No timer running")
        else:
            print(colored(f"Logged {entry.hours}h on {entry.date}", 'green'))
    elif args.action == 'status':
        active = timer.active
        if active is None:
            print("No timer running")
        else:
            project = app.engine.get_project(active.project_id)
            name = project.name if project else active.project_id
            print(f"{name}: {active.task or '(no task)'}  {format_elapsed(timer.elapsed_seconds())}")
    elif args.action == 'clear':
        timer.clear()
        print("Timer cleared")


def run_report(app, args):
    from shared.reports import (calculate_total_hours, daily_totals, entries_in_range,
                                format_duration, get_week_days, get_week_range, project_stats)

    start, end = get_week_range(args.week)
    entries = entries_in_range(app.engine.entries, start, end)
    print(colored(f"Week {start.isoformat()} - {end.isoformat()}", attrs=['bold']))
    for day, hours in daily_totals(entries, get_week_days(args.week)).items():
        print(f"  {day.strftime('%a %d %b')}  {format_duration(hours)}")
    print()
    for stat in project_stats(app.engine.projects, entries):
        print(f"  {stat.project.name:<24} {format_duration(stat.hours):>8}  {stat.percentage:5.1f}%")
    print(colored(f"Total: {format_duration(calculate_total_hours(entries))}", attrs=['bold']))


def run_export(app, args):
    from client.export import export_all_entries, export_weekly_timesheet

    if args.week is None:
        path = export_all_entries(args.path, app.engine.projects, app.engine.entries)
    else:
        path = export_weekly_timesheet(args.path, app.engine.projects, app.engine.entries, args.week)
    print(f"Report written to {path}")


def run_watch(qt_app, app):
    from PyQt6.QtCore import QTimer

    app.engine.add_status_listener(_print_status)
    signal.signal(signal.SIGINT, lambda *_: qt_app.quit())
    # Let the interpreter handle SIGINT while the event loop runs
    heartbeat = QTimer()
    heartbeat.timeout.connect(lambda: None)
    heartbeat.start(200)
    print("Watching for changes. Press Ctrl+C to stop.")
    qt_app.exec()


def run_config(app, args):
    from client.config import describe_config, save_setting

    if args.action == 'show':
        for name, value in describe_config(app.config).items():
            print(f"{name:<18} {value}")
    else:
        save_setting(app.store, args.name, args.value)
        print(f"Saved {args.name}; takes effect on next start")


def main(argv=None):
    """Main launcher with command-line arguments"""
    args = build_parser().parse_args(argv)

    from shared.logging_config import enable_debug_logging
    if args.debug:
        enable_debug_logging()

    if args.command == 'server':
        from server import DEFAULT_SERVER_HOST, DEFAULT_SERVER_PORT, run_server
        run_server(args.host or DEFAULT_SERVER_HOST, args.port or DEFAULT_SERVER_PORT)
        return 0

    from PyQt6.QtCore import QCoreApplication

    from client import TimesheetApp
    from shared.errors import TimesheetError

    qt_app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])
    app = TimesheetApp()
    try:
        app.start()
        if args.command == 'projects':
            run_projects(app, args)
        elif args.command == 'entries':
            run_entries(app, args)
        elif args.command == 'timer':
            run_timer(app, args)
        elif args.command == 'report':
            run_report(app, args)
        elif args.command == 'export':
            run_export(app, args)
        elif args.command == 'sync':
            app.engine.sync_now()
            _print_status(app.engine.get_sync_status().to_dict())
        elif args.command == 'watch':
            run_watch(qt_app, app)
        elif args.command == 'config':
            run_config(app, args)
    except (TimesheetError, KeyError) as e:
        print(colored(f"Error: {e}", 'red'), file=sys.stderr)
        return 1
    finally:
        app.close()
    return 0


if __name__ == '__main__':
    sys.exit(main())
