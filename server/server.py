"""
Timesheet REST API Server
Remote authority for Timesheet clients: per-record CRUD for projects and
entries plus whole-snapshot access with optimistic concurrency.
"""

import hmac
import os
import sqlite3
from datetime import datetime
from typing import Optional

from flask import Flask, g, jsonify, request
from flask_cors import CORS

import shared
from shared.errors import ValidationError
from shared.logging_config import get_server_logger
from shared.models import (ApiResponse, Project, Snapshot, TimeEntry,
                           validate_entry_fields, validate_project_fields)
from shared.utils import format_datetime, get_data_path, now_ms, parse_date

# Setup standardized logging
logger = get_server_logger()

# Server configuration constants
DB_BUSY_TIMEOUT_MS: int = 5000
DEFAULT_SERVER_HOST: str = '127.0.0.1'
DEFAULT_SERVER_PORT: int = 5000
WAITRESS_CHANNEL_TIMEOUT: int = 60
WAITRESS_CLEANUP_INTERVAL: int = 30

app = Flask(__name__)
CORS(app)  # Enable CORS for all routes

app.config.setdefault('DATABASE', None)
app.config.setdefault('API_KEY', os.getenv('TIMESHEET_SERVER_API_KEY', ''))


def _db_path() -> str:
    return str(app.config['DATABASE'] or get_data_path('server_timesheet.db'))


def _connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_db_path())
    conn.execute(f"PRAGMA busy_timeout = {DB_BUSY_TIMEOUT_MS}")
    # Needed for ON DELETE CASCADE from projects to entries
    conn.execute("PRAGMA foreign_keys = ON")
    conn.row_factory = sqlite3.Row
    return conn


def get_db() -> sqlite3.Connection:
    """Get database connection (for Flask context)"""
    if 'db' not in g:
        g.db = _connect()
    return g.db


@app.teardown_appcontext
def close_db(error):
    db = g.pop('db', None)
    if db is not None:
        db.close()


def init_server_db(db_path: Optional[str] = None):
    """Create the server tables; ``db_path`` overrides the default location"""
    if db_path is not None:
        app.config['DATABASE'] = str(db_path)

    conn = _connect()
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS projects (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                color TEXT NOT NULL,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS entries (
                id TEXT PRIMARY KEY,
                project_id TEXT NOT NULL,
                task TEXT NOT NULL DEFAULT '',
                date TEXT NOT NULL,
                hours REAL NOT NULL,
                start_time INTEGER,
                end_time INTEGER,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (project_id) REFERENCES projects (id) ON DELETE CASCADE
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_entries_date ON entries (date)")

        # Snapshot bookkeeping (last_modified)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS meta (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)

        conn.commit()
    except sqlite3.Error as e:
        conn.rollback()
        logger.error(f"Failed to initialize server database: {e}")
        raise
    finally:
        conn.close()

    logger.info(f"Server database ready at {_db_path()}")


def _touch(db: sqlite3.Connection, last_modified: Optional[int] = None) -> None:
    db.execute("INSERT OR REPLACE INTO meta (key, value) VALUES ('last_modified', ?)",
               (str(last_modified if last_modified is not None else now_ms()),))


def _project_from_row(row) -> Project:
    return Project(id=row['id'], name=row['name'], color=row['color'])


def _entry_from_row(row) -> TimeEntry:
    return TimeEntry(
        id=row['id'],
        project_id=row['project_id'],
        task=row['task'] or '',
        date=row['date'],
        hours=row['hours'],
        start_time=row['start_time'],
        end_time=row['end_time']
    )


def _load_snapshot(db: sqlite3.Connection) -> Optional[Snapshot]:
    """Current server state as a snapshot, or None if nothing was ever written"""
    row = db.execute("SELECT value FROM meta WHERE key = 'last_modified'").fetchone()
    if row is None:
        return None
    projects = [_project_from_row(r) for r in db.execute("SELECT * FROM projects ORDER BY rowid")]
    entries = [_entry_from_row(r) for r in db.execute("SELECT * FROM entries ORDER BY rowid")]
    return Snapshot(projects=projects, entries=entries, last_modified=int(row['value']))


def error_response(message: str, status: int):
    return jsonify(ApiResponse(False, error=message).to_dict()), status


def require_auth(f):
    """Decorator to require the Bearer API key when one is configured"""
    def decorated_function(*args, **kwargs):
        expected = app.config.get('API_KEY')
        if expected:
            auth_header = request.headers.get('Authorization', '')
            if not auth_header.startswith('Bearer ') or not hmac.compare_digest(auth_header[7:], expected):
                logger.warning(f"Unauthorized request to {request.path}")
                return error_response("Unauthorized", 401)
        return f(*args, **kwargs)
    decorated_function.__name__ = f.__name__
    return decorated_function


@app.errorhandler(400)
def bad_request(error):
    return error_response("Bad request", 400)


@app.errorhandler(404)
def not_found(error):
    return error_response("Not found", 404)


@app.errorhandler(ValidationError)
def validation_error(error):
    return error_response(str(error), 400)


@app.errorhandler(500)
def internal_error(error):
    logger.error(f"Internal error: {error}")
    return error_response("Internal server error", 500)


@app.after_request
def log_request(response):
    logger.debug(f"{request.method} {request.path} -> {response.status_code}")
    return response


# Health check endpoint
@app.route('/health', methods=['GET'])
def health_check():
    """Health check endpoint"""
    return jsonify(ApiResponse(True, data={
        "status": "healthy",
        "timestamp": format_datetime(datetime.now()),
        "version": shared.__VERSION__,
        "api_version": shared.__API_VERSION__,
    }).to_dict())


# Projects
@app.route('/api/v1/projects', methods=['GET'])
@require_auth
def get_projects():
    """Get all projects"""
    db = get_db()
    cursor = db.execute("SELECT * FROM projects ORDER BY rowid")
    projects = [_project_from_row(row).to_dict() for row in cursor.fetchall()]
    return jsonify(ApiResponse(True, data={"projects": projects}).to_dict())


@app.route('/api/v1/projects/<project_id>', methods=['GET'])
@require_auth
def get_project(project_id):
    row = get_db().execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
    if not row:
        return error_response("Project not found", 404)
    return jsonify(ApiResponse(True, data=_project_from_row(row).to_dict()).to_dict())


@app.route('/api/v1/projects', methods=['POST'])
@require_auth
def create_project():
    """Create a project with a client-assigned id"""
    data = request.get_json(silent=True)
    if not data:
        return error_response("No data provided", 400)

    # Validate required fields
    for field in ('id', 'name', 'color'):
        if not data.get(field):
            return error_response(f"Missing required field: {field}", 400)

    validate_project_fields(data['name'], data['color'])
    project = Project(id=str(data['id']), name=data['name'].strip(), color=data['color'])

    db = get_db()
    try:
        db.execute("INSERT INTO projects (id, name, color) VALUES (?, ?, ?)",
                   (project.id, project.name, project.color))
        _touch(db)
        db.commit()
    except sqlite3.IntegrityError:
        db.rollback()
        return error_response(f"Project with id '{project.id}' already exists", 409)

    logger.info(f"Created project {project.id} ({project.name})")
    return jsonify(ApiResponse(True, data=project.to_dict()).to_dict()), 201


@app.route('/api/v1/projects/<project_id>', methods=['PUT'])
@require_auth
def update_project(project_id):
    """Update name and/or color of a project"""
    data = request.get_json(silent=True)
    if not data or ('name' not in data and 'color' not in data):
        return error_response("Provide name or color", 400)

    db = get_db()
    row = db.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
    if not row:
        return error_response("Project not found", 404)

    name = data.get('name', row['name'])
    color = data.get('color', row['color'])
    validate_project_fields(name, color)
    project = Project(id=project_id, name=name.strip(), color=color)

    db.execute("UPDATE projects SET name = ?, color = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
               (project.name, project.color, project_id))
    _touch(db)
    db.commit()
    return jsonify(ApiResponse(True, data=project.to_dict()).to_dict())


@app.route('/api/v1/projects/<project_id>', methods=['DELETE'])
@require_auth
def delete_project(project_id):
    """Delete a project and all of its entries"""
    db = get_db()
    cursor = db.execute("DELETE FROM projects WHERE id = ?", (project_id,))
    if cursor.rowcount == 0:
        db.rollback()
        return error_response("Project not found", 404)

    _touch(db)
    db.commit()
    logger.info(f"Deleted project {project_id}")
    return jsonify(ApiResponse(True, data={"id": project_id, "deleted": True}).to_dict())


# Entries
def _entry_from_payload(data: dict, entry_id: str) -> TimeEntry:
    project_id = data.get('projectId')
    task = data.get('task') or ''
    start_time = data.get('startTime')
    end_time = data.get('endTime')
    validate_entry_fields(project_id, task, data.get('date'), data.get('hours'), start_time, end_time)
    return TimeEntry(
        id=entry_id,
        project_id=project_id,
        task=task,
        date=data['date'],
        hours=float(data['hours']),
        start_time=start_time,
        end_time=end_time
    )


def _require_project(db: sqlite3.Connection, project_id: str) -> None:
    if not db.execute("SELECT id FROM projects WHERE id = ?", (project_id,)).fetchone():
        raise ValidationError(f"Project {project_id} does not exist")


@app.route('/api/v1/entries', methods=['GET'])
@require_auth
def get_entries():
    """Get time entries with optional filtering"""
    project_id = request.args.get('projectId')
    start_date = request.args.get('startDate')
    end_date = request.args.get('endDate')

    query = "SELECT * FROM entries"
    conditions = []
    params = []

    if project_id:
        conditions.append("project_id = ?")
        params.append(project_id)

    for name, value, op in (('startDate', start_date, '>='), ('endDate', end_date, '<=')):
        if not value:
            continue
        if parse_date(value) is None:
            return error_response(f"{name} must be YYYY-MM-DD", 400)
        conditions.append(f"date {op} ?")
        params.append(value)

    if conditions:
        query += " WHERE " + " AND ".join(conditions)
    query += " ORDER BY date, rowid"

    entries = [_entry_from_row(row).to_dict() for row in get_db().execute(query, params).fetchall()]
    return jsonify(ApiResponse(True, data={"entries": entries}).to_dict())


@app.route('/api/v1/entries/<entry_id>', methods=['GET'])
@require_auth
def get_entry(entry_id):
    row = get_db().execute("SELECT * FROM entries WHERE id = ?", (entry_id,)).fetchone()
    if not row:
        return error_response("Entry not found", 404)
    return jsonify(ApiResponse(True, data=_entry_from_row(row).to_dict()).to_dict())


@app.route('/api/v1/entries', methods=['POST'])
@require_auth
def create_entry():
    """Create a time entry with a client-assigned id"""
    data = request.get_json(silent=True)
    if not data:
        return error_response("No data provided", 400)
    if not data.get('id'):
        return error_response("Missing required field: id", 400)

    entry = _entry_from_payload(data, str(data['id']))

    db = get_db()
    _require_project(db, entry.project_id)
    try:
        db.execute("""
            INSERT INTO entries (id, project_id, task, date, hours, start_time, end_time)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (entry.id, entry.project_id, entry.task, entry.date, entry.hours, entry.start_time, entry.end_time))
        _touch(db)
        db.commit()
    except sqlite3.IntegrityError:
        db.rollback()
        return error_response(f"Entry with id '{entry.id}' already exists", 409)

    return jsonify(ApiResponse(True, data=entry.to_dict()).to_dict()), 201


@app.route('/api/v1/entries/<entry_id>', methods=['PUT'])
@require_auth
def update_entry(entry_id):
    """Replace the fields of an existing entry"""
    data = request.get_json(silent=True)
    if not data:
        return error_response("No data provided", 400)

    db = get_db()
    row = db.execute("SELECT * FROM entries WHERE id = ?", (entry_id,)).fetchone()
    if not row:
        return error_response("Entry not found", 404)

    merged = _entry_from_row(row).to_dict()
    merged.update({k: v for k, v in data.items() if k != 'id'})
    entry = _entry_from_payload(merged, entry_id)
    _require_project(db, entry.project_id)

    db.execute("""
        UPDATE entries SET project_id = ?, task = ?, date = ?, hours = ?,
            start_time = ?, end_time = ?, updated_at = CURRENT_TIMESTAMP
        WHERE id = ?
    """, (entry.project_id, entry.task, entry.date, entry.hours, entry.start_time, entry.end_time, entry_id))
    _touch(db)
    db.commit()
    return jsonify(ApiResponse(True, data=entry.to_dict()).to_dict())


@app.route('/api/v1/entries/<entry_id>', methods=['DELETE'])
@require_auth
def delete_entry(entry_id):
    db = get_db()
    cursor = db.execute("DELETE FROM entries WHERE id = ?", (entry_id,))
    if cursor.rowcount == 0:
        db.rollback()
        return error_response("Entry not found", 404)

    _touch(db)
    db.commit()
    return jsonify(ApiResponse(True, data={"id": entry_id, "deleted": True}).to_dict())


# Snapshot
@app.route('/api/v1/snapshot', methods=['GET'])
@require_auth
def get_snapshot():
    """Whole dataset plus its version token"""
    snapshot = _load_snapshot(get_db())
    if snapshot is None:
        return error_response("No snapshot stored yet", 404)
    return jsonify(ApiResponse(True, data={
        "snapshot": snapshot.to_dict(),
        "version": snapshot.content_hash()
    }).to_dict())


@app.route('/api/v1/snapshot', methods=['PUT'])
@require_auth
def put_snapshot():
    """Replace the whole dataset if If-Match names the current version"""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return error_response("No data provided", 400)

    try:
        snapshot = Snapshot.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        return error_response(f"Malformed snapshot: {e}", 400)

    project_ids = {p.id for p in snapshot.projects}
    for project in snapshot.projects:
        validate_project_fields(project.name, project.color)
    for entry in snapshot.entries:
        validate_entry_fields(entry.project_id, entry.task, entry.date, entry.hours, entry.start_time, entry.end_time)
        if entry.project_id not in project_ids:
            raise ValidationError(f"Entry {entry.id} references unknown project {entry.project_id}")

    db = get_db()
    # Hold the write lock across the version check and the replacement
    db.execute("BEGIN IMMEDIATE")
    try:
        current = _load_snapshot(db)
        expected = request.headers.get('If-Match')
        if current is not None and expected != current.content_hash():
            db.rollback()
            logger.info("Rejected snapshot write with stale version")
            return error_response("Version mismatch", 412)

        db.execute("DELETE FROM entries")
        db.execute("DELETE FROM projects")
        db.executemany("INSERT INTO projects (id, name, color) VALUES (?, ?, ?)",
                       [(p.id, p.name, p.color) for p in snapshot.projects])
        db.executemany("""
            INSERT INTO entries (id, project_id, task, date, hours, start_time, end_time)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, [(e.id, e.project_id, e.task, e.date, e.hours, e.start_time, e.end_time) for e in snapshot.entries])
        _touch(db, snapshot.last_modified)
        db.commit()
    except sqlite3.Error:
        db.rollback()
        raise

    version = _load_snapshot(get_db()).content_hash()
    logger.info(f"Snapshot replaced ({len(snapshot.projects)} projects, {len(snapshot.entries)} entries)")
    return jsonify(ApiResponse(True, data={"version": version}).to_dict())


def run_server(host=DEFAULT_SERVER_HOST, port=DEFAULT_SERVER_PORT):
    """Run server with Waitress WSGI server"""
    from waitress import create_server

    init_server_db()
    logger.info(f"Starting Timesheet Server on {host}:{port}")

    server = create_server(
        app,
        host=host,
        port=port,
        threads=6,
        channel_timeout=WAITRESS_CHANNEL_TIMEOUT,
        cleanup_interval=WAITRESS_CLEANUP_INTERVAL
    )
    try:
        # This blocks until server stops
        server.run()
    except KeyboardInterrupt:
        logger.info("Server interrupted")
    finally:
        server.close()
        logger.info("Server stopped")


if __name__ == '__main__':
    run_server(os.getenv('TIMESHEET_SERVER_HOST', DEFAULT_SERVER_HOST),
               int(os.getenv('TIMESHEET_SERVER_PORT', DEFAULT_SERVER_PORT)))
