"""
Shared data models for the Timesheet application.
Used by both server and client components.

Wire format uses camelCase keys (projectId, startTime, endTime, lastModified).
"""

import hashlib
import json
import math
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional

from shared.errors import ValidationError
from shared.utils import new_id, parse_date, validate_color

BACKENDS = ('local', 'rest', 'github')


class SyncState(Enum):
    """Summary state of the local copy relative to the remote authority"""
    SYNCED = "synced"
    PENDING = "pending"
    FAILED = "failed"
    OFFLINE = "offline"
    LOCAL = "local"


def validate_project_fields(name: Any, color: Any) -> None:
    """Validate project name and color, raising ValidationError"""
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Project name must be a non-empty string")
    if len(name.strip()) > 255:
        raise ValidationError("Project name must be 255 characters or less")
    if not validate_color(color):
        raise ValidationError(f"Project color must be a hex RGB value like #3b82f6, got {color!r}")


def validate_entry_fields(project_id: Any, task: Any, date: Any, hours: Any,
                          start_time: Any = None, end_time: Any = None) -> None:
    """Validate time entry fields, raising ValidationError"""
    if not isinstance(project_id, str) or not project_id.strip():
        raise ValidationError("Entry projectId must be a non-empty string")
    if task is not None and not isinstance(task, str):
        raise ValidationError("Entry task must be a string")
    if parse_date(date) is None:
        raise ValidationError(f"Entry date must be YYYY-MM-DD, got {date!r}")
    if isinstance(hours, bool) or not isinstance(hours, (int, float)):
        raise ValidationError("Entry hours must be a number")
    if not math.isfinite(hours) or hours < 0:
        raise ValidationError(f"Entry hours must be >= 0, got {hours}")
    for name, value in (('startTime', start_time), ('endTime', end_time)):
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValidationError(f"Entry {name} must be epoch milliseconds")
    if start_time is not None and end_time is not None and end_time < start_time:
        raise ValidationError("Entry endTime must not be before startTime")


@dataclass(frozen=True)
class Project:
    """Project that time entries are booked against"""
    id: str
    name: str
    color: str

    @classmethod
    def create(cls, name: str, color: str, id: Optional[str] = None) -> 'Project':
        """Validate input and build a project with a fresh id"""
        validate_project_fields(name, color)
        return cls(id=id or new_id(), name=name.strip(), color=color)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Project':
        return cls(id=str(data['id']), name=data.get('name') or '', color=data.get('color') or '')


@dataclass(frozen=True)
class TimeEntry:
    """Hours logged against a project on a given day"""
    id: str
    project_id: str
    task: str
    date: str  # YYYY-MM-DD
    hours: float
    start_time: Optional[int] = None  # epoch ms
    end_time: Optional[int] = None  # epoch ms

    @classmethod
    def create(cls, project_id: str, task: str, date: str, hours: float,
               start_time: Optional[int] = None, end_time: Optional[int] = None,
               id: Optional[str] = None) -> 'TimeEntry':
        """Validate input and build an entry with a fresh id"""
        validate_entry_fields(project_id, task, date, hours, start_time, end_time)
        return cls(
            id=id or new_id(),
            project_id=project_id,
            task=task or '',
            date=date,
            hours=float(hours),
            start_time=start_time,
            end_time=end_time,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to camelCase dictionary for API serialization"""
        data = {
            'id': self.id,
            'projectId': self.project_id,
            'task': self.task,
            'date': self.date,
            'hours': self.hours,
        }
        # Optional timestamps are omitted rather than sent as null
        if self.start_time is not None:
            data['startTime'] = self.start_time
        if self.end_time is not None:
            data['endTime'] = self.end_time
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TimeEntry':
        start_time = data.get('startTime')
        end_time = data.get('endTime')
        return cls(
            id=str(data['id']),
            project_id=str(data['projectId']),
            task=data.get('task') or '',
            date=str(data['date']),
            hours=float(data['hours']),
            start_time=int(start_time) if start_time is not None else None,
            end_time=int(end_time) if end_time is not None else None,
        )


@dataclass(frozen=True)
class ActiveTimer:
    """The single in-flight timer; stored locally, never synced"""
    project_id: str
    task: str
    start_time: int  # epoch ms

    def to_dict(self) -> Dict[str, Any]:
        return {'projectId': self.project_id, 'task': self.task, 'startTime': self.start_time}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ActiveTimer':
        return cls(
            project_id=str(data['projectId']),
            task=data.get('task') or '',
            start_time=int(data['startTime']),
        )


@dataclass
class Snapshot:
    """Full dataset synced with the remote authority as one unit.

    Transform methods never modify the instance; they return a new snapshot so
    the previous one can be restored verbatim on rollback.
    """
    projects: List[Project] = field(default_factory=list)
    entries: List[TimeEntry] = field(default_factory=list)
    last_modified: int = 0  # epoch ms

    @classmethod
    def empty(cls, now: int) -> 'Snapshot':
        return cls(projects=[], entries=[], last_modified=now)

    # Lookups
    def find_project(self, project_id: str) -> Optional[Project]:
        for project in self.projects:
            if project.id == project_id:
                return project
        return None

    def find_entry(self, entry_id: str) -> Optional[TimeEntry]:
        for entry in self.entries:
            if entry.id == entry_id:
                return entry
        return None

    # Pure transforms
    def with_project(self, project: Project) -> 'Snapshot':
        return replace(self, projects=self.projects + [project], entries=list(self.entries))

    def replacing_project(self, project: Project) -> 'Snapshot':
        projects = [project if p.id == project.id else p for p in self.projects]
        return replace(self, projects=projects, entries=list(self.entries))

    def without_project(self, project_id: str) -> 'Snapshot':
        """Remove a project and, in the same step, every entry booked against it"""
        return replace(
            self,
            projects=[p for p in self.projects if p.id != project_id],
            entries=[e for e in self.entries if e.project_id != project_id],
        )

    def with_entry(self, entry: TimeEntry) -> 'Snapshot':
        return replace(self, projects=list(self.projects), entries=self.entries + [entry])

    def replacing_entry(self, entry: TimeEntry) -> 'Snapshot':
        entries = [entry if e.id == entry.id else e for e in self.entries]
        return replace(self, projects=list(self.projects), entries=entries)

    def without_entry(self, entry_id: str) -> 'Snapshot':
        return replace(
            self,
            projects=list(self.projects),
            entries=[e for e in self.entries if e.id != entry_id],
        )

    def touched(self, now: int) -> 'Snapshot':
        return replace(self, projects=list(self.projects), entries=list(self.entries), last_modified=now)

    # Serialization
    def to_dict(self) -> Dict[str, Any]:
        return {
            'projects': [p.to_dict() for p in self.projects],
            'entries': [e.to_dict() for e in self.entries],
            'lastModified': self.last_modified,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Snapshot':
        return cls(
            projects=[Project.from_dict(p) for p in data.get('projects') or []],
            entries=[TimeEntry.from_dict(e) for e in data.get('entries') or []],
            last_modified=int(data.get('lastModified') or 0),
        )

    def to_json(self, indent: Optional[int] = None) -> bytes:
        return json.dumps(self.to_dict(), indent=indent).encode('utf-8')

    @classmethod
    def from_json(cls, raw: bytes) -> 'Snapshot':
        return cls.from_dict(json.loads(raw.decode('utf-8')))

    def content_hash(self) -> str:
        """Deterministic digest of the snapshot content, usable as a version token"""
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(canonical.encode('utf-8')).hexdigest()


@dataclass
class SyncStatus:
    """Status information for sync operations"""
    backend: str = 'local'
    is_online: bool = False
    is_syncing: bool = False
    pending: bool = False
    last_sync: Optional[str] = None  # ISO timestamp
    last_error: Optional[str] = None
    version_token: Optional[str] = None

    @property
    def state(self) -> SyncState:
        if self.backend == 'local':
            return SyncState.LOCAL
        if not self.is_online:
            return SyncState.OFFLINE
        if self.last_error:
            return SyncState.FAILED
        if self.pending:
            return SyncState.PENDING
        return SyncState.SYNCED

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['state'] = self.state.value
        return data


@dataclass
class ApiResponse:
    """Standard API response wrapper"""
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SyncConfig:
    """Remote sync configuration with validation"""
    backend: str = 'local'
    api_url: str = ''
    api_key: str = ''
    github_owner: str = ''
    github_repo: str = ''
    github_token: str = ''
    github_branch: str = 'main'
    github_path: str = 'data/timesheet.json'
    debounce_seconds: float = 2.0
    sync_interval: int = 30  # seconds
    timeout: int = 10  # seconds

    def __post_init__(self) -> None:
        """Validate configuration after initialization"""
        if self.backend not in BACKENDS:
            raise ValueError(f"Unknown backend {self.backend!r}: expected one of {', '.join(BACKENDS)}")

        if self.api_url:
            if not self.api_url.startswith(('http://', 'https://')):
                raise ValueError("Invalid API URL: must start with http:// or https://")
            self.api_url = self.api_url.rstrip('/')

        if not (0 <= self.debounce_seconds <= 60):
            raise ValueError(f"Debounce must be between 0 and 60 seconds, got {self.debounce_seconds}")

        if not (5 <= self.sync_interval <= 3600):
            raise ValueError(f"Sync interval must be between 5 and 3600 seconds, got {self.sync_interval}")

        if not (1 <= self.timeout <= 120):
            raise ValueError(f"Timeout must be between 1 and 120 seconds, got {self.timeout}")

    def is_configured(self) -> bool:
        """Check that the selected backend has everything it needs"""
        if self.backend == 'rest':
            return bool(self.api_url)
        if self.backend == 'github':
            return bool(self.github_owner and self.github_repo and self.github_token)
        return False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SyncConfig':
        return cls(**data)
