"""
REST backend for the remote authority.

Talks to the Timesheet server (``server/server.py``) over its JSON API. Every
response is wrapped in the ``{success, data, error}`` envelope.
"""

from typing import Any, Dict, List, Optional

import requests

import shared
from client.remote import CrudRemoteClient
from shared.errors import (ConflictError, NotFoundError, TimesheetError,
                           TransportError, ValidationError)
from shared.logging_config import get_sync_logger
from shared.models import Project, Snapshot, TimeEntry

logger = get_sync_logger()

API_PREFIX = f"/api/{shared.__API_VERSION__}"


class RestRemoteClient(CrudRemoteClient):
    """CRUD and snapshot access to the Timesheet REST server"""

    name = 'rest'

    def __init__(self, base_url: str, api_key: str = '', timeout: int = 10,
                 session: Optional[requests.Session] = None):
        # base_url is the server root; resource routes live under API_PREFIX
        base_url = base_url.rstrip('/')
        if base_url.endswith(API_PREFIX):
            base_url = base_url[:-len(API_PREFIX)]
        self.base_url = base_url
        self.timeout = timeout

        self._session = session or requests.Session()
        self._session.headers.update({
            'Content-Type': 'application/json',
            'User-Agent': f'Timesheet-Client/{shared.__VERSION__}'
        })
        if api_key:
            self._session.headers['Authorization'] = f'Bearer {api_key}'
            logger.debug(f"REST session initialized with API key: {api_key[:4]}... (length={len(api_key)})")

    def close(self) -> None:
        self._session.close()

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            body = response.json()
            if isinstance(body, dict) and body.get('error'):
                return str(body['error'])
        except ValueError:
            pass
        text = (response.text or '')[:200]
        return text or f"HTTP {response.status_code}"

    def _request(self, method: str, path: str, json: Any = None,
                 params: Optional[Dict[str, str]] = None,
                 headers: Optional[Dict[str, str]] = None, versioned: bool = True) -> Any:
        """Send a request and unwrap the response envelope.

        Maps HTTP failures onto the shared error kinds: 404 -> NotFoundError,
        409/412 -> ConflictError, 400 -> ValidationError, anything else -> TransportError.
        """
        url = f"{self.base_url}{API_PREFIX if versioned else ''}{path}"
        try:
            response = self._session.request(
                method, url, json=json, params=params, headers=headers, timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            logger.debug(f"{method} {path} failed: {e}")
            raise TransportError(f"{method} {path} failed: {e}")

        status = response.status_code
        logger.debug(f"{method} {path} -> {status}")

        if status == 204:
            return None
        if status == 404:
            raise NotFoundError(self._error_message(response))
        if status in (409, 412):
            raise ConflictError(self._error_message(response))
        if status == 400:
            raise ValidationError(self._error_message(response))
        if status >= 400:
            raise TransportError(self._error_message(response), status_code=status)

        try:
            body = response.json()
        except ValueError:
            raise TransportError(f"Invalid JSON in response to {method} {path}", status_code=status)

        if isinstance(body, dict) and 'success' in body:
            if not body['success']:
                raise TransportError(body.get('error') or 'Request failed', status_code=status)
            return body.get('data')
        return body

    def health_check(self) -> bool:
        try:
            self._request('GET', '/health', versioned=False)
            return True
        except TimesheetError as e:
            logger.debug(f"Health check failed: {e}")
            return False

    # Snapshot contract
    def fetch_snapshot(self):
        try:
            data = self._request('GET', '/snapshot')
        except NotFoundError:
            return None

        try:
            return Snapshot.from_dict(data['snapshot']), str(data['version'])
        except (KeyError, TypeError, ValueError) as e:
            raise TransportError(f"Malformed snapshot response: {e}")

    def write_snapshot(self, snapshot: Snapshot, expected_version: Optional[str] = None) -> str:
        headers = {'If-Match': expected_version} if expected_version else None
        data = self._request('PUT', '/snapshot', json=snapshot.to_dict(), headers=headers)
        try:
            return str(data['version'])
        except (KeyError, TypeError) as e:
            raise TransportError(f"Malformed snapshot write response: {e}")

    # Projects
    def list_projects(self) -> List[Project]:
        data = self._request('GET', '/projects')
        return [Project.from_dict(p) for p in data.get('projects', [])]

    def create_project(self, project: Project) -> Project:
        data = self._request('POST', '/projects', json=project.to_dict())
        return Project.from_dict(data)

    def update_project(self, project: Project) -> Project:
        data = self._request('PUT', f'/projects/{project.id}',
                             json={'name': project.name, 'color': project.color})
        return Project.from_dict(data)

    def delete_project(self, project_id: str) -> None:
        self._request('DELETE', f'/projects/{project_id}')

    # Entries
    def list_entries(self, start_date: Optional[str] = None, end_date: Optional[str] = None,
                     project_id: Optional[str] = None) -> List[TimeEntry]:
        params = {}
        if start_date:
            params['startDate'] = start_date
        if end_date:
            params['endDate'] = end_date
        if project_id:
            params['projectId'] = project_id

        data = self._request('GET', '/entries', params=params or None)
        return [TimeEntry.from_dict(e) for e in data.get('entries', [])]

    def create_entry(self, entry: TimeEntry) -> TimeEntry:
        data = self._request('POST', '/entries', json=entry.to_dict())
        return TimeEntry.from_dict(data)

    def update_entry(self, entry: TimeEntry) -> TimeEntry:
        payload = entry.to_dict()
        payload.pop('id')
        data = self._request('PUT', f'/entries/{entry.id}', json=payload)
        return TimeEntry.from_dict(data)

    def delete_entry(self, entry_id: str) -> None:
        self._request('DELETE', f'/entries/{entry_id}')
