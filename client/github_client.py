"""
Version-controlled blob backend for the remote authority.

The whole snapshot lives in one JSON file of a GitHub repository. The file's
blob SHA is the version token: writes carry the last-known SHA and GitHub
rejects them when the file has moved on.
"""

import base64
from datetime import datetime, timezone
from typing import Optional

import requests

from client.remote import RemoteAuthorityClient
from shared.errors import ConflictError, TransportError
from shared.logging_config import get_sync_logger
from shared.models import Snapshot

logger = get_sync_logger()


class GitHubRemoteClient(RemoteAuthorityClient):
    """Snapshot stored as a file through the GitHub contents API"""

    name = 'github'
    API_BASE = 'https://api.github.com'

    def __init__(self, owner: str, repo: str, token: str, branch: str = 'main',
                 data_path: str = 'data/timesheet.json', timeout: int = 10,
                 session: Optional[requests.Session] = None):
        self.owner = owner
        self.repo = repo
        self.branch = branch
        self.data_path = data_path.strip('/')
        self.timeout = timeout

        self._session = session or requests.Session()
        self._session.headers.update({
            'Authorization': f'Bearer {token}',
            'Accept': 'application/vnd.github.v3+json',
        })

    @property
    def repo_url(self) -> str:
        return f"{self.API_BASE}/repos/{self.owner}/{self.repo}"

    @property
    def contents_url(self) -> str:
        return f"{self.repo_url}/contents/{self.data_path}"

    def close(self) -> None:
        self._session.close()

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        message = f"GitHub API error: {response.status_code}"
        try:
            detail = response.json().get('message')
        except (ValueError, AttributeError):
            detail = (response.text or '')[:200]
        return f"{message} - {detail}" if detail else message

    def health_check(self) -> bool:
        """Check that the repository is reachable with our token"""
        try:
            response = self._session.get(self.repo_url, timeout=self.timeout)
            return response.ok
        except requests.exceptions.RequestException as e:
            logger.debug(f"GitHub health check failed: {e}")
            return False

    def fetch_snapshot(self):
        try:
            response = self._session.get(self.contents_url, params={'ref': self.branch}, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Failed to fetch from GitHub: {e}")

        if response.status_code == 404:
            # File doesn't exist yet
            return None
        if not response.ok:
            raise TransportError(self._error_message(response), status_code=response.status_code)

        try:
            payload = response.json()
            content = base64.b64decode(payload['content'].replace('\n', ''))
            return Snapshot.from_json(content), payload['sha']
        except (KeyError, TypeError, ValueError) as e:
            raise TransportError(f"Malformed snapshot file in {self.owner}/{self.repo}: {e}")

    def write_snapshot(self, snapshot: Snapshot, expected_version: Optional[str] = None) -> str:
        timestamp = datetime.now(timezone.utc).isoformat()
        body = {
            'message': f"Update timesheet data - {timestamp}",
            'content': base64.b64encode(snapshot.to_json(indent=2)).decode('ascii'),
            'branch': self.branch,
        }
        # Include SHA when updating an existing file
        if expected_version:
            body['sha'] = expected_version

        try:
            response = self._session.put(self.contents_url, json=body, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Failed to save to GitHub: {e}")

        if response.status_code == 409:
            raise ConflictError(self._error_message(response))
        if response.status_code == 422 and 'sha' in response.text:
            # Existing file written without (or with a stale) sha
            raise ConflictError(self._error_message(response))
        if not response.ok:
            raise TransportError(self._error_message(response), status_code=response.status_code)

        try:
            return response.json()['content']['sha']
        except (KeyError, TypeError, ValueError):
            # The write landed but the new sha is unknown; refetch before the next push
            raise TransportError("GitHub write response carried no content sha", status_code=response.status_code)
