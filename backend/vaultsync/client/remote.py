"""HTTP client for the team state endpoints."""

from typing import Any, Dict, List, Optional

import httpx

from vaultsync.schemas import StateRecord


class RemoteStoreError(Exception):
    """The remote store answered with an error or an unusable body."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TeamStateClient:
    """Thin wrapper over ``httpx.Client``; every request carries a timeout.

    Network failures surface as ``httpx.HTTPError`` (including timeouts);
    non-2xx answers and ``ok: false`` bodies as :class:`RemoteStoreError`.
    """

    def __init__(self, base_url: str, timeout: float = 5.0, transport: Optional[httpx.BaseTransport] = None):
        self._http = httpx.Client(
            base_url=base_url.rstrip('/'),
            timeout=timeout,
            transport=transport,
            follow_redirects=False,
            headers={'Content-Type': 'application/json'},
        )

    def close(self) -> None:
        self._http.close()

    @property
    def is_closed(self) -> bool:
        return self._http.is_closed

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def _unwrap(self, response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            body = None
        if response.status_code >= 400:
            error = body.get('error') if isinstance(body, dict) else None
            raise RemoteStoreError(f"HTTP {response.status_code}: {error or response.reason_phrase}",
                                   status_code=response.status_code)
        if not isinstance(body, dict) or not body.get('ok'):
            raise RemoteStoreError('Malformed response body', status_code=response.status_code)
        return body

    def get_team_state(self, team: str) -> Dict[str, Any]:
        """Raw remote state for one team (untrusted; the cache checks shapes)."""
        body = self._unwrap(self._http.get('/team-state', params={'team': team}))
        state = body.get('state')
        if not isinstance(state, dict):
            raise RemoteStoreError('Response has no state')
        return state

    def put_team_state(self, record: StateRecord, reason: str = 'auto') -> None:
        payload = record.to_payload()
        payload['reason'] = reason
        self._unwrap(self._http.put('/team-state', json=payload))

    def get_progress_meta(self, team: str) -> Dict[str, int]:
        body = self._unwrap(self._http.get('/team-state-meta', params={'team': team}))
        return body.get('meta') or {}

    def pull_all(self) -> List[StateRecord]:
        body = self._unwrap(self._http.get('/pull'))
        teams = body.get('teams')
        if not isinstance(teams, list):
            raise RemoteStoreError('Response has no teams')
        return [
            StateRecord.from_payload(row['team'], row, include_endless=True)
            for row in teams
            if isinstance(row, dict) and row.get('team')
        ]

    def push_all(self, teams: List[Any]) -> int:
        rows = [t.to_dict(include_endless=t.endless is not None) if isinstance(t, StateRecord) else t for t in teams]
        body = self._unwrap(self._http.put('/push', json={'teams': rows}))
        return int(body.get('updated') or 0)
