from typing import Any, Dict, Iterable, List, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from vaultsync.errors import InvalidTeamError, StoreConfigError
from vaultsync.models import LegacyProgress, LegacyTimes, TeamState
from vaultsync.schemas import StateRecord
from vaultsync.services.state.sanitize import (
    DEFAULT_SCORE,
    default_state,
    normalize_team,
    progress_percentages,
    sanitize_state,
)


class TeamStateStore:
    """Server-side source of truth for every team's state.

    Writes are last-write-wins upserts keyed by team; each field of an
    incoming payload is sanitized on its own so a bad field never rejects
    the write.
    """

    def __init__(self, session, database_uri: Optional[str], max_team_length: int = 120):
        if not database_uri:
            raise StoreConfigError('DATABASE_URL is not configured')
        self.session = session
        self.max_team_length = max_team_length

    @classmethod
    def from_app(cls, app=None) -> 'TeamStateStore':
        from vaultsync import db
        app = app or current_app
        return cls(
            db.session,
            app.config.get('SQLALCHEMY_DATABASE_URI'),
            int(app.config.get('MAX_TEAM_LENGTH', 120)),
        )

    def team_key(self, raw: Any) -> str:
        team = normalize_team(raw, self.max_team_length)
        if team is None:
            raise InvalidTeamError('Invalid team')
        return team

    def _row(self, team: str) -> Optional[TeamState]:
        return self.session.get(TeamState, team)

    def get(self, team: str) -> StateRecord:
        """Return the team's record, creating a default row on first sight."""
        key = self.team_key(team)
        row = self._row(key)
        if row is None:
            row = TeamState(team=key)
            row.apply(default_state(), include_endless=False)
            row.endless = []
            self.session.add(row)
            self.session.commit()
            current_app.logger.info(f"[team-state] created default state team={key}")
        return row.to_record()

    def put(self, team: str, payload: Any) -> StateRecord:
        key = self.team_key(team)
        state = sanitize_state(payload)
        row = self._stage(key, state, include_endless=False)
        self.session.commit()
        return row.to_record()

    def _stage(self, team: str, state: Dict[str, Any], include_endless: bool) -> TeamState:
        row = self._row(team)
        if row is None:
            row = TeamState(team=team, endless=[])
            self.session.add(row)
        row.apply(state, include_endless=include_endless)
        return row

    def get_all(self) -> List[StateRecord]:
        rows = self.session.query(TeamState).order_by(TeamState.team.asc()).all()
        if rows:
            return [row.to_record(include_endless=True) for row in rows]
        return self._legacy_snapshot()

    def _legacy_snapshot(self) -> List[StateRecord]:
        try:
            progress_rows = self.session.query(LegacyProgress).order_by(LegacyProgress.team.asc()).all()
            averages = {r.team: r.avg_seconds for r in self.session.query(LegacyTimes).all()}
        except SQLAlchemyError as exc:
            self.session.rollback()
            current_app.logger.info(f"[pull] legacy tables unavailable: {exc.__class__.__name__}")
            return []
        records = []
        for r in progress_rows:
            average = averages.get(r.team)
            records.append(StateRecord.from_payload(r.team, {
                'progress': {
                    'phishing': bool(r.phishing),
                    'password': bool(r.password),
                    'encryption': bool(r.encryption),
                    'essential': bool(r.essential),
                    'binary': False,
                },
                'times': [float(average)] if average is not None else [],
                'score': DEFAULT_SCORE,
                'scoreLog': [],
            }, include_endless=True))
        return records

    def put_many(self, rows: Iterable[Any]) -> int:
        """Upsert a batch of team payloads in one commit.

        Rows without a usable team, or whose sanitization fails, are skipped;
        the rest of the batch still goes through.
        """
        written = 0
        for raw in rows:
            try:
                team = self.team_key(raw.get('team') if isinstance(raw, dict) else None)
                state = sanitize_state(raw, include_endless=True)
            except (InvalidTeamError, TypeError, ValueError) as exc:
                current_app.logger.warning(f"[push] skipped row: {exc}")
                continue
            self._stage(team, state, include_endless=True)
            written += 1
        self.session.commit()
        return written

    def progress_percentages(self, team: str) -> Optional[Dict[str, int]]:
        row = self._row(self.team_key(team))
        if row is None:
            return None
        return progress_percentages(row.progress, row.progress_meta)

    def reset_team(self, team: str) -> StateRecord:
        """Wipe a team back to defaults and bump its vault reset version.

        Clients holding an older reset version discard their local puzzle
        state on their next pull.
        """
        key = self.team_key(team)
        row = self._row(key)
        previous = (row.vault or {}).get('resetVersion') if row is not None else None
        try:
            version = int(previous) + 1
        except (TypeError, ValueError):
            version = 1
        state = default_state()
        state['vault'] = {'resetVersion': version}
        state['endless'] = []
        row = self._stage(key, state, include_endless=True)
        self.session.commit()
        current_app.logger.info(f"[reset] team={key} resetVersion={version}")
        return row.to_record()
