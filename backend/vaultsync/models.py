from datetime import datetime, timezone

from sqlalchemy.dialects.postgresql import JSONB

from vaultsync import db
from vaultsync.schemas import StateRecord
from vaultsync.services.state.sanitize import DEFAULT_SCORE

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
JsonColumn = db.JSON().with_variant(JSONB(), 'postgresql')


def utcnow():
    return datetime.now(timezone.utc)


class TeamState(db.Model):
    __tablename__ = 'team_state'
    team = db.Column(db.String(120), primary_key=True)
    progress = db.Column(JsonColumn, nullable=False, default=dict)
    progress_meta = db.Column(JsonColumn, nullable=False, default=dict)
    times = db.Column(JsonColumn, nullable=False, default=list)
    score = db.Column(db.Integer, nullable=False, default=DEFAULT_SCORE)
    score_log = db.Column(JsonColumn, nullable=False, default=list)
    activity = db.Column(JsonColumn, nullable=False, default=list)
    endless = db.Column(JsonColumn, nullable=False, default=list)
    vault = db.Column(JsonColumn, nullable=False, default=dict)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def apply(self, state, include_endless=False):
        """Copy a sanitized state dict (wire field names) onto the row."""
        self.progress = state['progress']
        self.progress_meta = state['progressMeta']
        self.times = state['times']
        self.score = state['score']
        self.score_log = state['scoreLog']
        self.activity = state['activity']
        self.vault = state['vault']
        if include_endless:
            self.endless = state['endless']
        self.updated_at = utcnow()

    def to_record(self, include_endless=False):
        return StateRecord.from_payload(self.team, {
            'progress': self.progress,
            'progressMeta': self.progress_meta,
            'times': self.times,
            'score': self.score,
            'scoreLog': self.score_log,
            'activity': self.activity,
            'endless': self.endless,
            'vault': self.vault,
            'updatedAt': self.updated_at.isoformat() if self.updated_at else None,
        }, include_endless=include_endless)


class LegacyProgress(db.Model):
    """Per-team completion flags from the older two-table schema."""
    __tablename__ = 'progress'
    team = db.Column(db.String(120), primary_key=True)
    phishing = db.Column(db.Boolean, default=False)
    password = db.Column(db.Boolean, default=False)
    encryption = db.Column(db.Boolean, default=False)
    essential = db.Column(db.Boolean, default=False)


class LegacyTimes(db.Model):
    __tablename__ = 'times'
    team = db.Column(db.String(120), primary_key=True)
    avg_seconds = db.Column(db.Float, nullable=True)
