"""Typed team state record shared by the server and the sync client."""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from vaultsync.services.state.sanitize import default_progress, sanitize_state


class ProgressMeta(BaseModel):
    percent: int = Field(default=0, ge=0, le=100)
    updated_at: int = Field(default=0, alias='updatedAt')

    model_config = ConfigDict(populate_by_name=True)


class ScoreLogEntry(BaseModel):
    delta: int = 0
    total: int = Field(default=0, ge=0)
    reason: Any = 'update'
    at: Union[int, float]


class ActivityEntry(BaseModel):
    type: Any = 'event'
    detail: Any = ''
    puzzle: Any = None
    status: Any = None
    delta: Optional[Union[int, float]] = None
    total: Optional[Union[int, float]] = None
    reason: Any = None
    at: Union[int, float]


class EndlessEntry(BaseModel):
    name: str = 'Anonymous'
    score: int = 0
    level: int = 1
    at: Union[int, float]


class StateRecord(BaseModel):
    """One team's progress, score, activity and vault."""

    team: str
    progress: Dict[str, bool] = Field(default_factory=default_progress)
    progress_meta: Dict[str, ProgressMeta] = Field(default_factory=dict, alias='progressMeta')
    times: List[Union[int, float]] = Field(default_factory=list)
    score: int = Field(default=100, ge=0)
    score_log: List[ScoreLogEntry] = Field(default_factory=list, alias='scoreLog')
    activity: List[ActivityEntry] = Field(default_factory=list)
    endless: Optional[List[EndlessEntry]] = None
    vault: Dict[str, Any] = Field(default_factory=dict)
    updated_at: Optional[str] = Field(default=None, alias='updatedAt')

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_payload(cls, team: str, payload: Any, now: Optional[int] = None,
                     include_endless: bool = False) -> 'StateRecord':
        """Build a record from an untrusted payload, field by field."""
        state = sanitize_state(payload, now=now, include_endless=include_endless)
        if isinstance(payload, dict) and payload.get('updatedAt'):
            state['updatedAt'] = str(payload['updatedAt'])
        return cls.model_validate({'team': team, **state})

    def to_dict(self, include_endless: bool = False) -> Dict[str, Any]:
        data = self.model_dump(by_alias=True, exclude={'endless'})
        if include_endless:
            data['endless'] = [e.model_dump() for e in (self.endless or [])]
        return data

    def to_payload(self) -> Dict[str, Any]:
        """Wire body for ``PUT /team-state`` (no server-owned fields)."""
        data = self.to_dict()
        data.pop('updatedAt', None)
        return data
