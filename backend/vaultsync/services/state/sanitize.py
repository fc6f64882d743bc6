"""Normalization rules for team state payloads.

Every field of a team record has its own fallback rule so one malformed
field never rejects the whole write. Numeric handling follows the JSON
clients that produce these payloads: ``score``/``delta``/``total``/``at``
only accept real numbers, while ``times`` and progress percentages coerce
numeric strings, booleans and nulls the way a browser ``Number()`` call does.

All functions here are pure apart from reading the clock when no ``now`` is
passed in.
"""

import math
import time
from typing import Any, Dict, List, Optional

PUZZLES = ('phishing', 'password', 'encryption', 'essential', 'binary')
DEFAULT_SCORE = 100
ENDLESS_LIMIT = 10
ENDLESS_NAME_MAX = 80


def now_ms() -> int:
    return int(time.time() * 1000)


def default_progress() -> Dict[str, bool]:
    return {key: False for key in PUZZLES}


def is_finite_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def coerce_number(value: Any) -> float:
    """Convert like ``Number(value)``; NaN when there is no numeric reading."""
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        # float() also takes digit separators, Number() does not
        if '_' in text:
            return math.nan
        try:
            return float(text)
        except ValueError:
            return math.nan
    return math.nan


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def truthy(value: Any) -> bool:
    if value is None or value is False:
        return False
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value != 0 and not math.isnan(value)
    if isinstance(value, str):
        return value != ''
    return True


def _or(value: Any, fallback: Any) -> Any:
    return value if truthy(value) else fallback


def normalize_team(raw: Any, max_length: int = 120) -> Optional[str]:
    """Return the lowercase team key, or None when it is unusable."""
    if raw is None:
        return None
    team = str(raw).strip().lower()
    if not team or len(team) > max_length:
        return None
    return team


def sanitize_progress(raw: Any) -> Dict[str, bool]:
    source = raw if isinstance(raw, dict) else {}
    return {key: truthy(source.get(key)) for key in PUZZLES}


def sanitize_progress_meta(raw: Any, now: Optional[int] = None) -> Dict[str, Dict[str, int]]:
    if not isinstance(raw, dict):
        return {}
    stamp = now if now is not None else now_ms()
    meta = {}
    for key, value in raw.items():
        if isinstance(value, dict):
            source = value.get('percent')
            if source is None:
                source = 0
        else:
            source = value if value is not None else 0
        percent = coerce_number(source)
        if math.isfinite(percent):
            percent = max(0, min(100, round_half_up(percent)))
        else:
            percent = 0
        updated_raw = value.get('updatedAt') if isinstance(value, dict) else None
        updated = coerce_number(updated_raw) if updated_raw is not None else float(stamp)
        if not math.isfinite(updated):
            updated = stamp
        meta[str(key)] = {'percent': int(percent), 'updatedAt': int(updated)}
    return meta


def sanitize_times(raw: Any) -> List[float]:
    if not isinstance(raw, list):
        return []
    times = []
    for item in raw:
        value = coerce_number(item)
        if math.isfinite(value) and value >= 0:
            times.append(int(value) if value.is_integer() else value)
    return times


def sanitize_score(raw: Any) -> int:
    if not is_finite_number(raw):
        return DEFAULT_SCORE
    return max(0, round_half_up(raw))


def sanitize_score_log(raw: Any, score: int, now: Optional[int] = None) -> List[Dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    stamp = now if now is not None else now_ms()
    log = []
    for entry in raw:
        entry = entry if isinstance(entry, dict) else {}
        delta = entry.get('delta')
        total = entry.get('total')
        at = entry.get('at')
        log.append({
            'delta': round_half_up(delta) if is_finite_number(delta) else 0,
            'total': max(0, round_half_up(total)) if is_finite_number(total) else score,
            'reason': _or(entry.get('reason'), 'update'),
            'at': at if is_finite_number(at) else stamp,
        })
    return log


def sanitize_activity(raw: Any, now: Optional[int] = None) -> List[Dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    stamp = now if now is not None else now_ms()
    feed = []
    for entry in raw:
        entry = entry if isinstance(entry, dict) else {}
        delta = entry.get('delta')
        total = entry.get('total')
        at = entry.get('at')
        feed.append({
            'type': _or(entry.get('type'), 'event'),
            'detail': _or(entry.get('detail'), ''),
            'puzzle': _or(entry.get('puzzle'), None),
            'status': _or(entry.get('status'), None),
            'delta': delta if is_finite_number(delta) else None,
            'total': total if is_finite_number(total) else None,
            'reason': _or(entry.get('reason'), None),
            'at': at if is_finite_number(at) else stamp,
        })
    return feed


def rank_endless(entries: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Order leaderboard entries best first and keep the top ten."""
    ranked = sorted(entries, key=lambda e: (e['score'], e['level'], e['at']), reverse=True)
    return ranked[:ENDLESS_LIMIT]


def sanitize_endless(raw: Any, now: Optional[int] = None) -> List[Dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    stamp = now if now is not None else now_ms()
    entries = []
    for entry in raw:
        entry = entry if isinstance(entry, dict) else {}
        name = entry.get('name')
        name = str(name).strip()[:ENDLESS_NAME_MAX] if name is not None else ''
        score = entry.get('score')
        level = entry.get('level')
        at = entry.get('at')
        entries.append({
            'name': name or 'Anonymous',
            'score': round_half_up(score) if is_finite_number(score) else 0,
            'level': round_half_up(level) if is_finite_number(level) else 1,
            'at': at if is_finite_number(at) else stamp,
        })
    return rank_endless(entries)


def sanitize_vault(raw: Any) -> Dict[str, Any]:
    return dict(raw) if isinstance(raw, dict) else {}


def sanitize_state(raw: Any, now: Optional[int] = None, include_endless: bool = False) -> Dict[str, Any]:
    """Sanitize every field of a client payload independently.

    Returns a dict keyed by the wire (camelCase) field names, without
    ``team`` or ``updatedAt``.
    """
    source = raw if isinstance(raw, dict) else {}
    stamp = now if now is not None else now_ms()
    score = sanitize_score(source.get('score'))
    state = {
        'progress': sanitize_progress(source.get('progress')),
        'progressMeta': sanitize_progress_meta(source.get('progressMeta'), stamp),
        'times': sanitize_times(source.get('times')),
        'score': score,
        'scoreLog': sanitize_score_log(source.get('scoreLog'), score, stamp),
        'activity': sanitize_activity(source.get('activity'), stamp),
        'vault': sanitize_vault(source.get('vault')),
    }
    if include_endless:
        state['endless'] = sanitize_endless(source.get('endless'), stamp)
    return state


def default_state() -> Dict[str, Any]:
    return sanitize_state({})


def progress_percentages(progress: Any, progress_meta: Any) -> Dict[str, int]:
    """Per-puzzle percent: explicit percentages first, 100 for finished flags."""
    percentages = {}
    if isinstance(progress_meta, dict):
        for key, value in progress_meta.items():
            if not isinstance(value, dict) or 'percent' not in value:
                continue
            percent = coerce_number(value['percent'])
            if math.isfinite(percent):
                percentages[key] = max(0, min(100, round_half_up(percent)))
    if isinstance(progress, dict):
        for key, flag in progress.items():
            if truthy(flag) and key not in percentages:
                percentages[key] = 100
    return percentages
