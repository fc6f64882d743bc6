from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from vaultsync.errors import InvalidTeamError, StoreConfigError
from vaultsync.services.state.store import TeamStateStore

team_state = Blueprint('team_state', __name__)


def _rollback():
    from vaultsync import db
    db.session.rollback()


@team_state.route('/team-state', methods=['GET'])
def get_team_state():
    team = request.args.get('team')
    if not team:
        return jsonify({'ok': False, 'error': 'Missing team parameter'}), 400
    try:
        store = TeamStateStore.from_app()
        record = store.get(team)
    except InvalidTeamError:
        return jsonify({'ok': False, 'error': 'Invalid team parameter'}), 400
    except StoreConfigError as exc:
        current_app.logger.error(f"[team-state] {exc}")
        return jsonify({'ok': False, 'error': 'Remote store is not configured'}), 500
    except SQLAlchemyError:
        _rollback()
        current_app.logger.exception(f"[team-state] get failed team={team!r}")
        return jsonify({'ok': False, 'error': 'Failed to load team state'}), 500
    return jsonify({'ok': True, 'state': record.to_dict()})


@team_state.route('/team-state', methods=['PUT'])
def put_team_state():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'ok': False, 'error': 'Invalid JSON body'}), 400
    if not str(data.get('team') or '').strip():
        return jsonify({'ok': False, 'error': 'Missing team'}), 400
    reason = data.get('reason') or 'unspecified'
    try:
        store = TeamStateStore.from_app()
        record = store.put(data['team'], data)
    except InvalidTeamError:
        return jsonify({'ok': False, 'error': 'Invalid team'}), 400
    except StoreConfigError as exc:
        current_app.logger.error(f"[team-state] {exc}")
        return jsonify({'ok': False, 'error': 'Remote store is not configured'}), 500
    except SQLAlchemyError:
        _rollback()
        current_app.logger.exception(f"[team-state] put failed team={data.get('team')!r}")
        return jsonify({'ok': False, 'error': 'Failed to save team state'}), 500
    current_app.logger.info(f"[team-state] saved team={record.team} reason={reason} score={record.score}")
    return jsonify({'ok': True})


@team_state.route('/team-state-meta', methods=['GET'])
def get_team_state_meta():
    team = request.args.get('team')
    if not team:
        return jsonify({'ok': False, 'error': 'Missing team'}), 400
    try:
        meta = TeamStateStore.from_app().progress_percentages(team)
    except InvalidTeamError:
        return jsonify({'ok': False, 'error': 'Invalid team'}), 400
    except StoreConfigError as exc:
        current_app.logger.error(f"[team-state-meta] {exc}")
        return jsonify({'ok': False, 'error': 'Remote store is not configured'}), 500
    except SQLAlchemyError:
        _rollback()
        current_app.logger.exception(f"[team-state-meta] failed team={team!r}")
        return jsonify({'ok': False, 'error': 'Failed to load meta'}), 500
    if meta is None:
        return jsonify({'ok': False, 'error': 'Team not found'}), 404
    return jsonify({'ok': True, 'meta': meta})
