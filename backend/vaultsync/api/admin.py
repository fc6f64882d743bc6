from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from vaultsync.errors import StoreConfigError
from vaultsync.services.state.store import TeamStateStore

admin = Blueprint('admin', __name__)


@admin.route('/pull', methods=['GET'])
def pull_all():
    """Every team's state, ordered by team, for dashboards and exports."""
    try:
        records = TeamStateStore.from_app().get_all()
    except StoreConfigError as exc:
        current_app.logger.error(f"[pull] {exc}")
        return jsonify({'ok': False, 'error': 'Remote store is not configured'}), 500
    except SQLAlchemyError:
        from vaultsync import db
        db.session.rollback()
        current_app.logger.exception("[pull] bulk read failed")
        return jsonify({'ok': False, 'error': 'Failed to load teams'}), 500
    current_app.logger.info(f"[pull] returned {len(records)} teams")
    return jsonify({'ok': True, 'teams': [r.to_dict(include_endless=True) for r in records]})


@admin.route('/push', methods=['PUT', 'POST'])
def push_all():
    """Bulk upsert. The whole batch commits together or not at all."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'ok': False, 'error': 'Invalid JSON body'}), 400
    teams = data.get('teams')
    if not isinstance(teams, list):
        return jsonify({'ok': False, 'error': 'teams must be a list'}), 400
    try:
        updated = TeamStateStore.from_app().put_many(teams)
    except StoreConfigError as exc:
        current_app.logger.error(f"[push] {exc}")
        return jsonify({'ok': False, 'error': 'Remote store is not configured'}), 500
    except SQLAlchemyError:
        from vaultsync import db
        db.session.rollback()
        current_app.logger.exception(f"[push] batch of {len(teams)} failed")
        return jsonify({'ok': False, 'error': 'Failed to save teams'}), 500
    current_app.logger.info(f"[push] updated {updated} of {len(teams)} teams")
    return jsonify({'ok': True, 'updated': updated})
