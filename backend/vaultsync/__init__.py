from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from sqlalchemy.exc import SQLAlchemyError
import click
from vaultsync.config import Config

db = SQLAlchemy()
migrate = Migrate()


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    database_configured = bool(flask_app.config.get('SQLALCHEMY_DATABASE_URI'))
    if database_configured:
        db.init_app(flask_app)
        migrate.init_app(flask_app, db)
    else:
        # Routes still load; every store access answers 500 until this is fixed
        flask_app.logger.error("DATABASE_URL is not configured; team state routes are unavailable")

    CORS(flask_app, origins=flask_app.config.get('CORS_ORIGINS', []))

    from vaultsync.main import main
    flask_app.register_blueprint(main)

    from vaultsync.api.team_state import team_state
    flask_app.register_blueprint(team_state)

    from vaultsync.api.admin import admin
    flask_app.register_blueprint(admin)

    if database_configured and flask_app.config.get('AUTO_CREATE_TABLES'):
        from vaultsync.models import TeamState
        with flask_app.app_context():
            try:
                TeamState.__table__.create(bind=db.engine, checkfirst=True)
            except SQLAlchemyError as exc:
                flask_app.logger.error(f"[startup] could not ensure team_state table: {exc}")

    register_commands(flask_app)

    return flask_app


def register_commands(flask_app):
    from vaultsync.errors import InvalidTeamError
    from vaultsync.services.state.store import TeamStateStore

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            store = TeamStateStore.from_app(flask_app)
            for team in flask_app.config.get('SEED_TEAMS', []):
                store.get(team)
            print('Database has been reset and seeded!')

    @click.command('seed-teams')
    @click.argument('teams', nargs=-1, required=True)
    def seed_teams_command(teams):
        """Creates default state rows for the given teams."""
        with flask_app.app_context():
            store = TeamStateStore.from_app(flask_app)
            for team in teams:
                try:
                    record = store.get(team)
                except InvalidTeamError:
                    raise click.BadParameter(f"invalid team {team!r}", param_hint="TEAMS")
                print(f'Seeded {record.team}')

    @click.command('reset-team')
    @click.argument('team')
    def reset_team_command(team):
        """Resets a team to defaults and forces its clients to wipe local state."""
        with flask_app.app_context():
            try:
                record = TeamStateStore.from_app(flask_app).reset_team(team)
            except InvalidTeamError:
                raise click.BadParameter(f"invalid team {team!r}", param_hint="TEAM")
            print(f"Reset {record.team} (resetVersion={record.vault['resetVersion']})")

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(seed_teams_command)
    flask_app.cli.add_command(reset_team_command)
