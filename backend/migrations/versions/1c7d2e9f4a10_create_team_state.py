"""create team_state

Revision ID: 1c7d2e9f4a10
Revises:
Create Date: 2025-09-14 10:20:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '1c7d2e9f4a10'
down_revision = None
branch_labels = None
depends_on = None


def _json():
    return sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)

    # Deployments that ran the serverless functions already have this table
    if 'team_state' in set(insp.get_table_names()):
        return

    op.create_table(
        'team_state',
        sa.Column('team', sa.String(length=120), primary_key=True),
        sa.Column('progress', _json(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column('progress_meta', _json(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column('times', _json(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column('score', sa.Integer(), nullable=False, server_default=sa.text('100')),
        sa.Column('score_log', _json(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column('activity', _json(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )


def downgrade():
    op.drop_table('team_state')
