"""add endless and vault to team_state

Revision ID: 5b0e8a3c6d21
Revises: 1c7d2e9f4a10
Create Date: 2025-10-02 18:45:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '5b0e8a3c6d21'
down_revision = '1c7d2e9f4a10'
branch_labels = None
depends_on = None


def _json():
    return sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    cols = {c['name'] for c in insp.get_columns('team_state')}
    with op.batch_alter_table('team_state') as batch_op:
        if 'endless' not in cols:
            batch_op.add_column(sa.Column('endless', _json(), nullable=False, server_default=sa.text("'[]'")))
        if 'vault' not in cols:
            batch_op.add_column(sa.Column('vault', _json(), nullable=False, server_default=sa.text("'{}'")))


def downgrade():
    with op.batch_alter_table('team_state') as batch_op:
        batch_op.drop_column('vault')
        batch_op.drop_column('endless')
