"""Add comments.resolved_locally and webhook_registrations

Revision ID: 7b2e6d90a1c3
Revises: 3f9a1c27b8d4
Create Date: 2026-10-19

Comments resolved from the plugin are never pushed to Figma, so a later
sync sees them as open. The resolved_locally flag marks those rows so
the local resolution survives until Figma reports a newer edit.

webhook_registrations records which files and event types a deployment
asked Figma to notify it about.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '7b2e6d90a1c3'
down_revision: Union[str, None] = '3f9a1c27b8d4'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    with op.batch_alter_table('comments', schema=None) as batch_op:
        batch_op.add_column(
            sa.Column('resolved_locally', sa.Boolean(), nullable=False, server_default=sa.false())
        )

    op.create_table('webhook_registrations',
        sa.Column('file_key', sa.String(length=255), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('endpoint', sa.Text(), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('registered_by_user_id', sa.CHAR(length=32), nullable=True),
        sa.Column('id', sa.CHAR(length=32), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['registered_by_user_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('webhook_registrations', schema=None) as batch_op:
        batch_op.create_index('ix_webhook_registrations_file_key', ['file_key'], unique=False)


def downgrade() -> None:
    with op.batch_alter_table('webhook_registrations', schema=None) as batch_op:
        batch_op.drop_index('ix_webhook_registrations_file_key')
    op.drop_table('webhook_registrations')

    with op.batch_alter_table('comments', schema=None) as batch_op:
        batch_op.drop_column('resolved_locally')
