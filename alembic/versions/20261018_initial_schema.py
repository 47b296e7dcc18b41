"""Initial schema: identities, sessions, OAuth state, files, comments, webhook events

Revision ID: 3f9a1c27b8d4
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9a1c27b8d4'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _base_columns() -> list:
    return [
        sa.Column('id', sa.CHAR(length=32), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    ]


def upgrade() -> None:
    op.create_table('users',
        sa.Column('external_user_id', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('display_name', sa.String(length=255), nullable=True),
        sa.Column('handle', sa.String(length=255), nullable=True),
        sa.Column('avatar_url', sa.Text(), nullable=True),
        sa.Column('access_token', sa.Text(), nullable=True),
        sa.Column('refresh_token', sa.Text(), nullable=True),
        sa.Column('token_expires_at', sa.DateTime(), nullable=True),
        *_base_columns(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_user_id'),
    )
    with op.batch_alter_table('users', schema=None) as batch_op:
        batch_op.create_index('ix_users_handle', ['handle'], unique=False)
        batch_op.create_index('ix_users_refresh_token', ['refresh_token'], unique=False)

    op.create_table('plugin_sessions',
        sa.Column('session_token', sa.String(length=128), nullable=False),
        sa.Column('user_id', sa.CHAR(length=32), nullable=False),
        sa.Column('scoped_file_key', sa.String(length=255), nullable=True),
        sa.Column('current_node_id', sa.String(length=255), nullable=True),
        sa.Column('last_activity_at', sa.DateTime(), nullable=False),
        *_base_columns(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('session_token'),
    )
    with op.batch_alter_table('plugin_sessions', schema=None) as batch_op:
        batch_op.create_index('ix_plugin_sessions_user_id', ['user_id'], unique=False)
        batch_op.create_index(
            'ix_plugin_sessions_file_activity',
            ['scoped_file_key', 'last_activity_at'],
            unique=False,
        )

    op.create_table('oauth_states',
        sa.Column('value', sa.String(length=128), nullable=False),
        sa.Column('file_key_hint', sa.String(length=255), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        *_base_columns(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('value'),
    )
    with op.batch_alter_table('oauth_states', schema=None) as batch_op:
        batch_op.create_index('ix_oauth_states_expires_at', ['expires_at'], unique=False)

    op.create_table('files',
        sa.Column('file_key', sa.String(length=255), nullable=False),
        sa.Column('file_name', sa.String(length=512), nullable=False),
        sa.Column('team_id', sa.String(length=255), nullable=True),
        sa.Column('owner_user_id', sa.CHAR(length=32), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(), nullable=True),
        *_base_columns(),
        sa.ForeignKeyConstraint(['owner_user_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('file_key'),
    )

    op.create_table('file_permissions',
        sa.Column('user_id', sa.CHAR(length=32), nullable=False),
        sa.Column('file_key', sa.String(length=255), nullable=False),
        sa.Column('level', sa.String(length=16), nullable=False),
        sa.Column('granted_by_user_id', sa.CHAR(length=32), nullable=True),
        sa.Column('granted_at', sa.DateTime(), nullable=False),
        *_base_columns(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['granted_by_user_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('file_permissions', schema=None) as batch_op:
        batch_op.create_index('ix_file_permissions_file_key', ['file_key'], unique=False)
        batch_op.create_index('ix_file_permissions_user_file', ['user_id', 'file_key'], unique=True)

    op.create_table('comments',
        sa.Column('external_comment_id', sa.String(length=255), nullable=False),
        sa.Column('file_key', sa.String(length=255), nullable=False),
        sa.Column('node_id', sa.String(length=255), nullable=True),
        sa.Column('node_name', sa.String(length=512), nullable=True),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('author_name', sa.String(length=255), nullable=True),
        sa.Column('author_handle', sa.String(length=255), nullable=True),
        sa.Column('parent_comment_id', sa.String(length=255), nullable=True),
        sa.Column('position_x', sa.Float(), nullable=False),
        sa.Column('position_y', sa.Float(), nullable=False),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('resolved_by_user_id', sa.CHAR(length=32), nullable=True),
        sa.Column('remote_created_at', sa.DateTime(), nullable=False),
        sa.Column('remote_updated_at', sa.DateTime(), nullable=True),
        sa.Column('local_updated_at', sa.DateTime(), nullable=False),
        *_base_columns(),
        sa.ForeignKeyConstraint(['resolved_by_user_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_comment_id'),
    )
    with op.batch_alter_table('comments', schema=None) as batch_op:
        batch_op.create_index('ix_comments_parent_comment_id', ['parent_comment_id'], unique=False)
        batch_op.create_index('ix_comments_file_node', ['file_key', 'node_id'], unique=False)
        batch_op.create_index('ix_comments_file_created', ['file_key', 'remote_created_at'], unique=False)

    op.create_table('webhook_events',
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('file_key', sa.String(length=255), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        *_base_columns(),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('webhook_events', schema=None) as batch_op:
        batch_op.create_index(
            'ix_webhook_events_unprocessed',
            ['processed_at', 'created_at'],
            unique=False,
        )


def downgrade() -> None:
    op.drop_table('webhook_events')
    op.drop_table('comments')
    op.drop_table('file_permissions')
    op.drop_table('files')
    op.drop_table('oauth_states')
    op.drop_table('plugin_sessions')
    op.drop_table('users')
