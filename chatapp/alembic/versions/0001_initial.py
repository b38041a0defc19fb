"""initial

Revision ID: 0001
Revises:
Create Date: 2026-10-16 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

revision = '0001'
down_revision = None
branch_labels = None
depends_on = None


def _ts(name, nullable=True, default=True):
    if default:
        return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=nullable)
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade():
    op.create_table('auth_users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('hashed_password', sa.String(), nullable=False),
        _ts('created_at'),
    )
    op.create_index('ix_auth_users_email', 'auth_users', ['email'], unique=True)
    op.create_table('session_tokens',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('auth_users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('device_id', sa.String(255), nullable=True),
        sa.Column('token_hash', sa.String(128), nullable=False),
        sa.Column('user_agent', sa.String(255), nullable=True),
        _ts('created_at'),
        _ts('expires_at', nullable=False, default=False),
        _ts('revoked_at', default=False),
    )
    op.create_index('ix_session_tokens_user_id', 'session_tokens', ['user_id'])
    op.create_index('ix_session_tokens_token_hash', 'session_tokens', ['token_hash'], unique=True)
    op.create_table('profiles',
        sa.Column('id', sa.Uuid(), sa.ForeignKey('auth_users.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('email', sa.Text(), nullable=False, unique=True),
        sa.Column('display_name', sa.Text(), nullable=False),
        sa.Column('avatar_url', sa.Text(), nullable=True),
        sa.Column('status', sa.String(), server_default='offline'),
        _ts('created_at'),
        _ts('updated_at'),
    )
    op.create_table('contacts',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('profiles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('contact_id', sa.Uuid(), sa.ForeignKey('profiles.id', ondelete='CASCADE'), nullable=False),
        _ts('created_at'),
        sa.UniqueConstraint('user_id', 'contact_id', name='contacts_user_id_contact_id_key'),
        sa.CheckConstraint('user_id != contact_id', name='contacts_check'),
    )
    op.create_index('idx_contacts_user_id', 'contacts', ['user_id'])
    op.create_table('conversations',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('type', sa.Text(), nullable=False),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Uuid(), sa.ForeignKey('profiles.id', ondelete='CASCADE'), nullable=False),
        _ts('created_at'),
        _ts('updated_at'),
        sa.CheckConstraint("type IN ('private', 'group')", name='conversations_type_check'),
    )
    op.create_table('conversation_participants',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('conversation_id', sa.Uuid(), sa.ForeignKey('conversations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('profiles.id', ondelete='CASCADE'), nullable=False),
        _ts('joined_at'),
        _ts('last_read_at', default=False),
        sa.UniqueConstraint('conversation_id', 'user_id', name='conversation_participants_conversation_id_user_id_key'),
    )
    op.create_index('idx_conversation_participants_user_id', 'conversation_participants', ['user_id'])
    op.create_index('idx_conversation_participants_conversation_id', 'conversation_participants', ['conversation_id'])
    op.create_table('messages',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('conversation_id', sa.Uuid(), sa.ForeignKey('conversations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sender_id', sa.Uuid(), sa.ForeignKey('profiles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        _ts('created_at'),
        _ts('updated_at'),
    )
    op.create_index('idx_messages_conversation_id', 'messages', ['conversation_id'])
    op.create_index('idx_messages_created_at', 'messages', ['created_at'])


def downgrade():
    op.drop_index('idx_messages_created_at', table_name='messages')
    op.drop_index('idx_messages_conversation_id', table_name='messages')
    op.drop_table('messages')
    op.drop_index('idx_conversation_participants_conversation_id', table_name='conversation_participants')
    op.drop_index('idx_conversation_participants_user_id', table_name='conversation_participants')
    op.drop_table('conversation_participants')
    op.drop_table('conversations')
    op.drop_index('idx_contacts_user_id', table_name='contacts')
    op.drop_table('contacts')
    op.drop_table('profiles')
    op.drop_index('ix_session_tokens_token_hash', table_name='session_tokens')
    op.drop_index('ix_session_tokens_user_id', table_name='session_tokens')
    op.drop_table('session_tokens')
    op.drop_index('ix_auth_users_email', table_name='auth_users')
    op.drop_table('auth_users')
