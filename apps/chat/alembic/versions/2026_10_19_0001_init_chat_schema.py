"""init chat schema

Revision ID: 2026_10_19_0001
Revises: 
Create Date: 2026-10-19 00:01:00

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '2026_10_19_0001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # users
    op.create_table(
        'users',
        sa.Column('id', sa.String(length=36), primary_key=True, nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('photo', sa.LargeBinary(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index(op.f('ix_users_name'), 'users', ['name'], unique=True)

    # groups
    op.create_table(
        'chat_groups',
        sa.Column('id', sa.String(length=36), primary_key=True, nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('photo', sa.LargeBinary(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    # group members
    op.create_table(
        'group_members',
        sa.Column('group_id', sa.String(length=36), sa.ForeignKey('chat_groups.id'), primary_key=True, nullable=False),
        sa.Column('user_id', sa.String(length=36), sa.ForeignKey('users.id'), primary_key=True, nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index(op.f('ix_group_members_user_id'), 'group_members', ['user_id'], unique=False)

    # conversations (direct_key holds the sorted participant pair of a direct conversation)
    op.create_table(
        'conversations',
        sa.Column('id', sa.String(length=36), primary_key=True, nullable=False),
        sa.Column('is_group', sa.Boolean(), nullable=False),
        sa.Column('group_id', sa.String(length=36), sa.ForeignKey('chat_groups.id'), nullable=True),
        sa.Column('direct_key', sa.String(length=80), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('group_id'),
        sa.UniqueConstraint('direct_key'),
    )

    # conversation participants
    op.create_table(
        'conversation_participants',
        sa.Column('conversation_id', sa.String(length=36), sa.ForeignKey('conversations.id'), primary_key=True, nullable=False),
        sa.Column('user_id', sa.String(length=36), sa.ForeignKey('users.id'), primary_key=True, nullable=False),
        sa.Column('last_read_time', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index(op.f('ix_conversation_participants_user_id'), 'conversation_participants', ['user_id'], unique=False)

    # messages
    op.create_table(
        'messages',
        sa.Column('id', sa.String(length=36), primary_key=True, nullable=False),
        sa.Column('conversation_id', sa.String(length=36), sa.ForeignKey('conversations.id'), nullable=False),
        sa.Column('sender_id', sa.String(length=36), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('content', sa.Text(), nullable=True),
        sa.Column('photo', sa.LargeBinary(), nullable=True),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('reply_to', sa.String(length=36), nullable=True),
    )
    op.create_index('ix_messages_conversation_ts', 'messages', ['conversation_id', 'timestamp'], unique=False)

    # comments (one reaction per user per message)
    op.create_table(
        'comments',
        sa.Column('message_id', sa.String(length=36), sa.ForeignKey('messages.id'), primary_key=True, nullable=False),
        sa.Column('user_id', sa.String(length=36), sa.ForeignKey('users.id'), primary_key=True, nullable=False),
        sa.Column('emoticon', sa.String(length=32), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table('comments')
    op.drop_index('ix_messages_conversation_ts', table_name='messages')
    op.drop_table('messages')
    op.drop_index(op.f('ix_conversation_participants_user_id'), table_name='conversation_participants')
    op.drop_table('conversation_participants')
    op.drop_table('conversations')
    op.drop_index(op.f('ix_group_members_user_id'), table_name='group_members')
    op.drop_table('group_members')
    op.drop_table('chat_groups')
    op.drop_index(op.f('ix_users_name'), table_name='users')
    op.drop_table('users')
