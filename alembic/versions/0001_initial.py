"""Initial migration

Revision ID: 0001_initial
Revises: 
Create Date: 2025-01-15 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS pgcrypto;')

    # Create competitions table
    op.create_table('competitions',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('slug', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('show_stickers', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('completion_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slug')
    )

    # Create competition_rounds table
    op.create_table('competition_rounds',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('competition_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('start_date', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('end_date', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('likes_to_pass', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('deleted_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['competition_id'], ['competitions.id'], ondelete='CASCADE'),
        sa.CheckConstraint('end_date > start_date', name='ck_round_window')
    )
    op.create_index('idx_rounds_competition_start', 'competition_rounds', ['competition_id', 'start_date'])

    # Create competition_participants table; post_ids is the legacy history column
    op.create_table('competition_participants',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('competition_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('is_disqualified', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('disqualify_reason', sa.Text(), nullable=True),
        sa.Column('disqualified_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('current_round_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('post_ids', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['competition_id'], ['competitions.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('competition_id', 'user_id', name='uq_participant_competition_user')
    )

    # Create competition_round_entries table; round_id and post_id carry no FK
    op.create_table('competition_round_entries',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('participant_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('round_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('post_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('qualified_for_next_round', sa.Boolean(), nullable=True),
        sa.Column('competition_likes', sa.Integer(), nullable=True),
        sa.Column('visible_in_competition_feed', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('visible_in_normal_feed', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['participant_id'], ['competition_participants.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('participant_id', 'round_id', name='uq_entry_participant_round'),
        sa.UniqueConstraint('round_id', 'post_id', name='uq_entry_round_post')
    )
    op.create_index('idx_entries_post', 'competition_round_entries', ['post_id'])

    # Create competition_prizes table
    op.create_table('competition_prizes',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('competition_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('position', postgresql.ENUM('FIRST', 'SECOND', 'THIRD', 'FOURTH', 'FIFTH', 'PARTICIPATION', name='prize_position'), nullable=False),
        sa.Column('amount', sa.Numeric(precision=30, scale=8), nullable=False),
        sa.Column('currency', sa.String(length=16), nullable=False, server_default='INR'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['competition_id'], ['competitions.id'], ondelete='CASCADE')
    )

    # Create prize_payments table
    op.create_table('prize_payments',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('prize_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('participant_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('amount', sa.Numeric(precision=30, scale=8), nullable=False),
        sa.Column('status', postgresql.ENUM('PENDING', 'COMPLETED', 'FAILED', name='payment_status'), nullable=False, server_default='PENDING'),
        sa.Column('transaction_id', sa.String(length=128), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('processed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['prize_id'], ['competition_prizes.id']),
        sa.ForeignKeyConstraint(['participant_id'], ['competition_participants.id'])
    )
    # At most one live payment per prize and winner
    op.create_index(
        'uq_prize_payment_live', 'prize_payments', ['prize_id', 'participant_id'],
        unique=True, postgresql_where=sa.text("status != 'FAILED'")
    )

    # Read-side copies of content-service posts and likes
    op.create_table('posts',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_table('post_likes',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('post_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('post_id', 'user_id', name='uq_post_like_user')
    )
    op.create_index('idx_post_likes_post_created', 'post_likes', ['post_id', 'created_at'])

    # Create audit_logs table
    op.create_table('audit_logs',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('actor', sa.String(length=128), nullable=True),
        sa.Column('action', sa.String(length=128), nullable=False),
        sa.Column('resource_type', sa.String(length=64), nullable=True),
        sa.Column('resource_id', sa.String(length=64), nullable=True),
        sa.Column('details', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_audit_logs_action_created', 'audit_logs', ['action', 'created_at'])


def downgrade() -> None:
    op.drop_index('idx_audit_logs_action_created', table_name='audit_logs')
    op.drop_table('audit_logs')
    op.drop_index('idx_post_likes_post_created', table_name='post_likes')
    op.drop_table('post_likes')
    op.drop_table('posts')
    op.drop_index('uq_prize_payment_live', table_name='prize_payments')
    op.drop_table('prize_payments')
    op.drop_table('competition_prizes')
    op.drop_index('idx_entries_post', table_name='competition_round_entries')
    op.drop_table('competition_round_entries')
    op.drop_table('competition_participants')
    op.drop_index('idx_rounds_competition_start', table_name='competition_rounds')
    op.drop_table('competition_rounds')
    op.drop_table('competitions')

    op.execute('DROP TYPE IF EXISTS payment_status')
    op.execute('DROP TYPE IF EXISTS prize_position')
