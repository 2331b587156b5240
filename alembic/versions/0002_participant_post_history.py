"""Move participant post history out of the post_ids JSON column

Revision ID: 0002_participant_post_history
Revises: 0001_initial
Create Date: 2025-02-03 10:30:00.000000

"""
import uuid

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '0002_participant_post_history'
down_revision = '0001_initial'
branch_labels = None
depends_on = None


participants = sa.table(
    'competition_participants',
    sa.column('id', postgresql.UUID(as_uuid=True)),
    sa.column('post_ids', postgresql.JSONB()),
    sa.column('created_at', sa.TIMESTAMP(timezone=True)),
)

posts = sa.table(
    'posts',
    sa.column('id', postgresql.UUID(as_uuid=True)),
    sa.column('created_at', sa.TIMESTAMP(timezone=True)),
)


def upgrade():
    """Create participant_posts and backfill it from post_ids."""
    participant_posts = op.create_table('participant_posts',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('participant_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('post_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('source', sa.String(length=32), nullable=False, server_default='submission'),
        sa.Column('submitted_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['participant_id'], ['competition_participants.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('participant_id', 'post_id', name='uq_participant_post')
    )

    bind = op.get_bind()
    rows = bind.execute(
        sa.select(participants.c.id, participants.c.post_ids, participants.c.created_at)
        .where(participants.c.post_ids.isnot(None))
    ).fetchall()

    post_created = {
        row.id: row.created_at for row in bind.execute(sa.select(posts.c.id, posts.c.created_at))
    }

    records = []
    for participant_id, post_ids, joined_at in rows:
        seen = set()
        for raw in post_ids or []:
            try:
                post_id = uuid.UUID(str(raw))
            except ValueError:
                continue
            if post_id in seen:
                continue
            seen.add(post_id)
            records.append({
                'id': uuid.uuid4(),
                'participant_id': participant_id,
                'post_id': post_id,
                'source': 'legacy',
                'submitted_at': post_created.get(post_id) or joined_at,
            })

    if records:
        op.bulk_insert(participant_posts, records)

    op.drop_column('competition_participants', 'post_ids')


def downgrade():
    """Restore post_ids from participant_posts and drop the history table."""
    op.add_column(
        'competition_participants',
        sa.Column('post_ids', postgresql.JSONB(astext_type=sa.Text()), nullable=True)
    )
    op.execute(
        """
        UPDATE competition_participants p
        SET post_ids = sub.post_ids
        FROM (
            SELECT participant_id, jsonb_agg(post_id::text ORDER BY submitted_at) AS post_ids
            FROM participant_posts
            GROUP BY participant_id
        ) sub
        WHERE sub.participant_id = p.id
        """
    )
    op.drop_table('participant_posts')
