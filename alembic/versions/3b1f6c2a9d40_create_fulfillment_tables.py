"""create_fulfillment_tables

Revision ID: 3b1f6c2a9d40
Revises:
Create Date: 2026-10-12 09:14:03.218411

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
import sqlmodel
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '3b1f6c2a9d40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade() -> None:
    op.create_table('quizzes',
        *_timestamps(),
        sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('about_who', sqlmodel.sql.sqltypes.AutoString(length=200), nullable=False),
        sa.Column('relationship', sqlmodel.sql.sqltypes.AutoString(length=100), nullable=True),
        sa.Column('occasion', sqlmodel.sql.sqltypes.AutoString(length=100), nullable=True),
        sa.Column('style', sqlmodel.sql.sqltypes.AutoString(length=100), nullable=True),
        sa.Column('language', sqlmodel.sql.sqltypes.AutoString(length=10), nullable=False),
        sa.Column('vocal_gender', sqlmodel.sql.sqltypes.AutoString(length=10), nullable=True),
        sa.Column('qualities', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('memories', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('message', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('answers', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_quizzes_id'), 'quizzes', ['id'], unique=False)

    op.create_table('orders',
        *_timestamps(),
        sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('quiz_id', sa.Uuid(), nullable=False),
        sa.Column('customer_email', sqlmodel.sql.sqltypes.AutoString(length=320), nullable=False),
        sa.Column('customer_name', sqlmodel.sql.sqltypes.AutoString(length=200), nullable=True),
        sa.Column('status', sqlmodel.sql.sqltypes.AutoString(length=20), nullable=False),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('access_token', sqlmodel.sql.sqltypes.AutoString(length=100), nullable=True),
        sa.ForeignKeyConstraint(['quiz_id'], ['quizzes.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('access_token')
    )
    op.create_index(op.f('ix_orders_id'), 'orders', ['id'], unique=False)
    op.create_index(op.f('ix_orders_quiz_id'), 'orders', ['quiz_id'], unique=False)
    op.create_index(op.f('ix_orders_status'), 'orders', ['status'], unique=False)

    op.create_table('jobs',
        *_timestamps(),
        sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('quiz_id', sa.Uuid(), nullable=False),
        sa.Column('variant', sa.Integer(), nullable=False),
        sa.Column('status', sqlmodel.sql.sqltypes.AutoString(length=20), nullable=False),
        sa.Column('generated_lyrics', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('audio_task_reference', sqlmodel.sql.sqltypes.AutoString(length=200), nullable=True),
        sa.Column('audio_requested_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('error', sqlmodel.sql.sqltypes.AutoString(length=2000), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['quiz_id'], ['quizzes.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_jobs_id'), 'jobs', ['id'], unique=False)
    op.create_index(op.f('ix_jobs_order_id'), 'jobs', ['order_id'], unique=False)
    op.create_index(op.f('ix_jobs_status'), 'jobs', ['status'], unique=False)
    op.create_index(op.f('ix_jobs_audio_task_reference'), 'jobs', ['audio_task_reference'], unique=False)
    op.create_index('ix_jobs_status_updated', 'jobs', ['status', 'updated_at'], unique=False)
    # At most one active job per order variant
    op.create_index(
        'uq_jobs_active_order_variant', 'jobs', ['order_id', 'variant'], unique=True,
        postgresql_where=sa.text("status IN ('pending', 'processing')"),
    )

    op.create_table('lyrics_approvals',
        *_timestamps(),
        sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('job_id', sa.Uuid(), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('quiz_id', sa.Uuid(), nullable=False),
        sa.Column('lyrics', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('approval_token', sqlmodel.sql.sqltypes.AutoString(length=100), nullable=False),
        sa.Column('status', sqlmodel.sql.sqltypes.AutoString(length=20), nullable=False),
        sa.Column('voice', sqlmodel.sql.sqltypes.AutoString(length=1), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), server_default=sa.text("now() + interval '72 hours'"), nullable=False),
        sa.Column('regeneration_count', sa.Integer(), nullable=False),
        sa.Column('rejection_reason', sqlmodel.sql.sqltypes.AutoString(length=2000), nullable=True),
        sa.Column('regeneration_feedback', sqlmodel.sql.sqltypes.AutoString(length=2000), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('approval_token')
    )
    op.create_index(op.f('ix_lyrics_approvals_id'), 'lyrics_approvals', ['id'], unique=False)
    op.create_index(op.f('ix_lyrics_approvals_job_id'), 'lyrics_approvals', ['job_id'], unique=False)
    op.create_index(op.f('ix_lyrics_approvals_order_id'), 'lyrics_approvals', ['order_id'], unique=False)
    op.create_index(op.f('ix_lyrics_approvals_status'), 'lyrics_approvals', ['status'], unique=False)
    op.create_index('ix_lyrics_approvals_job_created', 'lyrics_approvals', ['job_id', 'created_at'], unique=False)
    op.create_index(
        'uq_lyrics_approvals_job_pending', 'lyrics_approvals', ['job_id'], unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )

    op.create_table('songs',
        *_timestamps(),
        sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('job_id', sa.Uuid(), nullable=True),
        sa.Column('title', sqlmodel.sql.sqltypes.AutoString(length=300), nullable=False),
        sa.Column('variant_number', sa.Integer(), nullable=False),
        sa.Column('status', sqlmodel.sql.sqltypes.AutoString(length=20), nullable=False),
        sa.Column('audio_url', sqlmodel.sql.sqltypes.AutoString(length=1000), nullable=True),
        sa.Column('cover_url', sqlmodel.sql.sqltypes.AutoString(length=1000), nullable=True),
        sa.Column('audio_task_reference', sqlmodel.sql.sqltypes.AutoString(length=200), nullable=True),
        sa.Column('lyrics', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('release_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('released_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('email_sent', sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_songs_id'), 'songs', ['id'], unique=False)
    op.create_index(op.f('ix_songs_order_id'), 'songs', ['order_id'], unique=False)
    op.create_index(op.f('ix_songs_job_id'), 'songs', ['job_id'], unique=False)
    op.create_index(op.f('ix_songs_status'), 'songs', ['status'], unique=False)
    op.create_index('ix_songs_release_due', 'songs', ['status', 'release_at'], unique=False)
    op.create_index('ix_songs_order_variant', 'songs', ['order_id', 'variant_number'], unique=False)

    op.create_table('notification_queue',
        *_timestamps(),
        sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('recipient', sqlmodel.sql.sqltypes.AutoString(length=320), nullable=False),
        sa.Column('template', sqlmodel.sql.sqltypes.AutoString(length=50), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('song_id', sa.Uuid(), nullable=False),
        sa.Column('status', sqlmodel.sql.sqltypes.AutoString(length=20), nullable=False),
        sa.Column('retry_count', sa.Integer(), nullable=False),
        sa.Column('max_retries', sa.Integer(), nullable=False),
        sa.Column('next_retry_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('last_error', sqlmodel.sql.sqltypes.AutoString(length=2000), nullable=True),
        sa.Column('message_id', sqlmodel.sql.sqltypes.AutoString(length=200), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', 'template', name='uq_notification_queue_order_template')
    )
    op.create_index(op.f('ix_notification_queue_id'), 'notification_queue', ['id'], unique=False)
    op.create_index(op.f('ix_notification_queue_order_id'), 'notification_queue', ['order_id'], unique=False)
    op.create_index(op.f('ix_notification_queue_status'), 'notification_queue', ['status'], unique=False)
    op.create_index('ix_notification_queue_due', 'notification_queue', ['status', 'next_retry_at'], unique=False)

    op.create_table('rate_limits',
        sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('identifier', sqlmodel.sql.sqltypes.AutoString(length=200), nullable=False),
        sa.Column('action', sqlmodel.sql.sqltypes.AutoString(length=50), nullable=False),
        sa.Column('bucket_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('count', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('identifier', 'action', 'bucket_start', name='uq_rate_limits_identifier_action_bucket')
    )
    op.create_index(op.f('ix_rate_limits_id'), 'rate_limits', ['id'], unique=False)
    op.create_index(op.f('ix_rate_limits_identifier'), 'rate_limits', ['identifier'], unique=False)
    op.create_index(op.f('ix_rate_limits_bucket_start'), 'rate_limits', ['bucket_start'], unique=False)

    op.create_table('admin_logs',
        *_timestamps(),
        sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('action', sqlmodel.sql.sqltypes.AutoString(length=100), nullable=False),
        sa.Column('target_table', sqlmodel.sql.sqltypes.AutoString(length=100), nullable=False),
        sa.Column('target_id', sqlmodel.sql.sqltypes.AutoString(length=100), nullable=False),
        sa.Column('actor', sqlmodel.sql.sqltypes.AutoString(length=100), nullable=False),
        sa.Column('details', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_admin_logs_id'), 'admin_logs', ['id'], unique=False)
    op.create_index(op.f('ix_admin_logs_action'), 'admin_logs', ['action'], unique=False)
    op.create_index(op.f('ix_admin_logs_target_id'), 'admin_logs', ['target_id'], unique=False)


def downgrade() -> None:
    op.drop_table('admin_logs')
    op.drop_table('rate_limits')
    op.drop_table('notification_queue')
    op.drop_table('songs')
    op.drop_index('uq_lyrics_approvals_job_pending', table_name='lyrics_approvals')
    op.drop_table('lyrics_approvals')
    op.drop_index('uq_jobs_active_order_variant', table_name='jobs')
    op.drop_table('jobs')
    op.drop_table('orders')
    op.drop_table('quizzes')
