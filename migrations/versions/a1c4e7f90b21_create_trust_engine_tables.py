"""Create trust engine tables

Revision ID: a1c4e7f90b21
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'a1c4e7f90b21'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # Append-only event ledger
    op.create_table(
        'trust_events',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('subject_id', sa.String(64), nullable=False),
        sa.Column('role', sa.String(10), nullable=False),
        sa.Column('event_kind', sa.String(32), nullable=False),
        sa.Column('raw_kind', sa.String(64), nullable=False),
        sa.Column('polarity', sa.String(10), nullable=False),
        sa.Column('occurred_at', sa.DateTime, nullable=False),
        sa.Column('related_entity_id', sa.String(64), nullable=False),
        sa.Column('counterparty_id', sa.String(64), nullable=True),
        sa.Column('exclusion_flag', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('exclusion_reason', sa.Text, nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('meta', sa.JSON, nullable=True),
        sa.Column('ingested_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("role IN ('customer', 'provider')", name='ck_trust_event_role'),
        sa.CheckConstraint("polarity IN ('positive', 'negative')", name='ck_trust_event_polarity'),
        sa.UniqueConstraint('subject_id', 'role', 'related_entity_id', 'event_kind',
                            name='uq_trust_event_dedup')
    )
    op.create_index('ix_trust_events_subject', 'trust_events', ['subject_id', 'role', 'occurred_at'])
    op.create_index('ix_trust_events_kind', 'trust_events', ['event_kind', 'occurred_at'])

    # One current-state row per (subject, role)
    op.create_table(
        'trust_score_records',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('subject_id', sa.String(64), nullable=False),
        sa.Column('role', sa.String(10), nullable=False),
        sa.Column('window_counters', sa.JSON, nullable=False),
        sa.Column('negative_total', sa.Integer, nullable=False, server_default='0'),
        sa.Column('completions_total', sa.Integer, nullable=False, server_default='0'),
        sa.Column('completions_recent', sa.Integer, nullable=False, server_default='0'),
        sa.Column('consecutive_completions', sa.Integer, nullable=False, server_default='0'),
        sa.Column('trust_level', sa.Integer, nullable=False, server_default='0'),
        sa.Column('previous_trust_level', sa.Integer, nullable=False, server_default='0'),
        sa.Column('last_negative_at', sa.DateTime, nullable=True),
        sa.Column('last_completion_at', sa.DateTime, nullable=True),
        sa.Column('trust_improved_at', sa.DateTime, nullable=True),
        sa.Column('streak_reset_at', sa.DateTime, nullable=True),
        sa.Column('integrity_hold', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('integrity_note', sa.Text, nullable=True),
        sa.Column('last_recalculated_at', sa.DateTime, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("role IN ('customer', 'provider')", name='ck_trust_record_role'),
        sa.CheckConstraint('trust_level >= 0 AND trust_level <= 3', name='ck_trust_record_level_range'),
        sa.UniqueConstraint('subject_id', 'role', name='uq_trust_record_subject')
    )
    op.create_index('ix_trust_score_records_level', 'trust_score_records', ['role', 'trust_level'])

    # Append-only snapshots
    op.create_table(
        'trust_snapshots',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('subject_id', sa.String(64), nullable=False),
        sa.Column('role', sa.String(10), nullable=False),
        sa.Column('trust_level', sa.Integer, nullable=False),
        sa.Column('previous_trust_level', sa.Integer, nullable=True),
        sa.Column('score_data', sa.JSON, nullable=False),
        sa.Column('reason', sa.Text, nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("role IN ('customer', 'provider')", name='ck_trust_snapshot_role'),
        sa.CheckConstraint('trust_level >= 0 AND trust_level <= 3', name='ck_trust_snapshot_level_range')
    )
    op.create_index(
        'ix_trust_snapshots_subject',
        'trust_snapshots',
        ['subject_id', 'role', 'created_at'],
        postgresql_ops={'created_at': 'DESC'}
    )


def downgrade():
    op.drop_index('ix_trust_snapshots_subject', table_name='trust_snapshots')
    op.drop_table('trust_snapshots')
    op.drop_index('ix_trust_score_records_level', table_name='trust_score_records')
    op.drop_table('trust_score_records')
    op.drop_index('ix_trust_events_kind', table_name='trust_events')
    op.drop_index('ix_trust_events_subject', table_name='trust_events')
    op.drop_table('trust_events')
