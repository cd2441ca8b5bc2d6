"""Initial queue engine schema

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-17

Tables:
- events
- queue_entries
- notifications
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from fanqueue.db.types import GUID


# revision identifiers, used by Alembic.
revision: str = '001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ===========================================
    # ENUM TYPES
    # ===========================================

    entry_status_enum = postgresql.ENUM(
        'waiting', 'called', 'completed', 'missed', 'cancelled',
        name='entry_status_enum', create_type=False
    )
    payment_status_enum = postgresql.ENUM(
        'pending', 'succeeded', 'failed', 'refunded',
        name='payment_status_enum', create_type=False
    )
    notification_kind_enum = postgresql.ENUM(
        'queue_joined', 'position_update', 'coming_up', 'next_up', 'your_turn', 'missed_turn', 'payment_failed',
        name='notification_kind_enum', create_type=False
    )

    op.execute("""
        DO $$ BEGIN
            CREATE TYPE entry_status_enum AS ENUM ('waiting', 'called', 'completed', 'missed', 'cancelled');
        EXCEPTION WHEN duplicate_object THEN NULL; END $$;
    """)
    op.execute("""
        DO $$ BEGIN
            CREATE TYPE payment_status_enum AS ENUM ('pending', 'succeeded', 'failed', 'refunded');
        EXCEPTION WHEN duplicate_object THEN NULL; END $$;
    """)
    op.execute("""
        DO $$ BEGIN
            CREATE TYPE notification_kind_enum AS ENUM (
                'queue_joined', 'position_update', 'coming_up', 'next_up', 'your_turn', 'missed_turn', 'payment_failed'
            );
        EXCEPTION WHEN duplicate_object THEN NULL; END $$;
    """)

    # ===========================================
    # TABLE: events
    # ===========================================
    op.create_table('events',
        sa.Column('id', GUID(), nullable=False),
        sa.Column('organizer_id', GUID(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('location', sa.String(), nullable=False),
        sa.Column('event_code', sa.String(length=12), nullable=False),
        sa.Column('start_time', sa.DateTime(), nullable=False),
        sa.Column('end_time', sa.DateTime(), nullable=False),
        sa.Column('max_duration', sa.Integer(), nullable=False),
        sa.Column('slot_duration', sa.Integer(), nullable=False),
        sa.Column('max_capacity', sa.Integer(), nullable=False),
        sa.Column('physical_line_threshold', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('price', sa.Integer(), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='usd'),
        sa.Column('payment_account_id', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('event_code'),
        sa.CheckConstraint('slot_duration > 0', name='ck_events_slot_duration_positive'),
        sa.CheckConstraint('max_capacity >= 0', name='ck_events_max_capacity_non_negative'),
        sa.CheckConstraint('physical_line_threshold >= 0', name='ck_events_physical_line_non_negative'),
        sa.CheckConstraint('price IS NULL OR price >= 0', name='ck_events_price_non_negative'),
    )
    op.create_index('ix_events_organizer_id', 'events', ['organizer_id'])
    op.create_index('ix_events_is_active', 'events', ['is_active'])

    # ===========================================
    # TABLE: queue_entries
    # ===========================================
    op.create_table('queue_entries',
        sa.Column('id', GUID(), nullable=False),
        sa.Column('event_id', GUID(), nullable=False),
        sa.Column('user_id', GUID(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('estimated_call_time', sa.DateTime(), nullable=False),
        sa.Column('status', entry_status_enum, nullable=False, server_default='waiting'),
        sa.Column('payment_intent_id', sa.String(), nullable=True),
        sa.Column('payment_status', payment_status_enum, nullable=True),
        sa.Column('amount_paid', sa.Integer(), nullable=True),
        sa.Column('joined_at', sa.DateTime(), nullable=False),
        sa.Column('called_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('notifications_sent', sa.JSON(), nullable=False, server_default='[]'),
        sa.ForeignKeyConstraint(['event_id'], ['events.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_queue_entries_event_status', 'queue_entries', ['event_id', 'status'])
    op.create_index('ix_queue_entries_user_id', 'queue_entries', ['user_id'])
    op.create_index('ix_queue_entries_status', 'queue_entries', ['status'])
    # A payment intent admits exactly one entry
    op.create_index(
        'uq_queue_entries_payment_intent_id',
        'queue_entries',
        ['payment_intent_id'],
        unique=True,
        postgresql_where=sa.text('payment_intent_id IS NOT NULL'),
    )
    # At most one waiting/called entry per user per event
    op.create_index(
        'uq_queue_entries_live_user',
        'queue_entries',
        ['event_id', 'user_id'],
        unique=True,
        postgresql_where=sa.text("status IN ('waiting', 'called')"),
    )

    # ===========================================
    # TABLE: notifications
    # ===========================================
    op.create_table('notifications',
        sa.Column('id', GUID(), nullable=False),
        sa.Column('user_id', GUID(), nullable=False),
        sa.Column('event_id', GUID(), nullable=False),
        sa.Column('queue_entry_id', GUID(), nullable=False),
        sa.Column('kind', notification_kind_enum, nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['event_id'], ['events.id']),
        sa.ForeignKeyConstraint(['queue_entry_id'], ['queue_entries.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_notifications_user_read', 'notifications', ['user_id', 'is_read'])
    op.create_index('ix_notifications_user_created', 'notifications', ['user_id', 'created_at'])
    op.create_index('ix_notifications_queue_entry_id', 'notifications', ['queue_entry_id'])


def downgrade() -> None:
    # Drop tables in reverse order (respecting foreign keys)
    op.drop_table('notifications')
    op.drop_table('queue_entries')
    op.drop_table('events')

    # Drop enum types
    op.execute('DROP TYPE IF EXISTS notification_kind_enum')
    op.execute('DROP TYPE IF EXISTS payment_status_enum')
    op.execute('DROP TYPE IF EXISTS entry_status_enum')
