"""ticket followers, snooze, sla extension count, contact notes

Revision ID: 0002_followers_snooze_contact_notes
Revises: 0001_initial_schema
Create Date: 2026-10-18 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0002_followers_snooze_contact_notes'
down_revision: Union[str, None] = '0001_initial_schema'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

EVENT_TYPES = (
    'ticket_assigned', 'ticket_assigned_team', 'comment_added', 'status_changed',
    'ticket_closed', 'ticket_reopened', 'sla_approaching', 'sla_breached',
    'appointment_reminder',
)


def _ts() -> sa.DateTime:
    return sa.DateTime(timezone=True)


def upgrade() -> None:
    op.execute("ALTER TYPE notificationeventtype ADD VALUE IF NOT EXISTS 'ticket_unsnoozed'")

    op.add_column(
        'tickets',
        sa.Column('sla_extension_count', sa.Integer(), server_default='0', nullable=False),
    )
    op.add_column('tickets', sa.Column('snoozed_until', _ts(), nullable=True))
    op.add_column('tickets', sa.Column('snoozed_at', _ts(), nullable=True))
    op.add_column('tickets', sa.Column('snoozed_by_id', sa.Uuid(), nullable=True))
    op.add_column('tickets', sa.Column('snoozed_reason', sa.String(length=500), nullable=True))
    op.add_column('tickets', sa.Column('unsnoozed_at', _ts(), nullable=True))
    op.create_foreign_key(
        'fk_tickets_snoozed_by_id_users', 'tickets', 'users', ['snoozed_by_id'], ['id']
    )
    op.create_index('ix_tickets_snoozed_until', 'tickets', ['snoozed_until'])

    op.add_column(
        'organization_settings',
        sa.Column('pause_sla_on_snooze', sa.Boolean(), server_default=sa.false(), nullable=False),
    )

    op.create_table(
        'ticket_followers',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('created_at', _ts(), nullable=True),
        sa.Column('updated_at', _ts(), nullable=True),
        sa.Column('ticket_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.ForeignKeyConstraint(['ticket_id'], ['tickets.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('ticket_id', 'user_id', name='uq_ticket_followers_ticket_user'),
    )
    op.create_index('ix_ticket_followers_ticket_id', 'ticket_followers', ['ticket_id'])

    op.create_table(
        'contact_comments',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('created_at', _ts(), nullable=True),
        sa.Column('updated_at', _ts(), nullable=True),
        sa.Column('creator_user_id', sa.Uuid(), nullable=True),
        sa.Column('last_modifier_user_id', sa.Uuid(), nullable=True),
        sa.Column('contact_id', sa.Uuid(), nullable=False),
        sa.Column('author_id', sa.Uuid(), nullable=True),
        sa.Column('content', sa.Text(), nullable=False),
        sa.ForeignKeyConstraint(['contact_id'], ['contacts.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['author_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_contact_comments_contact_id', 'contact_comments', ['contact_id'])

    op.create_table(
        'contact_attachments',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('created_at', _ts(), nullable=True),
        sa.Column('updated_at', _ts(), nullable=True),
        sa.Column('contact_id', sa.Uuid(), nullable=False),
        sa.Column('original_filename', sa.String(), nullable=False),
        sa.Column('display_name', sa.String(), nullable=False),
        sa.Column('description', sa.String(length=1000), nullable=True),
        sa.Column('object_key', sa.String(), nullable=False),
        sa.Column('file_size', sa.Integer(), nullable=False),
        sa.Column('content_type', sa.String(), nullable=False),
        sa.Column('uploaded_by_id', sa.Uuid(), nullable=True),
        sa.ForeignKeyConstraint(['contact_id'], ['contacts.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['uploaded_by_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_contact_attachments_contact_id', 'contact_attachments', ['contact_id'])


def downgrade() -> None:
    op.drop_table('contact_attachments')
    op.drop_table('contact_comments')
    op.drop_table('ticket_followers')
    op.drop_column('organization_settings', 'pause_sla_on_snooze')

    op.drop_index('ix_tickets_snoozed_until', table_name='tickets')
    op.drop_constraint('fk_tickets_snoozed_by_id_users', 'tickets', type_='foreignkey')
    for column in (
        'unsnoozed_at', 'snoozed_reason', 'snoozed_by_id', 'snoozed_at', 'snoozed_until',
        'sla_extension_count',
    ):
        op.drop_column('tickets', column)

    # PG can't remove values from an existing enum
    op.execute("DELETE FROM notifications WHERE event_type = 'ticket_unsnoozed'")
    op.execute("DELETE FROM notification_preferences WHERE event_type = 'ticket_unsnoozed'")
    op.execute("ALTER TYPE notificationeventtype RENAME TO notificationeventtype_old")
    op.execute(
        "CREATE TYPE notificationeventtype AS ENUM ("
        + ", ".join(f"'{value}'" for value in EVENT_TYPES)
        + ")"
    )
    for table in ('notifications', 'notification_preferences'):
        op.execute(
            f"ALTER TABLE {table} ALTER COLUMN event_type TYPE notificationeventtype"
            " USING event_type::text::notificationeventtype"
        )
    op.execute("DROP TYPE notificationeventtype_old")
