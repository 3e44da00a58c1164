"""initial schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '0001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ENUMS = {
    'ticketstatus': ('open', 'in_progress', 'pending', 'resolved', 'closed'),
    'ticketpriority': ('low', 'normal', 'high', 'urgent'),
    'slastatus': ('on_track', 'approaching_breach', 'breached', 'completed'),
    'actortype': ('user', 'api_key', 'system'),
    'jobstatus': ('queued', 'running', 'completed', 'failed'),
    'importmode': ('insert_if_not_exists', 'update_existing_only', 'upsert'),
    'importentitytype': ('contacts', 'tickets'),
    'notificationeventtype': (
        'ticket_assigned', 'ticket_assigned_team', 'comment_added', 'status_changed',
        'ticket_closed', 'ticket_reopened', 'sla_approaching', 'sla_breached',
        'appointment_reminder',
    ),
    'appointmentstatus': ('scheduled', 'confirmed', 'in_progress', 'completed', 'cancelled', 'no_show'),
    'appointmentmode': ('virtual', 'in_person', 'either'),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _ts() -> sa.DateTime:
    return sa.DateTime(timezone=True)


def _base_columns() -> list[sa.Column]:
    return [
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('created_at', _ts(), nullable=True),
        sa.Column('updated_at', _ts(), nullable=True),
    ]


def _audit_columns() -> list[sa.Column]:
    return _base_columns() + [
        sa.Column('creator_user_id', sa.Uuid(), nullable=True),
        sa.Column('last_modifier_user_id', sa.Uuid(), nullable=True),
    ]


def _soft_delete_columns() -> list[sa.Column]:
    return [
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('deleted_at', _ts(), nullable=True),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        'users',
        *_audit_columns(),
        sa.Column('username', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('first_name', sa.String(), nullable=False),
        sa.Column('last_name', sa.String(), nullable=False, server_default=''),
        sa.Column('hashed_password', sa.String(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_admin', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('last_logged_in_at', _ts(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('username'),
        sa.UniqueConstraint('email'),
    )
    op.create_table(
        'roles',
        *_audit_columns(),
        sa.Column('label', sa.String(), nullable=False),
        sa.Column('developer_name', sa.String(), nullable=False),
        sa.Column('permissions', sa.Integer(), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('developer_name'),
    )
    op.create_table(
        'user_roles',
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('role_id', sa.Uuid(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['role_id'], ['roles.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('user_id', 'role_id'),
    )
    op.create_table(
        'api_keys',
        *_base_columns(),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('key_hash', sa.String(), nullable=False),
        sa.Column('key_prefix', sa.String(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_used_at', _ts(), nullable=True),
        sa.Column('expires_at', _ts(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_api_keys_key_prefix', 'api_keys', ['key_prefix'])

    op.create_table(
        'teams',
        *_audit_columns(),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.String(), nullable=False, server_default=''),
        sa.Column('round_robin_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
    )
    op.create_table(
        'team_memberships',
        *_base_columns(),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('team_id', sa.Uuid(), nullable=False),
        sa.Column('is_assignable', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_assigned_at', _ts(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['team_id'], ['teams.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'team_id', name='uq_team_memberships_user_team'),
    )

    op.create_table(
        'contacts',
        *_audit_columns(),
        *_soft_delete_columns(),
        sa.Column('first_name', sa.String(), nullable=False),
        sa.Column('last_name', sa.String(), nullable=True),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('phone_numbers', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('organization_account', sa.String(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_contacts_email', 'contacts', ['email'])

    op.create_table(
        'organization_settings',
        *_audit_columns(),
        sa.Column('organization_name', sa.String(), nullable=False),
        sa.Column('time_zone', sa.String(), nullable=False, server_default='UTC'),
        sa.Column('website_url', sa.String(), nullable=True),
        sa.Column('smtp_default_from_address', sa.String(), nullable=True),
        sa.Column('smtp_default_from_name', sa.String(), nullable=True),
        sa.Column('initial_setup_completed_at', _ts(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'sla_rules',
        *_audit_columns(),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('conditions', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('target_resolution_minutes', sa.Integer(), nullable=False),
        sa.Column('target_close_minutes', sa.Integer(), nullable=True),
        sa.Column('business_hours_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('business_hours_config', postgresql.JSONB(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('breach_behavior', postgresql.JSONB(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'tickets',
        *_audit_columns(),
        *_soft_delete_columns(),
        sa.Column('number', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=500), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('status', _enum('ticketstatus'), nullable=False),
        sa.Column('priority', _enum('ticketpriority'), nullable=False),
        sa.Column('category', sa.String(), nullable=True),
        sa.Column('language', sa.String(), nullable=True),
        sa.Column('tags', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('owning_team_id', sa.Uuid(), nullable=True),
        sa.Column('assignee_id', sa.Uuid(), nullable=True),
        sa.Column('assigned_at', _ts(), nullable=True),
        sa.Column('contact_id', sa.Uuid(), nullable=True),
        sa.Column('created_by_id', sa.Uuid(), nullable=True),
        sa.Column('resolved_at', _ts(), nullable=True),
        sa.Column('closed_at', _ts(), nullable=True),
        sa.Column('closed_by_id', sa.Uuid(), nullable=True),
        sa.Column('sla_rule_id', sa.Uuid(), nullable=True),
        sa.Column('sla_due_at', _ts(), nullable=True),
        sa.Column('sla_breached_at', _ts(), nullable=True),
        sa.Column('sla_status', _enum('slastatus'), nullable=True),
        sa.ForeignKeyConstraint(['owning_team_id'], ['teams.id']),
        sa.ForeignKeyConstraint(['assignee_id'], ['users.id']),
        sa.ForeignKeyConstraint(['contact_id'], ['contacts.id']),
        sa.ForeignKeyConstraint(['created_by_id'], ['users.id']),
        sa.ForeignKeyConstraint(['closed_by_id'], ['users.id']),
        sa.ForeignKeyConstraint(['sla_rule_id'], ['sla_rules.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('number'),
    )
    for column in ('status', 'priority', 'owning_team_id', 'assignee_id', 'sla_status', 'created_at'):
        op.create_index(f'ix_tickets_{column}', 'tickets', [column])

    op.create_table(
        'ticket_comments',
        *_audit_columns(),
        sa.Column('ticket_id', sa.Uuid(), nullable=False),
        sa.Column('author_id', sa.Uuid(), nullable=True),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('is_internal', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.ForeignKeyConstraint(['ticket_id'], ['tickets.id']),
        sa.ForeignKeyConstraint(['author_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_ticket_comments_ticket_id', 'ticket_comments', ['ticket_id'])

    op.create_table(
        'attachments',
        *_base_columns(),
        sa.Column('ticket_id', sa.Uuid(), nullable=False),
        sa.Column('comment_id', sa.Uuid(), nullable=True),
        sa.Column('original_filename', sa.String(), nullable=False),
        sa.Column('object_key', sa.String(), nullable=False),
        sa.Column('file_size', sa.Integer(), nullable=False),
        sa.Column('content_type', sa.String(), nullable=False),
        sa.Column('uploaded_by_id', sa.Uuid(), nullable=True),
        sa.ForeignKeyConstraint(['ticket_id'], ['tickets.id']),
        sa.ForeignKeyConstraint(['comment_id'], ['ticket_comments.id']),
        sa.ForeignKeyConstraint(['uploaded_by_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_attachments_ticket_id', 'attachments', ['ticket_id'])

    op.create_table(
        'audit_log',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('ticket_id', sa.Uuid(), nullable=False),
        sa.Column('actor_id', sa.Uuid(), nullable=True),
        sa.Column('actor_type', _enum('actortype'), nullable=False),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('message', sa.String(), nullable=True),
        sa.Column('field_changed', sa.String(), nullable=True),
        sa.Column('old_value', sa.String(), nullable=True),
        sa.Column('new_value', sa.String(), nullable=True),
        sa.Column('metadata', postgresql.JSONB(), nullable=True),
        sa.Column('created_at', _ts(), nullable=True),
        sa.ForeignKeyConstraint(['ticket_id'], ['tickets.id']),
        sa.ForeignKeyConstraint(['actor_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_audit_log_ticket_id', 'audit_log', ['ticket_id'])
    op.create_index('ix_audit_log_created_at', 'audit_log', ['created_at'])

    op.create_table(
        'notifications',
        *_base_columns(),
        sa.Column('recipient_user_id', sa.Uuid(), nullable=False),
        sa.Column('event_type', _enum('notificationeventtype'), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('message', sa.String(length=1000), nullable=False),
        sa.Column('url', sa.String(), nullable=True),
        sa.Column('ticket_id', sa.Uuid(), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('read_at', _ts(), nullable=True),
        sa.ForeignKeyConstraint(['recipient_user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['ticket_id'], ['tickets.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_notifications_recipient_is_read', 'notifications', ['recipient_user_id', 'is_read']
    )
    op.create_table(
        'notification_preferences',
        *_base_columns(),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('event_type', _enum('notificationeventtype'), nullable=False),
        sa.Column('in_app_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'event_type', name='uq_notification_preferences_user_event'),
    )

    op.create_table(
        'email_templates',
        *_audit_columns(),
        sa.Column('subject', sa.String(), nullable=False),
        sa.Column('developer_name', sa.String(), nullable=False),
        sa.Column('cc', sa.String(), nullable=True),
        sa.Column('bcc', sa.String(), nullable=True),
        sa.Column('content', sa.Text(), nullable=False, server_default=''),
        sa.Column('is_built_in', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('developer_name'),
    )

    op.create_table(
        'import_jobs',
        *_base_columns(),
        sa.Column('entity_type', _enum('importentitytype'), nullable=False),
        sa.Column('mode', _enum('importmode'), nullable=False),
        sa.Column('is_dry_run', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('status', _enum('jobstatus'), nullable=False),
        sa.Column('progress_stage', sa.String(), nullable=False, server_default='Queued'),
        sa.Column('progress_percent', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('original_filename', sa.String(), nullable=True),
        sa.Column('source_object_key', sa.String(), nullable=False),
        sa.Column('error_object_key', sa.String(), nullable=True),
        sa.Column('total_rows', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('rows_processed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('rows_inserted', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('rows_updated', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('rows_skipped', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('rows_with_errors', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('requester_user_id', sa.Uuid(), nullable=True),
        sa.Column('started_at', _ts(), nullable=True),
        sa.Column('completed_at', _ts(), nullable=True),
        sa.ForeignKeyConstraint(['requester_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_table(
        'export_jobs',
        *_base_columns(),
        sa.Column('requester_user_id', sa.Uuid(), nullable=False),
        sa.Column('status', _enum('jobstatus'), nullable=False),
        sa.Column('progress_stage', sa.String(), nullable=False, server_default='Queued'),
        sa.Column('progress_percent', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('snapshot_payload', postgresql.JSONB(), nullable=False),
        sa.Column('object_key', sa.String(), nullable=True),
        sa.Column('row_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('expires_at', _ts(), nullable=False),
        sa.Column('is_cleaned_up', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('started_at', _ts(), nullable=True),
        sa.Column('completed_at', _ts(), nullable=True),
        sa.ForeignKeyConstraint(['requester_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_export_jobs_requester_user_id', 'export_jobs', ['requester_user_id'])

    op.create_table(
        'scheduler_configuration',
        *_audit_columns(),
        sa.Column('available_hours', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('default_duration_minutes', sa.Integer(), nullable=False, server_default='30'),
        sa.Column('default_buffer_time_minutes', sa.Integer(), nullable=False, server_default='15'),
        sa.Column('default_booking_horizon_days', sa.Integer(), nullable=False, server_default='30'),
        sa.Column('min_cancellation_notice_hours', sa.Integer(), nullable=False, server_default='24'),
        sa.Column('reminder_lead_time_minutes', sa.Integer(), nullable=False, server_default='60'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_table(
        'scheduler_staff_members',
        *_audit_columns(),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('can_manage_others_calendars', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('default_meeting_link', sa.String(), nullable=True),
        sa.Column('availability', postgresql.JSONB(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id'),
    )
    op.create_table(
        'appointment_types',
        *_audit_columns(),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('mode', _enum('appointmentmode'), nullable=False),
        sa.Column('default_duration_minutes', sa.Integer(), nullable=True),
        sa.Column('buffer_time_minutes', sa.Integer(), nullable=True),
        sa.Column('booking_horizon_days', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_table(
        'appointment_type_staff',
        sa.Column('appointment_type_id', sa.Uuid(), nullable=False),
        sa.Column('staff_member_id', sa.Uuid(), nullable=False),
        sa.ForeignKeyConstraint(['appointment_type_id'], ['appointment_types.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['staff_member_id'], ['scheduler_staff_members.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('appointment_type_id', 'staff_member_id'),
    )
    op.create_table(
        'staff_block_out_times',
        *_audit_columns(),
        sa.Column('staff_member_id', sa.Uuid(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('start_time_utc', _ts(), nullable=False),
        sa.Column('end_time_utc', _ts(), nullable=False),
        sa.ForeignKeyConstraint(['staff_member_id'], ['scheduler_staff_members.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_staff_block_out_times_staff_member_id', 'staff_block_out_times', ['staff_member_id'])

    op.create_table(
        'appointments',
        *_audit_columns(),
        sa.Column('number', sa.Integer(), nullable=False),
        sa.Column('contact_id', sa.Uuid(), nullable=False),
        sa.Column('staff_member_id', sa.Uuid(), nullable=False),
        sa.Column('appointment_type_id', sa.Uuid(), nullable=False),
        sa.Column('contact_first_name', sa.String(), nullable=False),
        sa.Column('contact_last_name', sa.String(), nullable=True),
        sa.Column('contact_email', sa.String(), nullable=True),
        sa.Column('contact_phone', sa.String(), nullable=True),
        sa.Column('contact_address', sa.Text(), nullable=True),
        sa.Column('mode', _enum('appointmentmode'), nullable=False),
        sa.Column('meeting_link', sa.String(), nullable=True),
        sa.Column('scheduled_start_time', _ts(), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('status', _enum('appointmentstatus'), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('cancellation_notice_override_reason', sa.Text(), nullable=True),
        sa.Column('reminder_sent_at', _ts(), nullable=True),
        sa.Column('created_by_id', sa.Uuid(), nullable=True),
        sa.ForeignKeyConstraint(['contact_id'], ['contacts.id']),
        sa.ForeignKeyConstraint(['staff_member_id'], ['scheduler_staff_members.id']),
        sa.ForeignKeyConstraint(['appointment_type_id'], ['appointment_types.id']),
        sa.ForeignKeyConstraint(['created_by_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('number'),
    )
    op.create_index(
        'ix_appointments_staff_start', 'appointments', ['staff_member_id', 'scheduled_start_time']
    )
    op.create_table(
        'appointment_history',
        *_base_columns(),
        sa.Column('appointment_id', sa.Uuid(), nullable=False),
        sa.Column('changed_by_id', sa.Uuid(), nullable=True),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('old_status', sa.String(), nullable=True),
        sa.Column('new_status', sa.String(), nullable=True),
        sa.Column('details', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['appointment_id'], ['appointments.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['changed_by_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_appointment_history_appointment_id', 'appointment_history', ['appointment_id'])


def downgrade() -> None:
    for table in (
        'appointment_history',
        'appointments',
        'staff_block_out_times',
        'appointment_type_staff',
        'appointment_types',
        'scheduler_staff_members',
        'scheduler_configuration',
        'export_jobs',
        'import_jobs',
        'email_templates',
        'notification_preferences',
        'notifications',
        'audit_log',
        'attachments',
        'ticket_comments',
        'tickets',
        'sla_rules',
        'organization_settings',
        'contacts',
        'team_memberships',
        'teams',
        'api_keys',
        'user_roles',
        'roles',
        'users',
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for name in ENUMS:
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
