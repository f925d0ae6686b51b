"""Initial ticket lifecycle schema: priorities, locations, tickets, status history, notifications

Revision ID: 5f1c0a7e2b91
Revises:
Create Date: 2026-10-18 09:12:04.118532

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5f1c0a7e2b91'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'priority_sla_definitions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('level', sa.Integer(), nullable=False, comment='1=critical .. 4=low'),
        sa.Column('name', sa.String(length=30), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('response_hours', sa.Float(), nullable=False),
        sa.Column('resolution_hours', sa.Float(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('response_hours > 0', name='ck_priority_response_positive'),
        sa.CheckConstraint('response_hours <= resolution_hours', name='ck_priority_response_le_resolution'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('level'),
        sa.UniqueConstraint('name'),
    )

    op.create_table(
        'locations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=30), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        sa.Column('geofence_radius_m', sa.Float(), nullable=True,
                  comment='Per-site tolerance in metres; falls back to GEOFENCE_TOLERANCE_METERS'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('latitude IS NULL OR (latitude >= -90 AND latitude <= 90)', name='ck_location_lat'),
        sa.CheckConstraint('longitude IS NULL OR (longitude >= -180 AND longitude <= 180)', name='ck_location_lng'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
    )

    op.create_table(
        'reference_sequences',
        sa.Column('scope', sa.String(length=30), nullable=False),
        sa.Column('last_value', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('scope'),
    )

    op.create_table(
        'tickets',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('reference_code', sa.String(length=30), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(length=2), nullable=False, comment='pm | cm'),
        sa.Column('priority_level', sa.Integer(), nullable=False, comment='1=critical .. 4=low'),
        sa.Column('severity', sa.String(length=20), nullable=True, comment='low | medium | high | critical'),
        sa.Column('pm_due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cm_incident_type', sa.String(length=30), nullable=True,
                  comment='hardware_failure | software_issue | network_problem | power_issue | other'),
        sa.Column('cm_impact_assessment', sa.Text(), nullable=True),
        sa.Column('cm_business_impact', sa.String(length=20), nullable=True, comment='low | medium | high | critical'),
        sa.Column('tags', sa.Text(), nullable=True, comment='JSON array of labels'),
        sa.Column('requester_id', sa.String(length=64), nullable=False),
        sa.Column('requester_name', sa.String(length=150), nullable=True),
        sa.Column('location_id', sa.Integer(), nullable=False),
        sa.Column('assigned_to_id', sa.String(length=64), nullable=True),
        sa.Column('assigned_to_name', sa.String(length=150), nullable=True),
        sa.Column('assigned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('acknowledged_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('previous_status', sa.String(length=20), nullable=True),
        sa.Column('status_changed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status_changed_by', sa.String(length=64), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, comment='Optimistic lock counter'),
        sa.Column('sla_response_deadline', sa.DateTime(timezone=True), nullable=False),
        sa.Column('sla_resolution_deadline', sa.DateTime(timezone=True), nullable=False),
        sa.Column('actual_response_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('actual_resolution_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('response_time_minutes', sa.Integer(), nullable=True),
        sa.Column('resolution_time_minutes', sa.Integer(), nullable=True),
        sa.Column('reported_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('work_location_lat', sa.Float(), nullable=True),
        sa.Column('work_location_lng', sa.Float(), nullable=True),
        sa.Column('work_location_accuracy', sa.Float(), nullable=True, comment='GPS accuracy in metres'),
        sa.Column('location_verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('location_verification_method', sa.String(length=20), nullable=True,
                  comment='gps | admin_override'),
        sa.Column('location_distance_m', sa.Float(), nullable=True),
        sa.Column('before_photos', sa.Text(), nullable=True, comment='JSON array of photo URLs'),
        sa.Column('after_photos', sa.Text(), nullable=True, comment='JSON array of photo URLs'),
        sa.Column('additional_photos', sa.Text(), nullable=True),
        sa.Column('technician_notes', sa.Text(), nullable=True),
        sa.Column('technician_signature', sa.Text(), nullable=True, comment='Signature image reference'),
        sa.Column('technician_signed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('technician_findings', sa.Text(), nullable=True),
        sa.Column('technician_recommendations', sa.Text(), nullable=True),
        sa.Column('jobcard_number', sa.String(length=40), nullable=True),
        sa.Column('jobcard_generated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('labor_cost', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('material_cost', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('spare_parts_cost', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('total_cost', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='IDR'),
        sa.Column('rejection_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_rejection_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_rejection_reason', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('retired_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('retired_by', sa.String(length=64), nullable=True),
        sa.Column('created_by', sa.String(length=64), nullable=False),
        sa.Column('updated_by', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("category IN ('pm','cm')", name='ck_ticket_category'),
        sa.CheckConstraint('priority_level BETWEEN 1 AND 4', name='ck_ticket_priority_level'),
        sa.CheckConstraint(
            "status IN ('draft','open','assigned','acknowledged','on_progress',"
            "'pending_review','rejected','approved','closed','cancelled')",
            name='ck_ticket_status',
        ),
        sa.CheckConstraint('sla_response_deadline <= sla_resolution_deadline', name='ck_ticket_sla_order'),
        sa.ForeignKeyConstraint(['location_id'], ['locations.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('reference_code'),
        sa.UniqueConstraint('jobcard_number'),
    )
    with op.batch_alter_table('tickets', schema=None) as batch_op:
        batch_op.create_index('ix_tickets_location_id', ['location_id'], unique=False)
        batch_op.create_index('ix_tickets_assigned_to_id', ['assigned_to_id'], unique=False)
        batch_op.create_index('ix_tickets_status', ['status'], unique=False)
        batch_op.create_index('ix_tickets_is_active', ['is_active'], unique=False)
        batch_op.create_index('ix_tickets_category_status', ['category', 'status'], unique=False)

    op.create_table(
        'ticket_status_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('ticket_id', sa.Integer(), nullable=False),
        sa.Column('from_status', sa.String(length=20), nullable=True),
        sa.Column('to_status', sa.String(length=20), nullable=False),
        sa.Column('actor_id', sa.String(length=64), nullable=False),
        sa.Column('actor_name', sa.String(length=150), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('details_json', sa.Text(), nullable=True),
        sa.Column('changed_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['ticket_id'], ['tickets.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('ticket_status_history', schema=None) as batch_op:
        batch_op.create_index('idx_ticket_history_ticket_changed', ['ticket_id', 'changed_at'], unique=False)
        batch_op.create_index('idx_ticket_history_to_status', ['to_status'], unique=False)
        batch_op.create_index('idx_ticket_history_actor', ['actor_id'], unique=False)

    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('recipient', sa.String(length=64), nullable=False, comment='Actor id of the recipient'),
        sa.Column('title', sa.String(length=300), nullable=False),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('category', sa.String(length=30), nullable=True),
        sa.Column('severity', sa.String(length=20), nullable=True),
        sa.Column('entity_type', sa.String(length=30), nullable=True),
        sa.Column('entity_id', sa.Integer(), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=True),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('notifications', schema=None) as batch_op:
        batch_op.create_index('ix_notifications_recipient', ['recipient'], unique=False)
        batch_op.create_index('ix_notifications_entity_id', ['entity_id'], unique=False)


def downgrade():
    with op.batch_alter_table('notifications', schema=None) as batch_op:
        batch_op.drop_index('ix_notifications_entity_id')
        batch_op.drop_index('ix_notifications_recipient')
    op.drop_table('notifications')

    with op.batch_alter_table('ticket_status_history', schema=None) as batch_op:
        batch_op.drop_index('idx_ticket_history_actor')
        batch_op.drop_index('idx_ticket_history_to_status')
        batch_op.drop_index('idx_ticket_history_ticket_changed')
    op.drop_table('ticket_status_history')

    with op.batch_alter_table('tickets', schema=None) as batch_op:
        batch_op.drop_index('ix_tickets_category_status')
        batch_op.drop_index('ix_tickets_is_active')
        batch_op.drop_index('ix_tickets_status')
        batch_op.drop_index('ix_tickets_assigned_to_id')
        batch_op.drop_index('ix_tickets_location_id')
    op.drop_table('tickets')

    op.drop_table('reference_sequences')
    op.drop_table('locations')
    op.drop_table('priority_sla_definitions')
