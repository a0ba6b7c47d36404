"""Create KYC vault tables

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def _record_columns():
    """Ownership, timestamps and archival sub-state shared by PII tables."""
    return [
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('batch_id', sa.Text(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_marked_for_deletion', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('scheduled_deletion_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deletion_warning_sent', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('warning_sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('actual_deletion_date', sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade():
    json_type = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')

    # Create users table
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.Text(), nullable=False),
        sa.Column('first_name', sa.Text(), nullable=True),
        sa.Column('last_name', sa.Text(), nullable=True),
        sa.Column('role', sa.Text(), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    # Create pan_kyc table
    op.create_table(
        'pan_kyc',
        *_record_columns(),
        sa.Column('pan_number', sa.Text(), nullable=True),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('date_of_birth', sa.Text(), nullable=True),
        sa.Column('father_name', sa.Text(), nullable=True),
        sa.Column('verification_details', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_pan_kyc_user_id_created_at', 'pan_kyc', ['user_id', 'created_at'])
    op.create_index('ix_pan_kyc_batch_id', 'pan_kyc', ['batch_id'])
    op.create_index('ix_pan_kyc_archival', 'pan_kyc', ['is_marked_for_deletion', 'deletion_warning_sent'])

    # Create aadhaar_pan table
    op.create_table(
        'aadhaar_pan',
        *_record_columns(),
        sa.Column('pan_number', sa.Text(), nullable=True),
        sa.Column('aadhaar_number', sa.Text(), nullable=True),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('date_of_birth', sa.Text(), nullable=True),
        sa.Column('gender', sa.Text(), nullable=True),
        sa.Column('linking_details', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_aadhaar_pan_user_id_created_at', 'aadhaar_pan', ['user_id', 'created_at'])
    op.create_index('ix_aadhaar_pan_batch_id', 'aadhaar_pan', ['batch_id'])
    op.create_index('ix_aadhaar_pan_archival', 'aadhaar_pan', ['is_marked_for_deletion', 'deletion_warning_sent'])

    # Create aadhaar_verification table (not enrolled in archival yet)
    op.create_table(
        'aadhaar_verification',
        *_record_columns(),
        sa.Column('aadhaar_number', sa.Text(), nullable=True),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('date_of_birth', sa.Text(), nullable=True),
        sa.Column('gender', sa.Text(), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('pin_code', sa.Text(), nullable=True),
        sa.Column('state', sa.Text(), nullable=True),
        sa.Column('district', sa.Text(), nullable=True),
        sa.Column('care_of', sa.Text(), nullable=True),
        sa.Column('photo', sa.Text(), nullable=True),
        sa.Column('dynamic_fields', sa.Text(), nullable=True),
        sa.Column('verification_details', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_aadhaar_verification_user_id_created_at', 'aadhaar_verification', ['user_id', 'created_at'])
    op.create_index('ix_aadhaar_verification_batch_id', 'aadhaar_verification', ['batch_id'])

    # Create audit_log table
    op.create_table(
        'audit_log',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=True),
        sa.Column('action', sa.Text(), nullable=False),
        sa.Column('module', sa.Text(), nullable=False),
        sa.Column('resource', sa.Text(), nullable=False),
        sa.Column('resource_id', sa.Text(), nullable=True),
        sa.Column('details', json_type, nullable=True),
        sa.Column('ip_address', sa.Text(), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='SET NULL'),
    )
    op.create_index('ix_audit_log_action_created_at', 'audit_log', ['action', 'created_at'])
    op.create_index('ix_audit_log_resource', 'audit_log', ['resource', 'resource_id'])

    # Create retention_config singleton table
    op.create_table(
        'retention_config',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('global_settings', json_type, nullable=False),
        sa.Column('module_settings', json_type, nullable=False),
        sa.Column('user_overrides', json_type, nullable=False),
        sa.Column('stats', json_type, nullable=False),
        sa.Column('last_archival_run', sa.DateTime(timezone=True), nullable=True),
        sa.Column('next_archival_run', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.Uuid(), nullable=True),
        sa.Column('updated_by', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    # Create archival_outbox table
    op.create_table(
        'archival_outbox',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('event_type', sa.Text(), nullable=False),
        sa.Column('module', sa.Text(), nullable=False),
        sa.Column('record_id', sa.Text(), nullable=False),
        sa.Column('payload', json_type, nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_archival_outbox_status_created_at', 'archival_outbox', ['status', 'created_at'])

    # Create archival_lease table
    op.create_table(
        'archival_lease',
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('holder', sa.Text(), nullable=False),
        sa.Column('acquired_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('name'),
    )


def downgrade():
    op.drop_table('archival_lease')

    op.drop_index('ix_archival_outbox_status_created_at', table_name='archival_outbox')
    op.drop_table('archival_outbox')

    op.drop_table('retention_config')

    op.drop_index('ix_audit_log_resource', table_name='audit_log')
    op.drop_index('ix_audit_log_action_created_at', table_name='audit_log')
    op.drop_table('audit_log')

    op.drop_index('ix_aadhaar_verification_batch_id', table_name='aadhaar_verification')
    op.drop_index('ix_aadhaar_verification_user_id_created_at', table_name='aadhaar_verification')
    op.drop_table('aadhaar_verification')

    op.drop_index('ix_aadhaar_pan_archival', table_name='aadhaar_pan')
    op.drop_index('ix_aadhaar_pan_batch_id', table_name='aadhaar_pan')
    op.drop_index('ix_aadhaar_pan_user_id_created_at', table_name='aadhaar_pan')
    op.drop_table('aadhaar_pan')

    op.drop_index('ix_pan_kyc_archival', table_name='pan_kyc')
    op.drop_index('ix_pan_kyc_batch_id', table_name='pan_kyc')
    op.drop_index('ix_pan_kyc_user_id_created_at', table_name='pan_kyc')
    op.drop_table('pan_kyc')

    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
