"""Initial verification schema

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Users: tier timestamps plus sealed credentials
    op.create_table('users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('phone', sa.String(15), nullable=False),
        sa.Column('date_of_birth', sa.Date(), nullable=True),
        sa.Column('is_age_verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('age_verified_at', sa.DateTime(), nullable=True),
        sa.Column('verification_level', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_phone_verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('phone_verified_at', sa.DateTime(), nullable=True),
        sa.Column('digilocker_token', sa.Text(), nullable=True),
        sa.Column('digilocker_token_iv', sa.String(64), nullable=True),
        sa.Column('digilocker_token_tag', sa.String(64), nullable=True),
        sa.Column('digilocker_verified_at', sa.DateTime(), nullable=True),
        sa.Column('video_selfie_result', sa.Text(), nullable=True),
        sa.Column('video_selfie_result_iv', sa.String(64), nullable=True),
        sa.Column('video_selfie_result_tag', sa.String(64), nullable=True),
        sa.Column('video_selfie_verified_at', sa.DateTime(), nullable=True),
        sa.Column('refresh_token', sa.String(255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('verification_level >= 0 AND verification_level <= 3',
                           name='ck_users_verification_level')
    )
    op.create_index(op.f('ix_users_phone'), 'users', ['phone'], unique=True)

    # OTP challenges and the issuance log behind the sliding-window limit
    op.create_table('otp_requests',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('phone', sa.String(15), nullable=False),
        sa.Column('provider_ref', sa.String(255), nullable=False),
        sa.Column('attempt_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_attempts', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('is_used', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_expired', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('used_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_otp_requests_phone'), 'otp_requests', ['phone'])
    op.create_index(op.f('ix_otp_requests_created_at'), 'otp_requests', ['created_at'])
    op.create_index('ix_otp_requests_phone_live', 'otp_requests', ['phone', 'is_used', 'is_expired'])

    op.create_table('otp_issuances',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('phone', sa.String(15), nullable=False),
        sa.Column('otp_request_id', sa.Uuid(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['otp_request_id'], ['otp_requests.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_otp_issuances_phone_created', 'otp_issuances', ['phone', 'created_at'])

    # Refresh-token sessions (revoked rows are kept)
    op.create_table('sessions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('refresh_token_hash', sa.String(255), nullable=False),
        sa.Column('device_info', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(45), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('revoked_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_sessions_user_id'), 'sessions', ['user_id'])

    # DigiLocker OAuth state; the id is the state value
    op.create_table('oauth_states',
        sa.Column('id', sa.String(64), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_oauth_states_user_id'), 'oauth_states', ['user_id'])

    # Append-only audit trail
    op.create_table('audit_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('event_type', sa.String(50), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=True),
        sa.Column('entity_type', sa.String(50), nullable=False),
        sa.Column('entity_id', sa.String(64), nullable=True),
        sa.Column('action', sa.String(80), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(45), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_audit_logs_event_type'), 'audit_logs', ['event_type'])
    op.create_index(op.f('ix_audit_logs_user_id'), 'audit_logs', ['user_id'])
    op.create_index(op.f('ix_audit_logs_created_at'), 'audit_logs', ['created_at'])

    # Purpose-based consent (DPDP Act 2023)
    op.create_table('consents',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('purpose_matching', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('purpose_marketing', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('purpose_analytics', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('purpose_third_party', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('consent_version', sa.String(10), nullable=False, server_default='1.0'),
        sa.Column('consent_given_at', sa.DateTime(), nullable=True),
        sa.Column('consent_withdrawn_at', sa.DateTime(), nullable=True),
        sa.Column('ip_address', sa.String(45), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_consents_user_id'), 'consents', ['user_id'])
    op.create_index(op.f('ix_consents_created_at'), 'consents', ['created_at'])

    # Location history with retention expiry
    op.create_table('location_history',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('latitude', sa.Float(), nullable=False),
        sa.Column('longitude', sa.Float(), nullable=False),
        sa.Column('accuracy', sa.Float(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('is_expired', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_location_history_user_id'), 'location_history', ['user_id'])
    op.create_index(op.f('ix_location_history_expires_at'), 'location_history', ['expires_at'])


def downgrade() -> None:
    op.drop_table('location_history')
    op.drop_table('consents')
    op.drop_table('audit_logs')
    op.drop_table('oauth_states')
    op.drop_table('sessions')
    op.drop_table('otp_issuances')
    op.drop_table('otp_requests')
    op.drop_table('users')
