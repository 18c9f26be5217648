"""create_security_tables

Revision ID: 3b1f6c2a9d10
Revises:
Create Date: 2025-10-01 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '3b1f6c2a9d10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _ts(name: str, nullable: bool = True, **kwargs) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable, **kwargs)


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False, comment='邮箱（小写）'),
        sa.Column('first_name', sa.String(length=100), nullable=True),
        sa.Column('last_name', sa.String(length=100), nullable=True),
        sa.Column('role', sa.String(length=32), nullable=False, server_default='client', comment='原始角色'),
        sa.Column('password_hash', sa.String(length=255), nullable=True, comment='密码哈希（Argon2id / 旧 bcrypt）'),
        sa.Column('auth_provider', sa.String(length=32), nullable=False, server_default='local'),
        _ts('password_changed_at'),
        sa.Column('failed_login_count', sa.Integer(), nullable=False, server_default='0'),
        _ts('locked_until', comment='锁定截止时间'),
        _ts('last_login_at'),
        sa.Column('login_count', sa.Integer(), nullable=False, server_default='0'),
        _ts('created_at', nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'user_sessions',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('refresh_token_hash', sa.String(length=64), nullable=False, comment='当前刷新令牌 SHA-256'),
        sa.Column('previous_refresh_token_hash', sa.String(length=64), nullable=True, comment='上一次轮转前的哈希'),
        sa.Column('token_family_id', sa.String(length=36), nullable=False, comment='令牌家族ID'),
        sa.Column('device_id', sa.String(length=64), nullable=True),
        sa.Column('device_fingerprint', sa.String(length=64), nullable=True),
        sa.Column('device_name', sa.String(length=255), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True, comment='IP地址（支持IPv6）'),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('country_code', sa.String(length=2), nullable=True),
        sa.Column('city', sa.String(length=100), nullable=True),
        sa.Column('is_trusted', sa.Boolean(), nullable=False, server_default='false'),
        _ts('trust_until'),
        _ts('refresh_expires_at', nullable=False),
        _ts('absolute_expires_at', nullable=False),
        _ts('last_activity_at', nullable=False),
        _ts('refreshed_at'),
        _ts('created_at', nullable=False),
        _ts('revoked_at'),
        sa.Column('revoked_reason', sa.String(length=50), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('refresh_token_hash'),
    )
    op.create_index('ix_user_sessions_user_id', 'user_sessions', ['user_id'])
    op.create_index('ix_user_sessions_previous_refresh_token_hash', 'user_sessions', ['previous_refresh_token_hash'])
    op.create_index('ix_user_sessions_token_family_id', 'user_sessions', ['token_family_id'])
    op.create_index('ix_user_sessions_created_at', 'user_sessions', ['created_at'])
    op.create_index('ix_user_sessions_user_device', 'user_sessions', ['user_id', 'device_id'])
    op.create_index('ix_user_sessions_user_active', 'user_sessions', ['user_id', 'revoked_at'])

    op.create_table(
        'user_trusted_devices',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('device_id', sa.String(length=64), nullable=False),
        sa.Column('device_fingerprint', sa.String(length=64), nullable=True),
        sa.Column('device_name', sa.String(length=255), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        _ts('expires_at', nullable=False),
        _ts('last_used_at'),
        _ts('created_at', nullable=False),
        _ts('revoked_at'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'device_id', name='uq_trusted_device_user_device'),
    )
    op.create_index('ix_user_trusted_devices_user_id', 'user_trusted_devices', ['user_id'])

    op.create_table(
        'user_mfa_settings',
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('email_otp_enabled', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('totp_enabled', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('webauthn_enabled', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('preferred_method', sa.String(length=20), nullable=False, server_default='email'),
        sa.Column('require_mfa_always', sa.Boolean(), nullable=False, server_default='false'),
        _ts('created_at', nullable=False),
        _ts('updated_at', nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('user_id'),
    )

    op.create_table(
        'mfa_challenges',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('session_id', sa.String(length=36), nullable=True),
        sa.Column('challenge_type', sa.String(length=20), nullable=False, server_default='email_otp'),
        sa.Column('otp_hash', sa.String(length=64), nullable=False, comment='验证码 SHA-256'),
        _ts('expires_at', nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_attempts', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('trigger_reason', sa.String(length=30), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        _ts('verified_at'),
        _ts('created_at', nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_mfa_challenges_user_pending', 'mfa_challenges', ['user_id', 'verified_at', 'expires_at'])
    op.create_index('ix_mfa_challenges_expires', 'mfa_challenges', ['expires_at'])

    op.create_table(
        'auth_rate_limits',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('limit_key', sa.String(length=255), nullable=False, comment='标识（IP 为 HMAC 哈希）'),
        sa.Column('limit_type', sa.String(length=30), nullable=False, comment='作用域'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='1'),
        _ts('first_attempt_at', nullable=False),
        _ts('last_attempt_at', nullable=False),
        _ts('locked_until'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('limit_key', 'limit_type', name='uq_auth_rate_limits_key_type'),
    )
    op.create_index('ix_auth_rate_limits_last_attempt_at', 'auth_rate_limits', ['last_attempt_at'])

    op.create_table(
        'security_audit_log',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=True),
        sa.Column('session_id', sa.String(length=36), nullable=True),
        sa.Column('event_type', sa.String(length=50), nullable=False),
        sa.Column('event_category', sa.String(length=30), nullable=False),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('country_code', sa.String(length=2), nullable=True),
        sa.Column('device_id', sa.String(length=64), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('failure_reason', sa.String(length=100), nullable=True),
        sa.Column('details', postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
        _ts('created_at', nullable=False),
        sa.PrimaryKeyConstraint('id'),
        comment='安全审计日志，只追加',
    )
    op.create_index('ix_security_audit_log_user_id', 'security_audit_log', ['user_id'])
    op.create_index('ix_security_audit_log_event_type', 'security_audit_log', ['event_type'])
    op.create_index('ix_security_audit_log_event_category', 'security_audit_log', ['event_category'])
    op.create_index('ix_security_audit_log_created_at', 'security_audit_log', ['created_at'])
    op.create_index('ix_security_audit_log_user_created', 'security_audit_log', ['user_id', 'created_at'])


def downgrade() -> None:
    op.drop_table('security_audit_log')
    op.drop_table('auth_rate_limits')
    op.drop_table('mfa_challenges')
    op.drop_table('user_mfa_settings')
    op.drop_table('user_trusted_devices')
    op.drop_table('user_sessions')
    op.drop_table('users')
