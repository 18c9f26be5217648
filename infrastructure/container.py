"""
组装认证核心的全部服务

调用方（Web 层、Celery 任务、测试）只依赖 ``SecurityCore``；
数据库会话工厂、邮件发送器与时钟都可以替换。
"""
from dataclasses import dataclass
from typing import Callable, Optional

from application.ports.email import EmailSender
from application.services.audit_service import AuditService
from application.services.device_trust_service import DeviceTrustService
from application.services.mfa_service import MfaService
from application.services.rate_limit_service import RateLimitService
from application.services.session_service import SessionService
from application.services.token_service import TokenService
from application.services.user_service import UserApplicationService
from core.config import SecuritySettings, settings
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.user.service import PasswordService
from infrastructure.adapters.role_resolver import LegacyRoleResolver
from shared.clock import Clock, utc_now


@dataclass
class SecurityCore:
    audit: AuditService
    rate_limits: RateLimitService
    passwords: PasswordService
    tokens: TokenService
    device_trust: DeviceTrustService
    mfa: MfaService
    sessions: SessionService
    users: UserApplicationService
    role_resolver: LegacyRoleResolver


def build_security_core(
    uow_factory: Optional[Callable[..., AbstractUnitOfWork]] = None,
    *,
    email_sender: Optional[EmailSender] = None,
    config: Optional[SecuritySettings] = None,
    clock: Clock = utc_now,
) -> SecurityCore:
    if uow_factory is None:
        from infrastructure.unit_of_work import uow_factory as default_factory

        uow_factory = default_factory()
    if email_sender is None:
        from infrastructure.external.email import MailgunEmailSender

        email_sender = MailgunEmailSender()
    config = config or settings.security

    audit = AuditService(uow_factory, clock)
    rate_limits = RateLimitService(uow_factory, audit, config, clock)
    passwords = PasswordService(config.argon2)
    role_resolver = LegacyRoleResolver(uow_factory, cache_seconds=config.role_cache_seconds)
    tokens = TokenService(uow_factory, role_resolver, audit, config, clock)
    device_trust = DeviceTrustService(uow_factory, audit, config, clock)
    mfa = MfaService(uow_factory, audit, device_trust, email_sender, config, clock)
    sessions = SessionService(
        uow_factory,
        audit=audit,
        rate_limits=rate_limits,
        passwords=passwords,
        tokens=tokens,
        device_trust=device_trust,
        mfa=mfa,
        config=config,
        clock=clock,
    )
    users = UserApplicationService(
        uow_factory,
        audit=audit,
        sessions=sessions,
        mfa=mfa,
        passwords=passwords,
        role_resolver=role_resolver,
        config=config,
        clock=clock,
    )
    return SecurityCore(
        audit=audit,
        rate_limits=rate_limits,
        passwords=passwords,
        tokens=tokens,
        device_trust=device_trust,
        mfa=mfa,
        sessions=sessions,
        users=users,
        role_resolver=role_resolver,
    )
