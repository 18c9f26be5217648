"""
用户应用服务（application/services）- 注册、修改密码、MFA 开关

账户本身的增删改不在认证核心范围内，这里只保留与凭据和安全设置相关的操作；
会话的连带撤销交给 ``SessionService``。
"""
import asyncio
from typing import Callable, Optional

from application.dto import PasswordStrengthDTO, UserSummaryDTO
from application.ports.role_resolver import RoleResolver
from application.services.audit_service import AuditService
from application.services.mfa_service import MfaService
from application.services.session_service import SessionService
from core.config import SecuritySettings, settings
from core.logging_config import get_logger
from domain.audit.entity import SecurityEventType
from domain.common.context import RequestContext
from domain.common.exceptions import (
    InvalidCredentialsException,
    NewPasswordSameAsOldException,
    PasswordPolicyException,
    UserAlreadyExistsException,
    UserNotFoundException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.mfa.entity import MfaSettings
from domain.user.entity import User
from domain.user.password_policy import (
    PasswordHints,
    password_strength,
    strength_label,
    validate_password,
)
from domain.user.service import PasswordService
from shared.clock import Clock, utc_now

logger = get_logger(__name__)


class UserApplicationService:
    """用户应用服务 - 处理凭据相关的应用层逻辑"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        *,
        audit: AuditService,
        sessions: SessionService,
        mfa: MfaService,
        passwords: PasswordService,
        role_resolver: Optional[RoleResolver] = None,
        config: Optional[SecuritySettings] = None,
        clock: Clock = utc_now,
    ):
        self._uow_factory = uow_factory
        self._audit = audit
        self._sessions = sessions
        self._mfa = mfa
        self._passwords = passwords
        self._role_resolver = role_resolver
        self._config = config or settings.security
        self._clock = clock

    async def register_user(
        self,
        email: str,
        password: str,
        *,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        role: str = "client",
        context: Optional[RequestContext] = None,
    ) -> UserSummaryDTO:
        """注册新用户：校验密码策略后以 Argon2id 保存"""
        user = User(id=None, email=email, role=role, first_name=first_name, last_name=last_name)
        self._check_policy(
            password, PasswordHints(email=user.email, first_name=first_name, last_name=last_name)
        )
        user.password_hash = await asyncio.to_thread(self._passwords.hash_password, password)
        user.created_at = user.password_changed_at = self._clock()

        async with self._uow_factory() as uow:
            if await uow.user_repository.exists_by_email(user.email):
                raise UserAlreadyExistsException(user.email)
            user = await uow.user_repository.create(user)

        logger.info("user_registered", user_id=user.id)
        await self._audit.log(
            SecurityEventType.ACCOUNT_CREATED,
            success=True,
            user_id=user.id,
            context=context,
            details={"authProvider": user.auth_provider},
        )
        return await self._to_summary(user)

    async def get_user(self, user_id: str) -> UserSummaryDTO:
        async with self._uow_factory(readonly=True) as uow:
            user = await uow.user_repository.get_by_id(user_id)
            if not user:
                raise UserNotFoundException(user_id)
        return await self._to_summary(user)

    async def change_password(
        self,
        user_id: str,
        current_password: str,
        new_password: str,
        *,
        current_session_id: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> int:
        """修改密码，返回被撤销的其它会话数量"""
        async with self._uow_factory(readonly=True) as uow:
            user = await uow.user_repository.get_by_id(user_id)
        if not user:
            raise UserNotFoundException(user_id)

        verification = await asyncio.to_thread(
            self._passwords.verify_password, current_password, user.password_hash
        )
        if not verification.valid:
            await self._audit.log(
                SecurityEventType.PASSWORD_CHANGED,
                success=False,
                user_id=user_id,
                session_id=current_session_id,
                context=context,
                failure_reason="invalid_current_password",
            )
            raise InvalidCredentialsException()
        if current_password == new_password:
            raise NewPasswordSameAsOldException()
        self._check_policy(
            new_password,
            PasswordHints(email=user.email, first_name=user.first_name, last_name=user.last_name),
        )

        new_hash = await asyncio.to_thread(self._passwords.hash_password, new_password)
        async with self._uow_factory() as uow:
            await uow.user_repository.set_password(user_id, new_hash, self._clock())

        await self._audit.log(
            SecurityEventType.PASSWORD_CHANGED,
            success=True,
            user_id=user_id,
            session_id=current_session_id,
            context=context,
        )
        return await self._sessions.on_password_change(user_id, current_session_id, context)

    async def set_email_otp(
        self, user_id: str, enabled: bool, context: Optional[RequestContext] = None
    ) -> MfaSettings:
        """开启 / 关闭邮箱验证码，并按配置撤销会话"""
        if enabled:
            result = await self._mfa.enable_email_otp(user_id, context)
        else:
            result = await self._mfa.disable_email_otp(user_id, context)
        await self._sessions.on_mfa_change(
            user_id, context, details={"method": "email_otp", "enabled": enabled}
        )
        return result

    def check_password_strength(
        self, password: str, hints: Optional[PasswordHints] = None
    ) -> PasswordStrengthDTO:
        score = password_strength(password)
        validation = validate_password(password, hints, self._config.password)
        return PasswordStrengthDTO(
            score=score,
            label=strength_label(score),
            valid=validation.valid,
            errors=validation.errors,
        )

    def _check_policy(self, password: str, hints: PasswordHints) -> None:
        validation = validate_password(password, hints, self._config.password)
        if not validation.valid:
            raise PasswordPolicyException(validation.errors)

    async def _to_summary(self, user: User) -> UserSummaryDTO:
        """将领域实体转换为响应DTO"""
        effective_role = user.role
        if self._role_resolver is not None:
            effective_role = await self._role_resolver.resolve(user.role)
        return UserSummaryDTO(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            role=user.role,
            effective_role=effective_role,
        )
