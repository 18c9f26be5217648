"""
令牌服务 - 访问令牌签发/校验与刷新令牌轮转

安全特性：
1. 刷新令牌是不透明的随机串，数据库只保存 SHA-256 哈希
2. 每次刷新都替换哈希（比较并交换），旧令牌立即失效
3. 轮转前的哈希保留一份，旧令牌再次出现即判定为重用，撤销整个令牌家族
4. 会话同时受刷新期限和绝对期限约束
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional
import hashlib
import secrets
import uuid

import jwt

from application.dto import AccessTokenClaimsDTO
from application.ports.role_resolver import RoleResolver
from application.services.audit_service import AuditService
from core.config import SecuritySettings, settings
from core.exceptions import TokenExpiredException
from core.logging_config import get_logger
from domain.audit.entity import SecurityEventType
from domain.common.context import RequestContext
from domain.common.exceptions import (
    InvalidTokenException,
    RefreshExpiredException,
    SessionExpiredException,
    SessionRefreshFailure,
    SessionRevokedException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.device.entity import DeviceInfo
from domain.session.entity import Session
from domain.user.entity import User
from shared.clock import Clock, utc_now

logger = get_logger(__name__)

REFRESH_TOKEN_BYTES = 32


@dataclass(frozen=True)
class IssuedSession:
    """新建或刷新后的会话；refresh_token 是唯一一次返回明文的地方"""

    session: Session
    user: User
    access_token: str
    refresh_token: str
    effective_role: str


class TokenService:
    """令牌与会话存储"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        role_resolver: RoleResolver,
        audit: Optional[AuditService] = None,
        config: Optional[SecuritySettings] = None,
        clock: Clock = utc_now,
    ):
        self._uow_factory = uow_factory
        self._role_resolver = role_resolver
        self._audit = audit
        self._config = config or settings.security
        self._clock = clock

    @property
    def access_token_ttl(self) -> int:
        return self._config.access_token_ttl_seconds

    @staticmethod
    def hash_token(token: str) -> str:
        """计算令牌的SHA-256哈希"""
        return hashlib.sha256(token.encode("utf-8")).hexdigest()

    @staticmethod
    def generate_refresh_token() -> str:
        """32 字节随机数，base64url 编码（43 个字符）"""
        return secrets.token_urlsafe(REFRESH_TOKEN_BYTES)

    def _secret(self) -> str:
        return self._config.jwt_secret or settings.SECRET_KEY

    # ------------------------------------------------------------------
    # 访问令牌
    # ------------------------------------------------------------------

    def create_access_token(
        self,
        user_id: str,
        session_id: str,
        role: str,
        effective_role: str,
        now: Optional[datetime] = None,
    ) -> str:
        """创建访问令牌（sub/sid/role/eff/type/iat/exp）"""
        now = now or self._clock()
        issued_at = int(now.timestamp())
        claims = {
            "sub": str(user_id),
            "sid": str(session_id),
            "role": role,
            "eff": effective_role,
            "type": "access",
            "iat": issued_at,
            "exp": issued_at + self._config.access_token_ttl_seconds,
        }
        return jwt.encode(claims, self._secret(), algorithm=self._config.jwt_algorithm)

    def verify_access_token(self, token: str) -> Optional[AccessTokenClaimsDTO]:
        """Verify an access JWT and return its claims.

        - Expired token: raise TokenExpiredException
        - Invalid signature, malformed token or wrong type: return None

        Expiry is checked against the injected clock rather than the wall clock.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret(),
                algorithms=[self._config.jwt_algorithm],
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "require": ["exp", "iat", "sub", "sid"],
                },
            )
        except jwt.InvalidTokenError:
            return None

        if payload.get("type") != "access":
            return None
        try:
            claims = AccessTokenClaimsDTO.model_validate(payload)
        except ValueError:
            return None
        if claims.exp <= int(self._clock().timestamp()):
            raise TokenExpiredException()
        return claims

    # ------------------------------------------------------------------
    # 会话
    # ------------------------------------------------------------------

    async def create_session(
        self,
        user: User,
        device: DeviceInfo,
        context: Optional[RequestContext] = None,
        *,
        trust: bool = False,
    ) -> IssuedSession:
        """创建会话并签发令牌；刷新令牌明文只在这里返回一次"""
        context = context or RequestContext()
        now = self._clock()
        refresh_token = self.generate_refresh_token()
        session = Session(
            id=str(uuid.uuid4()),
            user_id=user.id,
            token_family_id=str(uuid.uuid4()),
            refresh_token_hash=self.hash_token(refresh_token),
            refresh_expires_at=now + timedelta(days=self._config.refresh_token_ttl_days),
            absolute_expires_at=now + timedelta(days=self._config.absolute_session_ttl_days),
            last_activity_at=now,
            device_id=device.device_id,
            device_fingerprint=device.fingerprint,
            device_name=device.device_name,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            country_code=context.country_code,
            city=context.city,
            is_trusted=trust,
            trust_until=now + timedelta(days=self._config.device_trust_days) if trust else None,
            created_at=now,
        )

        async with self._uow_factory() as uow:
            session = await uow.session_repository.create(session)

        effective_role = await self._role_resolver.resolve(user.role)
        access_token = self.create_access_token(user.id, session.id, user.role, effective_role, now)
        logger.info(
            "session_created",
            user_id=user.id,
            session_id=session.id,
            family_id=session.token_family_id,
            trusted=trust,
        )
        return IssuedSession(
            session=session,
            user=user,
            access_token=access_token,
            refresh_token=refresh_token,
            effective_role=effective_role,
        )

    async def refresh(self, refresh_token: str, context: Optional[RequestContext] = None) -> IssuedSession:
        """
        刷新令牌轮转 - 核心安全逻辑

        失败顺序：
        1. 哈希不存在 -> invalid_token（若命中轮转前的哈希，撤销整个家族；
           轮转后 refresh_reuse_grace_seconds 内的重放视为客户端重试，不撤销）
        2. 会话已撤销 -> session_revoked
        3. now >= 刷新期限 -> refresh_expired
        4. now >= 绝对期限 -> 以 absolute_expiry 撤销，session_expired
        5. 否则比较并交换哈希；并发刷新的失败方得到 invalid_token

        状态变更（撤销、轮转）先随事务提交，再抛出失败。
        """
        context = context or RequestContext()
        token_hash = self.hash_token(refresh_token or "")
        now = self._clock()
        failure: Optional[SessionRefreshFailure] = None
        reused: Optional[Session] = None
        new_refresh_token = self.generate_refresh_token()
        session: Optional[Session] = None
        user: Optional[User] = None

        async with self._uow_factory() as uow:
            session = await uow.session_repository.get_by_refresh_hash(token_hash, for_update=True)

            if session is None:
                reused = await uow.session_repository.get_by_previous_refresh_hash(token_hash)
                if reused is not None and reused.rotated_within(now, self._config.refresh_reuse_grace_seconds):
                    # 客户端并发重试：刚轮转过，只拒绝本次请求
                    logger.info("refresh_replayed_within_grace", session_id=reused.id)
                    reused = None
                if reused is not None:
                    await uow.session_repository.revoke_family(
                        reused.token_family_id, "reuse_detected", now
                    )
                failure = InvalidTokenException(reuse_detected=reused is not None)
            elif session.is_revoked:
                failure = SessionRevokedException(session.revoked_reason)
            elif now >= session.refresh_expires_at:
                failure = RefreshExpiredException()
            elif now >= session.absolute_expires_at:
                await uow.session_repository.revoke(session.id, "absolute_expiry", now)
                failure = SessionExpiredException()
            else:
                new_expiry = session.next_refresh_expiry(
                    now, timedelta(days=self._config.refresh_token_ttl_days)
                )
                rotated = await uow.session_repository.rotate_refresh_token(
                    session.id,
                    token_hash,
                    self.hash_token(new_refresh_token),
                    new_expiry,
                    now,
                    ip_address=context.ip_address,
                    user_agent=context.user_agent,
                )
                if not rotated:
                    failure = InvalidTokenException()
                else:
                    user = await uow.user_repository.get_by_id(session.user_id)
                    if user is None:
                        await uow.session_repository.revoke(session.id, "user_missing", now)
                        failure = InvalidTokenException()
                    else:
                        session.previous_refresh_token_hash = token_hash
                        session.refresh_token_hash = self.hash_token(new_refresh_token)
                        session.refresh_expires_at = new_expiry
                        session.last_activity_at = now
                        session.refreshed_at = now
                        session.ip_address = context.ip_address or session.ip_address
                        session.user_agent = context.user_agent or session.user_agent

        if failure is not None:
            if reused is not None:
                logger.error(
                    "refresh_token_reuse_detected",
                    session_id=reused.id,
                    family_id=reused.token_family_id,
                    user_id=reused.user_id,
                )
                if self._audit is not None:
                    await self._audit.log(
                        SecurityEventType.TOKEN_REUSE_DETECTED,
                        success=False,
                        user_id=reused.user_id,
                        session_id=reused.id,
                        device_id=reused.device_id,
                        context=context,
                        failure_reason="reuse_detected",
                        details={"familyId": reused.token_family_id},
                    )
            else:
                logger.warning(
                    "refresh_failed",
                    reason=failure.reason,
                    session_id=session.id if session else None,
                )
            raise failure

        effective_role = await self._role_resolver.resolve(user.role)
        access_token = self.create_access_token(user.id, session.id, user.role, effective_role, now)
        logger.info("refresh_token_rotated", user_id=user.id, session_id=session.id)
        return IssuedSession(
            session=session,
            user=user,
            access_token=access_token,
            refresh_token=new_refresh_token,
            effective_role=effective_role,
        )

    async def revoke_session(self, session_id: str, reason: str) -> bool:
        """撤销单个会话；已撤销时返回 False"""
        async with self._uow_factory() as uow:
            success = await uow.session_repository.revoke(session_id, reason, self._clock())
        if success:
            logger.info("session_revoked", session_id=session_id, reason=reason)
        return success

    async def revoke_all_user_sessions(
        self, user_id: str, reason: str, except_session_id: Optional[str] = None
    ) -> int:
        """撤销用户所有会话（登出所有设备）"""
        async with self._uow_factory() as uow:
            count = await uow.session_repository.revoke_all_for_user(
                user_id, reason, self._clock(), except_session_id
            )
        logger.info("user_sessions_revoked", user_id=user_id, count=count, reason=reason)
        return count

    async def revoke_family(self, family_id: str, reason: str = "reuse_detected") -> int:
        async with self._uow_factory() as uow:
            return await uow.session_repository.revoke_family(family_id, reason, self._clock())

    async def get_session(self, session_id: str) -> Optional[Session]:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.session_repository.get_by_id(session_id)

    async def touch_session(self, session_id: str) -> None:
        async with self._uow_factory() as uow:
            await uow.session_repository.touch(session_id, self._clock())

    async def get_active_sessions(self, user_id: str) -> list[Session]:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.session_repository.list_active_for_user(user_id, self._clock())

    async def purge_stale_sessions(self, retention_days: Optional[int] = None) -> int:
        """删除撤销或过期超过保留期的会话"""
        days = self._config.session_retention_days if retention_days is None else retention_days
        before = self._clock() - timedelta(days=days)
        async with self._uow_factory() as uow:
            count = await uow.session_repository.delete_stale(before)
        logger.info("stale_sessions_purged", count=count)
        return count
