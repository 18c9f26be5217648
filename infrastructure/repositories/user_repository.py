"""
用户仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.exceptions import UserAlreadyExistsException
from domain.user.entity import User
from domain.user.repository import UserRepository
from infrastructure.models.base import new_uuid
from infrastructure.models.user import UserModel

logger = get_logger(__name__)


class SQLAlchemyUserRepository(UserRepository):
    """用户仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: UserModel) -> User:
        """将数据库模型转换为领域实体"""
        return User(
            id=model.id,
            email=model.email,
            role=model.role,
            password_hash=model.password_hash,
            first_name=model.first_name,
            last_name=model.last_name,
            auth_provider=model.auth_provider,
            failed_login_count=model.failed_login_count or 0,
            locked_until=model.locked_until,
            last_login_at=model.last_login_at,
            login_count=model.login_count or 0,
            password_changed_at=model.password_changed_at,
            created_at=model.created_at,
        )

    def _to_model(self, entity: User) -> UserModel:
        """将领域实体转换为数据库模型"""
        return UserModel(
            id=entity.id or new_uuid(),
            email=entity.email,
            role=entity.role,
            password_hash=entity.password_hash,
            first_name=entity.first_name,
            last_name=entity.last_name,
            auth_provider=entity.auth_provider,
            failed_login_count=entity.failed_login_count,
            locked_until=entity.locked_until,
            last_login_at=entity.last_login_at,
            login_count=entity.login_count,
            password_changed_at=entity.password_changed_at,
            created_at=entity.created_at,
        )

    async def create(self, user: User) -> User:
        """创建用户；邮箱冲突转换为业务异常，回滚交给 UoW"""
        db_user = self._to_model(user)
        self.session.add(db_user)
        try:
            await self.session.flush()  # 获取生成的ID
        except IntegrityError:
            logger.warning("create_user_conflict", field="email", email=user.email)
            raise UserAlreadyExistsException(user.email)
        await self.session.refresh(db_user)
        return self._to_entity(db_user)

    async def _get_model(self, user_id: str) -> Optional[UserModel]:
        result = await self.session.execute(
            select(UserModel).where(UserModel.id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_by_id(self, user_id: str) -> Optional[User]:
        db_user = await self._get_model(user_id)
        return self._to_entity(db_user) if db_user else None

    async def get_by_email(self, email: str) -> Optional[User]:
        result = await self.session.execute(
            select(UserModel).where(UserModel.email == email.strip().lower())
        )
        db_user = result.scalar_one_or_none()
        return self._to_entity(db_user) if db_user else None

    async def exists_by_email(self, email: str) -> bool:
        result = await self.session.execute(
            select(UserModel.id).where(UserModel.email == email.strip().lower()).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def exists_with_role(self, role: str) -> bool:
        result = await self.session.execute(
            select(UserModel.id).where(UserModel.role == role).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def _update(self, user_id: str, **values) -> None:
        await self.session.execute(
            update(UserModel).where(UserModel.id == user_id).values(**values)
        )

    async def update_password_hash(self, user_id: str, password_hash: str) -> None:
        await self._update(user_id, password_hash=password_hash)

    async def set_password(self, user_id: str, password_hash: str, changed_at: datetime) -> None:
        await self._update(user_id, password_hash=password_hash, password_changed_at=changed_at)

    async def stamp_password_changed(self, user_id: str, changed_at: datetime) -> None:
        await self._update(user_id, password_changed_at=changed_at)

    async def increment_failed_logins(self, user_id: str) -> int:
        # 原子自增，避免并发失败互相覆盖
        await self._update(user_id, failed_login_count=UserModel.failed_login_count + 1)
        result = await self.session.execute(
            select(UserModel.failed_login_count).where(UserModel.id == user_id)
        )
        return result.scalar_one_or_none() or 0

    async def reset_failed_logins(self, user_id: str) -> None:
        await self._update(user_id, failed_login_count=0)

    async def set_locked_until(self, user_id: str, locked_until: Optional[datetime]) -> None:
        await self._update(user_id, locked_until=locked_until)

    async def unlock(self, user_id: str) -> None:
        await self._update(user_id, locked_until=None, failed_login_count=0)

    async def record_login(self, user_id: str, at: datetime) -> None:
        await self._update(
            user_id,
            last_login_at=at,
            login_count=UserModel.login_count + 1,
            failed_login_count=0,
        )
