"""
密码服务 - 哈希、校验与旧格式升级检测

新密码统一使用 Argon2id；历史 bcrypt 哈希（``$2`` 前缀）仍可校验，
校验成功即提示调用方在登录时重新哈希。
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import bcrypt
from argon2 import PasswordHasher, Type, extract_parameters
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from core.config import Argon2Settings


class PasswordScheme(str, Enum):
    """支持的哈希方案"""

    ARGON2ID = "argon2id"
    BCRYPT = "bcrypt"


def detect_scheme(password_hash: Optional[str]) -> Optional[PasswordScheme]:
    if not password_hash:
        return None
    if password_hash.startswith("$argon2"):
        return PasswordScheme.ARGON2ID
    if password_hash.startswith("$2"):
        return PasswordScheme.BCRYPT
    return None


@dataclass(frozen=True)
class PasswordVerification:
    valid: bool
    needs_rehash: bool = False
    scheme: Optional[PasswordScheme] = None


class PasswordService:
    """密码服务 - 处理密码相关的业务逻辑"""

    def __init__(self, config: Optional[Argon2Settings] = None):
        self._config = config or Argon2Settings()
        self._hasher = PasswordHasher(
            time_cost=self._config.time_cost,
            memory_cost=self._config.memory_cost,
            parallelism=self._config.parallelism,
            hash_len=self._config.hash_len,
            salt_len=self._config.salt_len,
            type=Type.ID,
        )

    def hash_password(self, password: str) -> str:
        """使用 Argon2id 生成密码哈希"""
        if not password:
            raise ValueError("Password must not be empty")
        return self._hasher.hash(password)

    def verify_password(self, plain_password: str, password_hash: Optional[str]) -> PasswordVerification:
        """校验密码，兼容 Argon2 与 bcrypt"""
        scheme = detect_scheme(password_hash)
        if not plain_password or scheme is None:
            return PasswordVerification(valid=False, scheme=scheme)

        if scheme is PasswordScheme.ARGON2ID:
            try:
                self._hasher.verify(password_hash, plain_password)
            except (VerifyMismatchError, VerificationError, InvalidHashError):
                return PasswordVerification(valid=False, scheme=scheme)
            return PasswordVerification(
                valid=True,
                needs_rehash=self.needs_rehash(password_hash),
                scheme=scheme,
            )

        try:
            ok = bcrypt.checkpw(plain_password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            # 非法盐值，或密码超过 bcrypt 的 72 字节上限
            ok = False
        # 旧格式校验成功一律要求升级
        return PasswordVerification(valid=ok, needs_rehash=ok, scheme=scheme)

    def needs_rehash(self, password_hash: Optional[str]) -> bool:
        """旧格式，或当前 Argon2 参数高于哈希中的参数时需要重新哈希"""
        scheme = detect_scheme(password_hash)
        if scheme is not PasswordScheme.ARGON2ID:
            return True
        try:
            params = extract_parameters(password_hash)
        except InvalidHashError:
            return True
        cfg = self._config
        return (
            params.type is not Type.ID
            or params.memory_cost < cfg.memory_cost
            or params.time_cost < cfg.time_cost
            or params.parallelism < cfg.parallelism
            or params.hash_len < cfg.hash_len
        )
