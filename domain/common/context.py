"""
请求上下文 - 认证流程中随调用传递的客户端信息
"""
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class RequestContext:
    """调用方（HTTP 层等）提取出的客户端信息"""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    country_code: Optional[str] = None
    city: Optional[str] = None
