"""
异常到统一响应的映射

认证核心不绑定任何 HTTP 框架，调用方（路由层、任务、CLI）通过
``to_error_response`` 拿到 HTTP 状态码与统一响应体后自行输出。
"""
from http import HTTPStatus
from typing import Optional
import uuid

from .response import Response, error_response
from shared.codes import BusinessCode
from core.logging_config import get_logger
from domain.common.exceptions import BusinessException
from core.i18n import t, get_locale

logger = get_logger(__name__)


class TokenExpiredException(BusinessException):
    """访问令牌过期"""

    def __init__(self):
        super().__init__(
            code=BusinessCode.TOKEN_EXPIRED,
            message="Token expired",
            error_type="TokenExpired",
            message_key="auth.token.expired",
        )


_STATUS_BY_CODE = {
    BusinessCode.PARAM_ERROR: HTTPStatus.BAD_REQUEST,
    BusinessCode.PARAM_MISSING: HTTPStatus.BAD_REQUEST,
    BusinessCode.PARAM_TYPE_ERROR: HTTPStatus.BAD_REQUEST,
    BusinessCode.PARAM_VALIDATION_ERROR: HTTPStatus.UNPROCESSABLE_ENTITY,
    BusinessCode.PASSWORD_POLICY_VIOLATION: HTTPStatus.UNPROCESSABLE_ENTITY,

    BusinessCode.BUSINESS_ERROR: HTTPStatus.BAD_REQUEST,
    BusinessCode.USER_NOT_FOUND: HTTPStatus.NOT_FOUND,
    BusinessCode.NOT_FOUND: HTTPStatus.NOT_FOUND,
    BusinessCode.USER_ALREADY_EXISTS: HTTPStatus.CONFLICT,
    BusinessCode.PASSWORD_ERROR: HTTPStatus.UNAUTHORIZED,
    BusinessCode.TOKEN_INVALID: HTTPStatus.UNAUTHORIZED,
    BusinessCode.TOKEN_EXPIRED: HTTPStatus.UNAUTHORIZED,
    BusinessCode.MFA_INVALID: HTTPStatus.UNAUTHORIZED,
    BusinessCode.MFA_EXPIRED: HTTPStatus.UNAUTHORIZED,
    BusinessCode.MFA_EXCEEDED: HTTPStatus.TOO_MANY_REQUESTS,

    BusinessCode.PERMISSION_ERROR: HTTPStatus.FORBIDDEN,
    BusinessCode.UNAUTHORIZED: HTTPStatus.UNAUTHORIZED,
    BusinessCode.FORBIDDEN: HTTPStatus.FORBIDDEN,
    BusinessCode.ACCOUNT_LOCKED: HTTPStatus.LOCKED,

    BusinessCode.SYSTEM_ERROR: HTTPStatus.INTERNAL_SERVER_ERROR,
    BusinessCode.DATABASE_ERROR: HTTPStatus.INTERNAL_SERVER_ERROR,
    BusinessCode.NETWORK_ERROR: HTTPStatus.INTERNAL_SERVER_ERROR,
    BusinessCode.SERVICE_UNAVAILABLE: HTTPStatus.SERVICE_UNAVAILABLE,

    BusinessCode.RATE_LIMIT_ERROR: HTTPStatus.TOO_MANY_REQUESTS,
    BusinessCode.TOO_MANY_REQUESTS: HTTPStatus.TOO_MANY_REQUESTS,
}


def business_code_to_http_status(code: int) -> HTTPStatus:
    """根据业务码映射HTTP状态码（默认400）"""
    try:
        return _STATUS_BY_CODE.get(BusinessCode(code), HTTPStatus.BAD_REQUEST)
    except ValueError:
        return HTTPStatus.BAD_REQUEST


def to_error_response(exc: Exception, request_id: Optional[str] = None) -> tuple[HTTPStatus, Response]:
    """把任意异常转换为 (HTTP 状态码, 统一响应)

    业务异常按 message_key 本地化，找不到翻译时使用异常自带的英文消息；
    其他异常一律视为系统错误，不向调用方暴露内部信息。
    """
    request_id = request_id or str(uuid.uuid4())
    locale = get_locale()

    if isinstance(exc, BusinessException):
        fmt_params = exc.format_params
        params = fmt_params if isinstance(fmt_params, dict) else {}
        message = t(exc.message_key, default=exc.message, **params) if exc.message_key else exc.message
        response = error_response(
            code=exc.code,
            message=message,
            error_type=exc.error_type,
            details=exc.details,
            field=exc.field,
            request_id=request_id,
            locale=locale,
            message_key=exc.message_key,
        )
        return business_code_to_http_status(exc.code), response

    logger.error("unhandled_exception", request_id=request_id, error=str(exc), exc_info=exc)
    response = error_response(
        code=BusinessCode.SYSTEM_ERROR,
        message=t("error.internal", default="Internal server error"),
        error_type="SystemError",
        request_id=request_id,
        locale=locale,
        message_key="error.internal",
    )
    return HTTPStatus.INTERNAL_SERVER_ERROR, response
