"""
Structlog 日志配置

structlog 与标准库 logging（SQLAlchemy、Celery、tenacity）共用一条处理链，
统一输出到 stderr；DEBUG 下为彩色控制台格式，其余环境为单行 JSON。
"""
import json
import logging
from typing import Any

import structlog
from structlog.contextvars import merge_contextvars
from structlog.stdlib import ProcessorFormatter

from core.config import settings
from shared.redaction import is_sensitive_key

MASK = "***"

# structlog 自身使用的字段，不参与脱敏
_RESERVED_KEYS = frozenset({"event", "level", "timestamp", "logger", "exc_info", "stack_info"})


def redact_sensitive(_logger: Any, _method: str, event_dict: dict) -> dict:
    """屏蔽敏感字段的值（密码、令牌、验证码等）"""
    for key in list(event_dict):
        if key in _RESERVED_KEYS or key.startswith("_"):
            continue
        if is_sensitive_key(key):
            event_dict[key] = MASK
    return event_dict


def _json_dumps(obj, default=None, **kwargs) -> str:
    # structlog 会额外传入 default 等参数
    return json.dumps(obj, ensure_ascii=False, default=default, **kwargs)


def _shared_processors() -> list:
    return [
        merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.PositionalArgumentsFormatter(),
        redact_sensitive,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def configure_logging() -> None:
    pre_chain = _shared_processors()
    structlog.configure(
        processors=[*pre_chain, ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    renderer = (
        structlog.dev.ConsoleRenderer(colors=True)
        if settings.DEBUG
        else structlog.processors.JSONRenderer(serializer=_json_dumps)
    )
    handler = logging.StreamHandler()
    handler.setFormatter(
        ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)

    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database.echo else logging.WARNING
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


configure_logging()
