"""structlog 配置模块

ATELIER_LOG_FORMAT=json 时输出结构化 JSON（生产），否则使用控制台渲染（开发）。
Logfire APM 由 LOGFIRE_SEND_TO_LOGFIRE 控制，初始化失败时只保留本地日志。
"""

import logging
import os

import structlog
from fastapi import FastAPI

# 这些第三方 logger 在 INFO 级别过于嘈杂
_QUIET_LOGGERS = ("httpx", "httpcore", "aiosqlite")


def setup_logging() -> None:
    """初始化 structlog 与标准库 logging

    structlog 事件与第三方库的标准 logging 记录共用同一个处理器链，
    两者输出格式一致。
    """
    log_format = os.environ.get("ATELIER_LOG_FORMAT", "dev")
    log_level = os.environ.get("ATELIER_LOG_LEVEL", "INFO")

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer(
            ensure_ascii=False
        )
        shared_processors.append(structlog.processors.format_exc_info)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=shared_processors,
    )
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_logfire(app: FastAPI) -> bool:
    """按需启用 Logfire

    Returns:
        是否已启用
    """
    if os.environ.get("LOGFIRE_SEND_TO_LOGFIRE", "false").lower() != "true":
        return False
    try:
        import logfire

        logfire.configure()
        logfire.instrument_fastapi(app)
        logfire.instrument_httpx()
    except Exception as e:
        structlog.get_logger().warning(
            "logfire_init_failed",
            error=str(e),
            message="Logfire 初始化失败，仅输出本地日志",
        )
        return False
    return True
