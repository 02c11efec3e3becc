"""TraceMiddleware -- 任务级追踪

路径中带任务 ID 的请求（/api/tasks/{task_id}/...、/api/admin/tasks/{task_id}/...）
绑定 trace_id，同一任务整个生命周期的日志可以串起来。
"""

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ULID 固定 26 个字符
_ULID_LENGTH = 26


def extract_task_id(path: str) -> str | None:
    """从请求路径中提取任务 ID，不存在时返回 None"""
    parts = path.strip("/").split("/")
    for i, part in enumerate(parts[:-1]):
        if part == "tasks":
            candidate = parts[i + 1]
            if len(candidate) == _ULID_LENGTH and candidate.isalnum():
                return candidate
    return None


class TraceMiddleware(BaseHTTPMiddleware):
    """为任务操作绑定 trace_id"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        task_id = extract_task_id(request.url.path)
        if task_id:
            structlog.contextvars.bind_contextvars(
                task_id=task_id,
                trace_id=f"trace-{task_id}",
            )
        return await call_next(request)
