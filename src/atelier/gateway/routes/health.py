"""健康检查路由

GET /health: Liveness，永远返回 200
GET /ready: Readiness，检查 SQLite 连通性、副作用派发器与实时连接
"""

import structlog
from fastapi import APIRouter, Request
from starlette.responses import JSONResponse

log = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness 检查 -- 永远返回 200"""
    return {"status": "ok"}


@router.get("/ready")
async def ready(request: Request):
    """Readiness 检查

    检查项：
    1. sqlite: 数据库连通性
    2. dispatcher: 副作用 worker 是否在运行
    3. realtime_connections: 当前 SSE 会话数（仅供参考，不影响结果）
    """
    checks: dict = {}
    all_ok = True

    try:
        store_group = request.app.state.store_group
        cursor = await store_group.conn.execute("SELECT 1")
        await cursor.fetchone()
        checks["sqlite"] = "ok"
    except Exception as e:
        log.warning("readiness_sqlite_failed", error=str(e))
        checks["sqlite"] = f"error: {e}"
        all_ok = False

    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is not None and dispatcher.running:
        checks["dispatcher"] = "ok"
    else:
        checks["dispatcher"] = "stopped"
        all_ok = False

    hub = getattr(request.app.state, "hub", None)
    checks["realtime_connections"] = hub.connection_count() if hub else 0

    return JSONResponse(
        status_code=200 if all_ok else 503,
        content={"status": "ready" if all_ok else "not_ready", "checks": checks},
    )
