"""原子写入单元

任务行、事件行与账本分录在同一 SQLite 事务内原子提交：
- 进程内所有写入者共享一个连接，因此用 asyncio.Lock 串行化写入单元，
  避免一个单元的 commit 把另一个单元未完成的写入一起提交。
- BEGIN IMMEDIATE 立即获取 SQLite RESERVED 锁，排除其他进程的并发写入。
- 成功则 commit，任何异常都 rollback 后原样抛出。

run_atomic 在单元外层实现有限重试：存储层错误（database is locked 等）
与乐观并发冲突（StaleTaskVersion）会重新执行整个单元，
重试耗尽后抛出 TransitionFailed。
"""

import asyncio
from collections.abc import Awaitable, Callable
from types import TracebackType
from typing import TypeVar

import aiosqlite
import structlog

from ..errors import StaleTaskVersion, TransitionFailed

log = structlog.get_logger()

T = TypeVar("T")

# 重试间隔基数（秒），第 n 次重试等待 n * _RETRY_DELAY_S
_RETRY_DELAY_S = 0.05


class UnitOfWork:
    """单连接上的原子写入单元（async context manager）"""

    def __init__(self, conn: aiosqlite.Connection, write_lock: asyncio.Lock) -> None:
        self._conn = conn
        self._lock = write_lock

    async def __aenter__(self) -> aiosqlite.Connection:
        await self._lock.acquire()
        try:
            await self._conn.execute("BEGIN IMMEDIATE")
        except BaseException:
            self._lock.release()
            raise
        return self._conn

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        try:
            if exc_type is None:
                try:
                    await self._conn.commit()
                except BaseException:
                    await self._conn.rollback()
                    raise
            else:
                await self._conn.rollback()
        finally:
            self._lock.release()


async def run_atomic(
    unit_factory: Callable[[], UnitOfWork],
    work: Callable[[], Awaitable[T]],
    max_attempts: int,
    operation: str = "",
) -> T:
    """在写入单元内执行 work，失败时有限重试

    Args:
        unit_factory: 创建 UnitOfWork 的工厂
        work: 单元内执行的协程函数（每次重试都会完整重跑）
        max_attempts: 最大尝试次数
        operation: 日志中使用的操作名

    Returns:
        work 的返回值

    Raises:
        TransitionFailed: 存储层错误或版本冲突重试耗尽
        EngineError: work 抛出的业务错误（不重试，原样抛出）
    """
    last_error: Exception | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            async with unit_factory():
                return await work()
        except StaleTaskVersion as e:
            last_error = e
            await log.ainfo(
                "atomic_unit_stale_version",
                operation=operation,
                task_id=e.task_id,
                attempt=attempt,
            )
        except aiosqlite.OperationalError as e:
            last_error = e
            log.warning(
                "atomic_unit_storage_error",
                operation=operation,
                attempt=attempt,
                error=str(e),
            )
        if attempt < max_attempts:
            await asyncio.sleep(_RETRY_DELAY_S * attempt)

    log.error(
        "atomic_unit_failed",
        operation=operation,
        attempts=max_attempts,
        error=str(last_error),
    )
    raise TransitionFailed(
        f"{operation or 'commit'} failed after {max_attempts} attempts",
        details={"attempts": max_attempts, "error": str(last_error)},
    ) from last_error
