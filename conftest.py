"""全局 pytest 配置 -- 临时 SQLite 数据库 + 引擎 + 账户 fixture"""

from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path

import pytest
import pytest_asyncio
from atelier.core.lifecycle import CreditChange, LifecycleEngine
from atelier.core.models import (
    AccountRole,
    Actor,
    FreelancerStatus,
    Task,
    TaskEvent,
)
from atelier.core.settings_cache import SettingsCache
from atelier.core.store import StoreGroup, create_store_group
from ulid import ULID


class RecordingEffects:
    """记录已提交变更的 EffectSink（不做任何派发）"""

    def __init__(self) -> None:
        self.transitions: list[tuple[Task, TaskEvent]] = []
        self.credits: list[CreditChange] = []

    def on_transition_committed(self, task: Task, event: TaskEvent) -> None:
        self.transitions.append((task, event))

    def on_credits_committed(self, change: CreditChange) -> None:
        self.credits.append(change)


@pytest.fixture
def client_actor() -> Actor:
    return Actor(id="client-1", role=AccountRole.CLIENT)


@pytest.fixture
def other_client() -> Actor:
    return Actor(id="client-2", role=AccountRole.CLIENT)


@pytest.fixture
def freelancer_actor() -> Actor:
    return Actor(id="designer-1", role=AccountRole.FREELANCER)


@pytest.fixture
def other_freelancer() -> Actor:
    return Actor(id="designer-2", role=AccountRole.FREELANCER)


@pytest.fixture
def admin_actor() -> Actor:
    return Actor(id="admin-1", role=AccountRole.ADMIN)


@pytest_asyncio.fixture
async def tmp_db_path(tmp_path: Path) -> Path:
    """提供临时 SQLite 数据库路径"""
    return tmp_path / "sqlite" / "test.db"


@pytest_asyncio.fixture
async def store_group(tmp_db_path: Path) -> AsyncGenerator[StoreGroup, None]:
    """提供已初始化的 StoreGroup（共享连接）"""
    sg = await create_store_group(str(tmp_db_path))
    yield sg
    await sg.close()


@pytest.fixture
def settings_cache(store_group: StoreGroup) -> SettingsCache:
    return SettingsCache(loader=store_group.settings_store.get_all, ttl_s=60)


@pytest.fixture
def effects() -> RecordingEffects:
    return RecordingEffects()


@pytest.fixture
def engine(
    store_group: StoreGroup,
    settings_cache: SettingsCache,
    effects: RecordingEffects,
) -> LifecycleEngine:
    return LifecycleEngine(store_group, settings_cache, effects=effects)


@pytest_asyncio.fixture
async def accounts(
    engine: LifecycleEngine,
    client_actor: Actor,
    other_client: Actor,
    freelancer_actor: Actor,
    other_freelancer: Actor,
    admin_actor: Actor,
) -> dict[str, Actor]:
    """创建两个委托方、两个已审核通过的设计师和一个管理员"""
    for actor in (client_actor, other_client, freelancer_actor, other_freelancer, admin_actor):
        await engine.upsert_account(
            actor.id, actor.role, email=f"{actor.id}@example.com", name=actor.id
        )
    for freelancer in (freelancer_actor, other_freelancer):
        await engine.set_freelancer_status(
            freelancer.id, FreelancerStatus.APPROVED, admin_actor
        )
    return {
        "client": client_actor,
        "other_client": other_client,
        "freelancer": freelancer_actor,
        "other_freelancer": other_freelancer,
        "admin": admin_actor,
    }


@pytest.fixture
def fund(engine: LifecycleEngine) -> Callable[[str, int], Awaitable[int]]:
    """通过 PURCHASE 给账户充值，返回充值后余额"""

    async def _fund(account_id: str, credits: int) -> int:
        result = await engine.record_purchase(account_id, credits, f"txn-{ULID()}")
        return result.balance

    return _fund


@pytest_asyncio.fixture
async def add_category(store_group: StoreGroup) -> Callable[[str, int], Awaitable[None]]:
    """插入自定义任务分类"""

    async def _add(slug: str, base_credits: int) -> None:
        async with store_group.unit_of_work() as conn:
            await conn.execute(
                "INSERT INTO task_categories (slug, name, base_credits, active) "
                "VALUES (?, ?, ?, 1)",
                (slug, slug.title(), base_credits),
            )

    return _add


def static_ad(title: str = "Spring launch banner") -> dict:
    return {"kind": "static-ads", "title": title, "dimensions": ["1080x1080"]}


@pytest.fixture
def requirements() -> Callable[..., dict]:
    return static_ad


@pytest.fixture
def in_review_task(
    engine: LifecycleEngine,
    accounts: dict[str, Actor],
    fund: Callable[[str, int], Awaitable[int]],
) -> Callable[[], Awaitable[Task]]:
    """创建任务并推进到 IN_REVIEW（static-ads，10 积分）"""

    async def _make() -> Task:
        client = accounts["client"]
        freelancer = accounts["freelancer"]
        await fund(client.id, 100)
        created = await engine.create_task(client, "static-ads", static_ad())
        task_id = created.task.task_id
        await engine.claim_task(task_id, freelancer)
        await engine.start_task(task_id, freelancer)
        result = await engine.submit_deliverable(
            task_id, freelancer, ["https://files.example.com/v1.png"]
        )
        return result.task

    return _make
