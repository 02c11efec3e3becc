"""SQLite 数据库初始化

PRAGMA 配置 + 表 DDL + 索引创建 + 默认分类目录写入。
使用 aiosqlite 异步操作。
"""

import aiosqlite

from ..config import DEFAULT_TASK_CATEGORIES

# accounts 表 DDL（balance 为账本汇总缓存）
_ACCOUNTS_DDL = """
CREATE TABLE IF NOT EXISTS accounts (
    account_id     TEXT PRIMARY KEY,
    role           TEXT NOT NULL,
    email          TEXT NOT NULL DEFAULT '',
    name           TEXT NOT NULL DEFAULT '',
    email_enabled  INTEGER NOT NULL DEFAULT 1,
    balance        INTEGER NOT NULL DEFAULT 0,
    created_at     TEXT NOT NULL,
    updated_at     TEXT NOT NULL
);
"""

_FREELANCER_PROFILES_DDL = """
CREATE TABLE IF NOT EXISTS freelancer_profiles (
    account_id  TEXT PRIMARY KEY,
    status      TEXT NOT NULL DEFAULT 'PENDING',
    available   INTEGER NOT NULL DEFAULT 1,
    updated_at  TEXT NOT NULL,

    FOREIGN KEY (account_id) REFERENCES accounts(account_id) ON DELETE CASCADE
);
"""

_TASK_CATEGORIES_DDL = """
CREATE TABLE IF NOT EXISTS task_categories (
    slug          TEXT PRIMARY KEY,
    name          TEXT NOT NULL,
    base_credits  INTEGER NOT NULL,
    active        INTEGER NOT NULL DEFAULT 1
);
"""

# tasks 表 DDL
_TASKS_DDL = """
CREATE TABLE IF NOT EXISTS tasks (
    task_id            TEXT PRIMARY KEY,
    client_id          TEXT NOT NULL,
    freelancer_id      TEXT,
    category           TEXT NOT NULL,
    status             TEXT NOT NULL DEFAULT 'PENDING',
    credits_committed  INTEGER NOT NULL DEFAULT 0,
    revisions_used     INTEGER NOT NULL DEFAULT 0,
    max_revisions      INTEGER NOT NULL DEFAULT 2,
    requirements       TEXT NOT NULL DEFAULT '{}',
    deliverables       TEXT NOT NULL DEFAULT '[]',
    version            INTEGER NOT NULL DEFAULT 1,
    created_at         TEXT NOT NULL,
    updated_at         TEXT NOT NULL,
    assigned_at        TEXT,
    completed_at       TEXT,

    CHECK (revisions_used <= max_revisions),
    FOREIGN KEY (client_id) REFERENCES accounts(account_id),
    FOREIGN KEY (freelancer_id) REFERENCES accounts(account_id)
);
"""

_TASKS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_client_id ON tasks(client_id);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_freelancer_id ON tasks(freelancer_id);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_created_at ON tasks(created_at DESC);",
]

# task_events 表 DDL（append-only，同时作为副作用 outbox）
_TASK_EVENTS_DDL = """
CREATE TABLE IF NOT EXISTS task_events (
    event_id         TEXT PRIMARY KEY,
    task_id          TEXT NOT NULL,
    task_seq         INTEGER NOT NULL,
    ts               TEXT NOT NULL,
    type             TEXT NOT NULL,
    from_status      TEXT,
    to_status        TEXT NOT NULL,
    actor_id         TEXT NOT NULL,
    actor_role       TEXT NOT NULL,
    payload          TEXT NOT NULL DEFAULT '{}',
    idempotency_key  TEXT,
    dispatched_at    TEXT,

    FOREIGN KEY (task_id) REFERENCES tasks(task_id) ON DELETE CASCADE
);
"""

_TASK_EVENTS_INDEXES = [
    # 任务内事件序号唯一约束（确保 task_seq 严格单调递增）
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_task_events_task_seq ON task_events(task_id, task_seq);",
    # 幂等键唯一约束（仅对非 NULL 值生效）
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_task_events_idempotency_key "
        "ON task_events(idempotency_key) WHERE idempotency_key IS NOT NULL;"
    ),
    # outbox 扫描
    (
        "CREATE INDEX IF NOT EXISTS idx_task_events_undispatched "
        "ON task_events(dispatched_at) WHERE dispatched_at IS NULL;"
    ),
]

# ledger_entries 表 DDL（append-only；task_id 不设外键，清除任务后分录保留）
_LEDGER_DDL = """
CREATE TABLE IF NOT EXISTS ledger_entries (
    seq            INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id       TEXT NOT NULL UNIQUE,
    account_id     TEXT NOT NULL,
    amount         INTEGER NOT NULL,
    kind           TEXT NOT NULL,
    task_id        TEXT,
    external_ref   TEXT,
    description    TEXT NOT NULL DEFAULT '',
    balance_after  INTEGER NOT NULL,
    created_at     TEXT NOT NULL,

    FOREIGN KEY (account_id) REFERENCES accounts(account_id)
);
"""

_LEDGER_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_ledger_account ON ledger_entries(account_id, seq);",
    "CREATE INDEX IF NOT EXISTS idx_ledger_task ON ledger_entries(task_id);",
    # 支付方交易号作为 PURCHASE 幂等键
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_ledger_external_ref "
        "ON ledger_entries(kind, external_ref) WHERE external_ref IS NOT NULL;"
    ),
]

_NOTIFICATIONS_DDL = """
CREATE TABLE IF NOT EXISTS notifications (
    seq              INTEGER PRIMARY KEY AUTOINCREMENT,
    notification_id  TEXT NOT NULL UNIQUE,
    recipient_id     TEXT NOT NULL,
    kind             TEXT NOT NULL,
    payload          TEXT NOT NULL DEFAULT '{}',
    source_key       TEXT NOT NULL,
    task_id          TEXT,
    created_at       TEXT NOT NULL,
    read_at          TEXT,

    FOREIGN KEY (recipient_id) REFERENCES accounts(account_id) ON DELETE CASCADE,
    FOREIGN KEY (task_id) REFERENCES tasks(task_id) ON DELETE CASCADE
);
"""

_NOTIFICATIONS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_notifications_recipient ON notifications(recipient_id, seq);",
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_notifications_source "
        "ON notifications(source_key, recipient_id, kind);"
    ),
]

_DELIVERIES_DDL = """
CREATE TABLE IF NOT EXISTS deliveries (
    dedupe_key       TEXT PRIMARY KEY,
    notification_id  TEXT,
    task_id          TEXT,
    recipient_id     TEXT NOT NULL,
    channel          TEXT NOT NULL,
    status           TEXT NOT NULL DEFAULT 'PENDING',
    attempts         INTEGER NOT NULL DEFAULT 0,
    last_error       TEXT NOT NULL DEFAULT '',
    updated_at       TEXT NOT NULL
);
"""

_DELIVERIES_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_deliveries_task ON deliveries(task_id);",
]

_PLATFORM_SETTINGS_DDL = """
CREATE TABLE IF NOT EXISTS platform_settings (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);
"""

_AUDIT_LOG_DDL = """
CREATE TABLE IF NOT EXISTS audit_log (
    audit_id     TEXT PRIMARY KEY,
    ts           TEXT NOT NULL,
    actor_id     TEXT NOT NULL,
    action       TEXT NOT NULL,
    target_type  TEXT NOT NULL,
    target_id    TEXT NOT NULL,
    details      TEXT NOT NULL DEFAULT '{}'
);
"""


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引 + 写入默认分类

    Args:
        conn: aiosqlite 数据库连接
    """
    # 设置 PRAGMA
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA foreign_keys = ON;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    # 创建表
    for ddl in (
        _ACCOUNTS_DDL,
        _FREELANCER_PROFILES_DDL,
        _TASK_CATEGORIES_DDL,
        _TASKS_DDL,
        _TASK_EVENTS_DDL,
        _LEDGER_DDL,
        _NOTIFICATIONS_DDL,
        _DELIVERIES_DDL,
        _PLATFORM_SETTINGS_DDL,
        _AUDIT_LOG_DDL,
    ):
        await conn.execute(ddl)

    # 创建索引
    for idx_sql in (
        _TASKS_INDEXES
        + _TASK_EVENTS_INDEXES
        + _LEDGER_INDEXES
        + _NOTIFICATIONS_INDEXES
        + _DELIVERIES_INDEXES
    ):
        await conn.execute(idx_sql)

    # 默认分类目录
    for category in DEFAULT_TASK_CATEGORIES:
        await conn.execute(
            """
            INSERT OR IGNORE INTO task_categories (slug, name, base_credits, active)
            VALUES (?, ?, ?, 1)
            """,
            (category["slug"], category["name"], category["base_credits"]),
        )

    await conn.commit()


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效

    Returns:
        True 如果 WAL 模式已启用
    """
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"
