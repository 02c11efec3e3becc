"""配置常量模块 -- 可通过环境变量覆盖

包含数据库路径、SSE 心跳、提交重试次数、平台设置默认值等可配置常量。
运行期可由管理员修改的设置（最大修改次数、低余额阈值）存放在
platform_settings 表中，通过 SettingsCache 读取，此处仅提供默认值。
"""

import os
from pathlib import Path


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("ATELIER_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "ATELIER_DB_PATH",
        str(_get_base_dir() / "sqlite" / "atelier.db"),
    )


def get_app_url() -> str:
    """获取前端访问地址（用于通知中的任务链接）"""
    return os.environ.get("ATELIER_APP_URL", "http://localhost:3000").rstrip("/")


def get_webhook_secret() -> str:
    """获取支付 webhook 签名密钥，空字符串表示不校验"""
    return os.environ.get("ATELIER_WEBHOOK_SECRET", "")


# SSE 心跳间隔（秒）
SSE_HEARTBEAT_INTERVAL: int = int(
    os.environ.get("ATELIER_SSE_HEARTBEAT_INTERVAL", "15")
)

# 原子提交遇到存储层错误（database is locked 等）时的最大尝试次数
COMMIT_MAX_ATTEMPTS: int = int(os.environ.get("ATELIER_COMMIT_MAX_ATTEMPTS", "3"))

# 平台设置缓存 TTL（秒）
SETTINGS_TTL_S: float = float(os.environ.get("ATELIER_SETTINGS_TTL_S", "60"))

# 平台设置默认值（platform_settings 表中无记录时使用）
DEFAULT_MAX_REVISIONS: int = int(
    os.environ.get("ATELIER_DEFAULT_MAX_REVISIONS", "2")
)
DEFAULT_LOW_BALANCE_THRESHOLD: int = int(
    os.environ.get("ATELIER_LOW_BALANCE_THRESHOLD", "20")
)

# 修改意见摘录长度（通知正文中截断）
FEEDBACK_EXCERPT_LENGTH: int = 100

# 默认任务分类目录（init_db 时写入，已存在则跳过）
DEFAULT_TASK_CATEGORIES: list[dict] = [
    {"slug": "static-ads", "name": "Static Ads", "base_credits": 10},
    {"slug": "video-motion", "name": "Video/Motion Graphics", "base_credits": 30},
    {"slug": "social-media", "name": "Social Media Content", "base_credits": 10},
    {"slug": "ui-ux", "name": "UI/UX Design", "base_credits": 50},
]
