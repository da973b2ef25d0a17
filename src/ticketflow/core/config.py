"""配置模块 -- 可通过环境变量覆盖

包含数据库路径、附件目录、过期扫描器参数等可配置项。
"""

import os
from pathlib import Path

import structlog
from pydantic import BaseModel, Field

log = structlog.get_logger()


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("TICKETFLOW_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "TICKETFLOW_DB_PATH",
        str(_get_base_dir() / "sqlite" / "ticketflow.db"),
    )


def get_attachments_dir() -> Path:
    """获取附件文件存储目录"""
    return Path(
        os.environ.get(
            "TICKETFLOW_ATTACHMENTS_DIR",
            str(_get_base_dir() / "attachments"),
        )
    )


# 任务编号前缀（TASK-YYYYMMDD-NNNN）
TASK_NUMBER_PREFIX: str = "TASK"

# 任务编号流水号最小位数
TASK_NUMBER_SEQ_WIDTH: int = 4

# 工时计算保留小数位
HOURS_PRECISION: int = 2


class SweeperConfig(BaseModel):
    """过期扫描器配置 -- 从环境变量加载

    环境变量:
        TICKETFLOW_SWEEP_INTERVAL_S: 扫描间隔（秒，默认 30）
        TICKETFLOW_SWEEP_ENABLED: 是否随应用启动扫描器（默认 true）
    """

    interval_s: float = Field(default=30.0, ge=1, description="扫描间隔（秒）")
    enabled: bool = Field(default=True, description="是否启用后台扫描")


def load_sweeper_config() -> SweeperConfig:
    """从环境变量加载扫描器配置

    非法值记录警告并回退默认值，不阻塞启动。
    """
    kwargs: dict = {}

    if val := os.environ.get("TICKETFLOW_SWEEP_INTERVAL_S"):
        try:
            interval = float(val)
            if interval < 1:
                raise ValueError(val)
            kwargs["interval_s"] = interval
        except ValueError:
            log.warning(
                "invalid_sweep_interval_config",
                env_var="TICKETFLOW_SWEEP_INTERVAL_S",
                value=val,
                fallback=30,
            )

    if val := os.environ.get("TICKETFLOW_SWEEP_ENABLED"):
        kwargs["enabled"] = val.strip().lower() not in ("0", "false", "no", "off")

    return SweeperConfig(**kwargs)
