"""
业务配置服务

截单时间、取消规则、自动下单策略组成一个不可变快照 BusinessConfig，
所有策略函数都以参数形式接收快照，不读全局状态。

ConfigProvider 负责加载和刷新快照：
- get(): 返回缓存的快照，首次调用时加载
- refresh(): 重新加载文件并替换快照（批处理每次运行前调用）

配置来源：BUSINESS_CONFIG_PATH 指定的 JSON 文件，未指定时使用
app/config/business_config.json；文件里没有的字段使用代码默认值。
"""
from __future__ import annotations

import json
import logging
from datetime import time
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.core.config import settings
from app.enums import MealWindow

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[1] / "config" / "business_config.json"


def parse_hhmm(value: str) -> time:
    """解析 HH:MM，格式不对时抛 ValueError"""
    hours, sep, minutes = value.partition(":")
    if not sep or not hours.isdigit() or not minutes.isdigit() or len(minutes) != 2:
        raise ValueError(f"Invalid time {value!r}, expected HH:MM")
    return time(int(hours), int(minutes))


def _validate_hhmm(value: str) -> str:
    parse_hhmm(value)
    return value


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class CutoffTimes(_Frozen):
    """各餐段的全局截单时间（业务时区 HH:MM）"""
    LUNCH: str = "11:00"
    DINNER: str = "21:00"

    @field_validator("LUNCH", "DINNER")
    @classmethod
    def check_times(cls, value: str) -> str:
        return _validate_hhmm(value)

    def for_window(self, meal_window: MealWindow | str) -> str:
        return getattr(self, MealWindow(meal_window).value)


class CancellationConfig(_Frozen):
    """
    取消规则

    - non_voucher_window_minutes: 非券订单下单后可取消的分钟数
    - allow_after_accepted: 非券订单被厨房接单后是否还能取消
    """
    non_voucher_window_minutes: int = Field(default=10, ge=0)
    allow_after_accepted: bool = False


class AutoOrderConfig(_Frozen):
    """
    自动下单策略

    - enabled: 总开关，关闭时批处理直接返回
    - auto_accept_orders: 券订单创建后自动接单，不需要厨房手动确认
    - lunch_cron_time / dinner_cron_time: 批处理触发时间（业务时区）
    """
    enabled: bool = True
    auto_accept_orders: bool = True
    lunch_cron_time: str = "10:00"
    dinner_cron_time: str = "19:00"

    @field_validator("lunch_cron_time", "dinner_cron_time")
    @classmethod
    def check_cron_times(cls, value: str) -> str:
        return _validate_hhmm(value)

    def cron_time_for(self, meal_window: MealWindow | str) -> str:
        if MealWindow(meal_window) == MealWindow.LUNCH:
            return self.lunch_cron_time
        return self.dinner_cron_time


class BusinessConfig(_Frozen):
    """业务配置快照（只读）"""
    timezone: str = Field(default_factory=lambda: settings.BUSINESS_TIMEZONE)
    cutoff_times: CutoffTimes = Field(default_factory=CutoffTimes)
    cancellation: CancellationConfig = Field(default_factory=CancellationConfig)
    auto_order: AutoOrderConfig = Field(default_factory=AutoOrderConfig)

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone {value!r}") from exc
        return value

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def load_business_config(path: str | Path | None = None) -> BusinessConfig:
    """
    从 JSON 文件加载业务配置

    文件不存在时使用默认值；文件内容非法（JSON 错误、时间格式错误）直接抛异常，
    不静默回退，避免带着错误的截单时间运行。
    """
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    if not config_path.exists():
        logger.warning("Business config %s not found, using defaults", config_path)
        return BusinessConfig()
    raw: dict[str, Any] = json.loads(config_path.read_text(encoding="utf-8"))
    return BusinessConfig.model_validate(raw)


class ConfigProvider:
    """业务配置快照的持有者，显式构造，可注入"""

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = path
        self._lock = Lock()
        self._config: BusinessConfig | None = None

    def get(self) -> BusinessConfig:
        with self._lock:
            if self._config is None:
                self._config = load_business_config(self._path)
            return self._config

    def refresh(self) -> BusinessConfig:
        config = load_business_config(self._path)
        with self._lock:
            self._config = config
        logger.info(
            "Business config refreshed: cutoff LUNCH=%s DINNER=%s auto_accept=%s",
            config.cutoff_times.LUNCH,
            config.cutoff_times.DINNER,
            config.auto_order.auto_accept_orders,
        )
        return config


@lru_cache(maxsize=1)
def get_config_provider() -> ConfigProvider:
    """进程内共享的配置提供者（API 依赖和 worker 使用）"""
    return ConfigProvider(settings.BUSINESS_CONFIG_PATH)
