"""
自动下单结果日志模型模块

每次批处理对每个订阅的每次尝试写一行，只追加，不更新、不删除。
"""
from datetime import date, datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, Column, Date, Integer, String
from sqlmodel import Field, SQLModel

from app.core.snowflake import generate_id
from app.enums import AutoOrderStatus, FailureCategory, MealWindow

from .base import UTCDateTime, utc_now


class AutoOrderLog(SQLModel, table=True):
    """
    自动下单结果

    字段说明：
    - processed_date: 业务时区的日期
    - status: SUCCESS / SKIPPED / FAILED
    - failure_category: 失败或跳过的分类，成功时为空
    - reason: 可读原因（最长 500 字符）
    - context: 失败前已解析出的诊断信息，如
      {"address_id", "pincode", "zone_id", "zone_name", "kitchen_id",
       "kitchen_name", "menu_item_id", "menu_item_name", "vouchers_available"}
    - cron_run_id: 同一次批处理的所有行共享
    - processing_time_ms: 处理该订阅耗时
    """
    __tablename__ = "auto_order_logs"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    subscription_id: int = Field(sa_column=Column(BigInteger, index=True, nullable=False))
    user_id: int = Field(sa_column=Column(BigInteger, index=True, nullable=False))
    order_id: int | None = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    order_number: str | None = Field(default=None, max_length=32)
    meal_window: MealWindow = Field(sa_column=Column(String(8), nullable=False))
    processed_date: date = Field(sa_column=Column(Date, index=True, nullable=False))
    status: AutoOrderStatus = Field(sa_column=Column(String(8), nullable=False))
    failure_category: FailureCategory | None = Field(
        default=None, sa_column=Column(String(32), nullable=True)
    )
    reason: str | None = Field(default=None, sa_column=Column(String(500), nullable=True))
    context: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column(JSON, nullable=False)
    )
    cron_run_id: str = Field(sa_column=Column(String(64), index=True, nullable=False))
    processing_time_ms: int = Field(default=0, sa_column=Column(Integer, nullable=False))

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(UTCDateTime(), nullable=False),
    )
