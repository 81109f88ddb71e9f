"""
订阅模型模块

订阅激活时按套餐发放一批券（见 app.crud.vouchers.issue_vouchers）。
"""
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, CheckConstraint, Column, ForeignKey, Integer, String
from sqlmodel import Field, SQLModel

from app.core.snowflake import generate_id
from app.enums import DefaultMealType, SubscriptionStatus

from .base import UTCDateTime, utc_now


class Subscription(SQLModel, table=True):
    """
    订阅模型

    字段说明：
    - total_vouchers_issued: 已发券总数
    - vouchers_used: 当前处于 REDEEMED 状态的券数量（冗余计数）
      只能由券账本在同一事务里随券状态一起修改，其他代码不要直接写
    - voucher_expiry_date: 本订阅券的统一过期时间
    - auto_ordering_enabled: 是否开启自动下单
    - is_paused / paused_until: 暂停自动下单；paused_until 为空表示无限期暂停
    - skipped_slots: 用户主动跳过的餐段，元素格式
      {"date": "YYYY-MM-DD", "meal_window": "LUNCH", "reason": "...", "skipped_at": "..."}
    - default_meal_type: 自动下单的餐段偏好
    - default_kitchen_id / default_address_id: 自动下单的默认厨房和地址
    """
    __tablename__ = "subscriptions"
    __table_args__ = (
        CheckConstraint(
            "vouchers_used >= 0 AND vouchers_used <= total_vouchers_issued",
            name="ck_subscriptions_vouchers_used",
        ),
    )
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    user_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    plan_name: str | None = Field(default=None, max_length=64)
    status: SubscriptionStatus = Field(
        default=SubscriptionStatus.ACTIVE, sa_column=Column(String(16), index=True, nullable=False)
    )

    total_vouchers_issued: int = Field(
        default=0, sa_column=Column(Integer, nullable=False, default=0)
    )
    vouchers_used: int = Field(
        default=0, sa_column=Column(Integer, nullable=False, default=0)
    )
    voucher_expiry_date: datetime = Field(
        sa_column=Column(UTCDateTime(), nullable=False)
    )

    auto_ordering_enabled: bool = Field(default=False)
    is_paused: bool = Field(default=False)
    paused_until: datetime | None = Field(
        default=None, sa_column=Column(UTCDateTime(), nullable=True)
    )
    skipped_slots: list[dict[str, Any]] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )
    default_meal_type: DefaultMealType = Field(
        default=DefaultMealType.BOTH, sa_column=Column(String(8), nullable=False)
    )
    default_kitchen_id: int | None = Field(
        default=None, sa_column=Column(BigInteger, nullable=True)
    )
    default_address_id: int | None = Field(
        default=None, sa_column=Column(BigInteger, nullable=True)
    )

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(UTCDateTime(), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(UTCDateTime(), nullable=False),
    )
