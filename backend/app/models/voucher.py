"""
券模型模块

一张券 = 一份主菜的预付权益。状态流转：
AVAILABLE/RESTORED -> REDEEMED（下单核销）
REDEEMED -> RESTORED（取消/拒单/支付失败退回）

状态和核销/退回归属字段只能由 app.crud.vouchers 整体修改。
"""
from datetime import datetime

from sqlalchemy import BigInteger, Column, ForeignKey, Index, String
from sqlmodel import Field, SQLModel

from app.core.snowflake import generate_id
from app.enums import MealWindow, RestorationReason, VoucherMealType, VoucherStatus

from .base import UTCDateTime, utc_now


class Voucher(SQLModel, table=True):
    """
    券模型

    字段说明：
    - code: 券码（VCH-XXXXX-XXXXX，唯一）
    - subscription_id / user_id: 所属订阅和用户
    - meal_type: 可用餐段（ANY / LUNCH / DINNER）
    - status: 券状态
    - expiry_date: 过期时间，过期后无论状态如何都不可花费
    - redeemed_*: 核销归属，只在 REDEEMED 状态下有值
    - restored_at / restoration_reason: 最近一次退回的时间和原因
    """
    __tablename__ = "vouchers"
    __table_args__ = (
        # 核销查询：按用户 + 状态筛选，再按过期时间 FIFO
        Index("ix_vouchers_user_status_expiry", "user_id", "status", "expiry_date"),
    )
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    code: str = Field(
        sa_column=Column(String(20), unique=True, index=True, nullable=False)
    )
    subscription_id: int = Field(
        sa_column=Column(
            BigInteger,
            ForeignKey("subscriptions.id", ondelete="CASCADE"),
            index=True,
            nullable=False,
        )
    )
    user_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    meal_type: VoucherMealType = Field(
        default=VoucherMealType.ANY, sa_column=Column(String(8), nullable=False)
    )
    status: VoucherStatus = Field(
        default=VoucherStatus.AVAILABLE, sa_column=Column(String(16), nullable=False)
    )
    expiry_date: datetime = Field(sa_column=Column(UTCDateTime(), nullable=False))

    redeemed_at: datetime | None = Field(
        default=None, sa_column=Column(UTCDateTime(), nullable=True)
    )
    redeemed_order_id: int | None = Field(
        default=None, sa_column=Column(BigInteger, index=True, nullable=True)
    )
    redeemed_kitchen_id: int | None = Field(
        default=None, sa_column=Column(BigInteger, nullable=True)
    )
    redeemed_meal_window: MealWindow | None = Field(
        default=None, sa_column=Column(String(8), nullable=True)
    )

    restored_at: datetime | None = Field(
        default=None, sa_column=Column(UTCDateTime(), nullable=True)
    )
    restoration_reason: RestorationReason | None = Field(
        default=None, sa_column=Column(String(32), nullable=True)
    )

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(UTCDateTime(), nullable=False),
    )
