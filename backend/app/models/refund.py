"""
退款意向模型模块

本服务只写入 PENDING 的退款意向，实际退款由外部支付服务消费执行。
"""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, Column, ForeignKey, Numeric, String
from sqlmodel import Field, SQLModel

from app.core.snowflake import generate_id
from app.enums import OrderActor, RefundStatus

from .base import UTCDateTime, utc_now


class Refund(SQLModel, table=True):
    """退款意向（订单取消或拒单且已实际付款时产生）"""
    __tablename__ = "refunds"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    order_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("orders.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    user_id: int = Field(sa_column=Column(BigInteger, index=True, nullable=False))
    amount: Decimal = Field(sa_column=Column(Numeric(10, 2), nullable=False))
    reason: str = Field(max_length=255)
    status: RefundStatus = Field(
        default=RefundStatus.PENDING, sa_column=Column(String(16), nullable=False)
    )
    initiated_by: OrderActor = Field(sa_column=Column(String(16), nullable=False))

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(UTCDateTime(), nullable=False),
    )
