"""
订单模型模块

订单状态只能通过 app.services.order_state.transition 修改，
每次变更在 order_status_events 追加一条记录（时间线，只追加不修改）。
"""
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, BigInteger, Column, ForeignKey, Integer, Numeric, String
from sqlmodel import Field, SQLModel

from app.core.snowflake import generate_id
from app.enums import (
    MealWindow,
    MenuType,
    OrderActor,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)

from .base import UTCDateTime, utc_now


class Order(SQLModel, table=True):
    """
    订单模型

    字段说明：
    - order_number: 订单号（ORD-YYYYMMDD-XXXXX，唯一）
    - delivery_address: 下单时的地址快照
    - items: 菜品快照，元素格式
      {"menu_item_id", "name", "category", "quantity", "unit_price", "total_price"}
    - voucher_ids / voucher_count / main_courses_covered: 下单时绑定的券，创建后不再修改
    - subtotal / grand_total / amount_paid: 金额，与券使用相互独立
      （纯券订单 amount_paid = 0）
    - payment_status / payment_method: 支付状态和方式
    - status: 订单状态
    - *_at: 各状态的时间戳
    - cancelled_by: 取消发起方
    - is_auto_order: 是否由自动下单批处理创建
    """
    __tablename__ = "orders"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    order_number: str = Field(
        sa_column=Column(String(32), unique=True, index=True, nullable=False)
    )
    user_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    kitchen_id: int = Field(
        sa_column=Column(BigInteger, ForeignKey("kitchens.id"), index=True, nullable=False)
    )
    zone_id: int | None = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    subscription_id: int | None = Field(
        default=None, sa_column=Column(BigInteger, nullable=True)
    )
    delivery_address_id: int | None = Field(
        default=None, sa_column=Column(BigInteger, nullable=True)
    )
    delivery_address: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column(JSON, nullable=False)
    )

    menu_type: MenuType = Field(
        default=MenuType.MEAL_MENU, sa_column=Column(String(16), nullable=False)
    )
    meal_window: MealWindow | None = Field(
        default=None, sa_column=Column(String(8), nullable=True)
    )
    items: list[dict[str, Any]] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )

    voucher_ids: list[int] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )
    voucher_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    main_courses_covered: int = Field(
        default=0, sa_column=Column(Integer, nullable=False, default=0)
    )

    subtotal: Decimal = Field(
        default=Decimal("0.00"), sa_column=Column(Numeric(10, 2), nullable=False)
    )
    grand_total: Decimal = Field(
        default=Decimal("0.00"), sa_column=Column(Numeric(10, 2), nullable=False)
    )
    amount_paid: Decimal = Field(
        default=Decimal("0.00"), sa_column=Column(Numeric(10, 2), nullable=False)
    )
    payment_status: PaymentStatus = Field(
        default=PaymentStatus.PENDING, sa_column=Column(String(24), nullable=False)
    )
    payment_method: PaymentMethod | None = Field(
        default=None, sa_column=Column(String(16), nullable=True)
    )

    status: OrderStatus = Field(
        default=OrderStatus.PLACED, sa_column=Column(String(20), index=True, nullable=False)
    )
    placed_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(UTCDateTime(), nullable=False),
    )
    accepted_at: datetime | None = Field(
        default=None, sa_column=Column(UTCDateTime(), nullable=True)
    )
    rejected_at: datetime | None = Field(
        default=None, sa_column=Column(UTCDateTime(), nullable=True)
    )
    cancelled_at: datetime | None = Field(
        default=None, sa_column=Column(UTCDateTime(), nullable=True)
    )
    prepared_at: datetime | None = Field(
        default=None, sa_column=Column(UTCDateTime(), nullable=True)
    )
    picked_up_at: datetime | None = Field(
        default=None, sa_column=Column(UTCDateTime(), nullable=True)
    )
    delivered_at: datetime | None = Field(
        default=None, sa_column=Column(UTCDateTime(), nullable=True)
    )

    rejection_reason: str | None = Field(default=None, max_length=255)
    cancellation_reason: str | None = Field(default=None, max_length=255)
    cancelled_by: OrderActor | None = Field(
        default=None, sa_column=Column(String(16), nullable=True)
    )
    is_auto_order: bool = Field(default=False)

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(UTCDateTime(), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(UTCDateTime(), nullable=False),
    )


class OrderStatusEvent(SQLModel, table=True):
    """
    订单状态时间线

    每次状态变更追加一行，按 (created_at, id) 排序即为完整审计轨迹。
    """
    __tablename__ = "order_status_events"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    order_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("orders.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    status: OrderStatus = Field(sa_column=Column(String(20), nullable=False))
    actor: OrderActor = Field(sa_column=Column(String(16), nullable=False))
    actor_id: int | None = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    notes: str | None = Field(default=None, max_length=500)
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(UTCDateTime(), nullable=False),
    )
