"""
厨房与菜品模型模块

厨房的增删改由后台管理服务负责，这里只定义下单和自动下单要读的字段。
"""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, Column, ForeignKey, Numeric, String
from sqlmodel import Field, SQLModel

from app.core.snowflake import generate_id
from app.enums import KitchenStatus, MealWindow, MenuItemCategory, MenuType

from .base import UTCDateTime, utc_now


class Kitchen(SQLModel, table=True):
    """
    厨房

    字段说明：
    - status / is_accepting_orders: 只有 ACTIVE 且正在接单的厨房能接新订单
    - lunch_* / dinner_*: 各餐段营业时间（HH:MM，业务时区）
      餐段结束时间同时作为该厨房的截单时间，为空时用全局截单时间
    """
    __tablename__ = "kitchens"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    name: str = Field(max_length=128)
    status: KitchenStatus = Field(
        default=KitchenStatus.ACTIVE, sa_column=Column(String(16), nullable=False)
    )
    is_accepting_orders: bool = Field(default=True)

    lunch_start_time: str | None = Field(default=None, max_length=5)
    lunch_end_time: str | None = Field(default=None, max_length=5)
    dinner_start_time: str | None = Field(default=None, max_length=5)
    dinner_end_time: str | None = Field(default=None, max_length=5)

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(UTCDateTime(), nullable=False),
    )


class KitchenZone(SQLModel, table=True):
    """厨房配送覆盖的区域（多对多）"""
    __tablename__ = "kitchen_zones"
    kitchen_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("kitchens.id", ondelete="CASCADE"), primary_key=True
        )
    )
    zone_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("zones.id", ondelete="CASCADE"), primary_key=True
        )
    )


class MenuItem(SQLModel, table=True):
    """
    菜品

    - menu_type 为 MEAL_MENU 的菜品属于某个餐段（meal_window），可以用券
    - category 为 MAIN_COURSE 的菜品每份可被一张券覆盖
    """
    __tablename__ = "menu_items"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    kitchen_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("kitchens.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    name: str = Field(max_length=128)
    category: MenuItemCategory = Field(
        default=MenuItemCategory.MAIN_COURSE, sa_column=Column(String(16), nullable=False)
    )
    menu_type: MenuType = Field(
        default=MenuType.MEAL_MENU, sa_column=Column(String(16), nullable=False)
    )
    meal_window: MealWindow | None = Field(
        default=None, sa_column=Column(String(8), nullable=True)
    )
    price: Decimal = Field(
        default=Decimal("0.00"), sa_column=Column(Numeric(10, 2), nullable=False)
    )
    discounted_price: Decimal | None = Field(
        default=None, sa_column=Column(Numeric(10, 2), nullable=True)
    )
    is_available: bool = Field(default=True)

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(UTCDateTime(), nullable=False),
    )
