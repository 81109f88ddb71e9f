"""
配送区域与地址模型模块

区域按邮编划分；地址上的 zone_id 可能为空，此时按 pincode 反查区域。
"""
from datetime import datetime

from sqlalchemy import BigInteger, Column, ForeignKey, String
from sqlmodel import Field, SQLModel

from app.core.snowflake import generate_id
from app.enums import ZoneStatus

from .base import UTCDateTime, utc_now


class Zone(SQLModel, table=True):
    """
    配送区域

    可配送 = status 为 ACTIVE 且 ordering_enabled。
    """
    __tablename__ = "zones"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    pincode: str = Field(
        sa_column=Column(String(10), unique=True, index=True, nullable=False)
    )
    name: str = Field(max_length=64)
    city: str | None = Field(default=None, max_length=64)
    status: ZoneStatus = Field(
        default=ZoneStatus.ACTIVE, sa_column=Column(String(16), nullable=False)
    )
    ordering_enabled: bool = Field(default=True)

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(UTCDateTime(), nullable=False),
    )


class CustomerAddress(SQLModel, table=True):
    """
    顾客收货地址

    删除是软删除（is_deleted），历史订单保留地址快照。
    """
    __tablename__ = "customer_addresses"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    user_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    label: str | None = Field(default=None, max_length=32)
    address_line: str = Field(max_length=255)
    locality: str | None = Field(default=None, max_length=128)
    city: str | None = Field(default=None, max_length=64)
    pincode: str = Field(max_length=10)
    zone_id: int | None = Field(
        default=None, sa_column=Column(BigInteger, nullable=True)
    )
    is_default: bool = Field(default=False)
    is_deleted: bool = Field(default=False)

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(UTCDateTime(), nullable=False),
    )
