"""
用户模型模块

账号注册、登录由外部认证服务负责，这里只保留订单流转需要的字段。
"""
from datetime import datetime

from sqlalchemy import BigInteger, Column, String
from sqlmodel import Field, SQLModel

from app.core.snowflake import generate_id
from app.enums import UserRole

from .base import UTCDateTime, utc_now


class User(SQLModel, table=True):
    """
    用户模型

    字段说明：
    - id: 主键（Snowflake），也是 JWT 的 sub
    - phone: 手机号（唯一）
    - name: 显示名
    - role: 角色（顾客 / 厨房员工 / 配送员 / 管理员）
    - kitchen_id: 厨房员工所属厨房，其他角色为空
    """
    __tablename__ = "users"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    phone: str = Field(
        sa_column=Column(String(20), unique=True, index=True, nullable=False),
    )
    name: str | None = Field(default=None, max_length=64)
    role: UserRole = Field(
        default=UserRole.CUSTOMER, sa_column=Column(String(16), nullable=False)
    )
    kitchen_id: int | None = Field(
        default=None, sa_column=Column(BigInteger, index=True, nullable=True)
    )

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(UTCDateTime(), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(UTCDateTime(), nullable=False),
    )
