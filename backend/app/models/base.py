"""
基础模型模块

定义所有模型共用的基础类和工具函数。
"""
from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator
from sqlmodel import SQLModel


def utc_now() -> datetime:
    """
    获取当前 UTC 时间

    Returns:
        当前 UTC 时区的日期时间对象
    """
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    始终以 UTC 存取的时间列

    PostgreSQL 的 timestamptz 会保留时区，但 SQLite 会丢掉 tzinfo，
    读回来变成 naive datetime，和 aware 的 now 比较时直接报错。
    写入时统一转成 UTC，读出时补回 UTC。
    """
    impl = DateTime
    cache_ok = True

    def __init__(self) -> None:
        super().__init__(timezone=True)

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


# 导出 SQLModel 供其他模块使用
__all__ = ["SQLModel", "UTCDateTime", "utc_now"]
