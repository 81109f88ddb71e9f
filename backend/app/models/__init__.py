"""
数据库模型定义模块

本模块使用 SQLModel 定义所有数据库表结构。

模型按功能拆分：
- user.py: 用户
- subscription.py: 订阅（券的冗余使用计数、自动下单偏好）
- voucher.py: 券
- zone.py: 配送区域、收货地址
- kitchen.py: 厨房、厨房覆盖区域、菜品
- order.py: 订单、订单状态时间线
- auto_order_log.py: 自动下单结果日志
- refund.py: 退款意向
"""
from sqlmodel import SQLModel

from .auto_order_log import AutoOrderLog
from .base import UTCDateTime, utc_now
from .kitchen import Kitchen, KitchenZone, MenuItem
from .order import Order, OrderStatusEvent
from .refund import Refund
from .subscription import Subscription
from .user import User
from .voucher import Voucher
from .zone import CustomerAddress, Zone

__all__ = [
    "SQLModel",
    "UTCDateTime",
    "utc_now",
    "User",
    "Subscription",
    "Voucher",
    "Zone",
    "CustomerAddress",
    "Kitchen",
    "KitchenZone",
    "MenuItem",
    "Order",
    "OrderStatusEvent",
    "AutoOrderLog",
    "Refund",
]
