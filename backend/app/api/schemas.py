"""
API 请求/响应数据模型（Schema）

定义所有 API 接口的请求和响应数据结构。
使用 Pydantic 进行数据验证和序列化。

关键概念：
- BaseModel: Pydantic 的模型基类，用于数据验证
- Field: 字段验证器，定义字段的约束（长度、范围等）
- 这些模型不是数据库表，只用于 API 数据交换
- 雪花 ID 超出 JS 安全整数范围，对外统一序列化为字符串
"""
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal  # 精确数值类型，用于金额
from typing import Annotated, Any, Literal  # 任意类型

from pydantic import BaseModel, Field, PlainSerializer  # Pydantic 核心类

from app.enums import (
    AutoOrderStatus,  # 自动下单结果枚举
    FailureCategory,  # 自动下单失败分类
    MealWindow,  # 餐段枚举
    MenuType,  # 菜单类型枚举
    OrderActor,  # 状态变更发起方
    OrderStatus,  # 订单状态枚举
    PaymentMethod,  # 支付方式枚举
    PaymentStatus,  # 支付状态枚举
    SubscriptionStatus,  # 订阅状态枚举
)

# 雪花 ID：入参接受数字或数字字符串，出参为字符串
SnowflakeId = Annotated[int, PlainSerializer(lambda v: str(v), return_type=str, when_used="json")]

# ============================================================
# 通用响应模型
# ============================================================


class TokenPayload(BaseModel):
    """
    JWT Token 载荷模型

    sub (subject) 存储用户 ID。
    """
    sub: str | None = None


class ApiEnvelope(BaseModel):
    """
    API 统一响应格式

    所有 API 响应都使用这个格式，包含：
    - code: 状态码（0 表示成功，非 0 表示错误）
    - message: 消息（成功时为 "success"，错误时为错误描述）
    - data: 数据（成功时返回业务数据，错误时为 None）

    示例响应：
        {"code": 0, "message": "success", "data": {...}}
        {"code": 409001, "message": "Only 1 vouchers available, 2 requested", "data": None}
    """
    code: int = 0  # 默认成功
    message: str = "success"  # 默认成功消息
    data: Any | None = None  # 业务数据（可选）


# ============================================================
# 订单
# ============================================================


class OrderItemRequest(BaseModel):
    """下单菜品"""
    menu_item_id: int
    quantity: int = Field(default=1, ge=1, le=20)


class OrderCreateRequest(BaseModel):
    """
    下单请求模型

    餐段菜单订单必须带 meal_window，可以用券（voucher_count）覆盖主菜；
    随点菜单订单不能用券。
    """
    kitchen_id: int
    delivery_address_id: int
    menu_type: MenuType = MenuType.MEAL_MENU
    meal_window: MealWindow | None = None
    items: list[OrderItemRequest] = Field(min_length=1, max_length=20)
    voucher_count: int = Field(default=0, ge=0, le=10)
    payment_method: PaymentMethod | None = None


class OrderData(BaseModel):
    """订单数据模型"""
    id: SnowflakeId
    order_number: str
    user_id: SnowflakeId
    kitchen_id: SnowflakeId
    menu_type: MenuType
    meal_window: MealWindow | None = None
    status: OrderStatus
    items: list[dict[str, Any]] = []
    delivery_address: dict[str, Any] = {}
    voucher_count: int
    main_courses_covered: int
    subtotal: Decimal
    grand_total: Decimal
    amount_paid: Decimal
    payment_status: PaymentStatus
    payment_method: PaymentMethod | None = None
    is_auto_order: bool
    rejection_reason: str | None = None
    cancellation_reason: str | None = None
    placed_at: datetime | None = None
    accepted_at: datetime | None = None
    cancelled_at: datetime | None = None
    delivered_at: datetime | None = None


class OrderStatusEventData(BaseModel):
    """订单时间线记录"""
    status: OrderStatus
    actor: OrderActor
    actor_id: SnowflakeId | None = None
    notes: str | None = None
    created_at: datetime


class OrderDetailData(BaseModel):
    """订单详情（含状态时间线）"""
    order: OrderData
    timeline: list[OrderStatusEventData]


class CancelOrderRequest(BaseModel):
    """顾客取消请求，原因可选"""
    reason: str | None = Field(default=None, max_length=255)


class OrderReasonRequest(BaseModel):
    """厨房拒单 / 厨房取消，必须填写原因"""
    reason: str = Field(min_length=1, max_length=255)


class AdminCancelRequest(BaseModel):
    """
    管理员取消请求

    restore_vouchers 为强制退券：已过期的券也会退回（过期时间不变）。
    """
    reason: str = Field(min_length=1, max_length=255)
    issue_refund: bool = True
    restore_vouchers: bool = True


class OrderStatusUpdateRequest(BaseModel):
    """推进订单状态（取消、拒单有专门接口）"""
    status: OrderStatus
    notes: str | None = Field(default=None, max_length=255)


class CancellationData(BaseModel):
    """取消结果"""
    order: OrderData
    vouchers_restored: int
    refund_initiated: bool
    voucher_warning: str | None = None
    message: str | None = None


class CancellationEligibilityData(BaseModel):
    """取消资格预检"""
    can_cancel: bool
    should_restore_vouchers: bool
    reason: str
    warning: str | None = None
    remaining_minutes: int | None = None


# ============================================================
# 券
# ============================================================


class VoucherBalanceData(BaseModel):
    """
    券余额汇总

    balance: 按状态计数 + usable；expiring_next: 最早过期的可用券（没有时为空）
    """
    balance: dict[str, int]
    expiring_next: dict[str, Any] | None = None


class VoucherAvailabilityData(BaseModel):
    """可用券数量"""
    meal_window: MealWindow | None = None
    available: int
    requested: int | None = None
    has_enough: bool | None = None


class OperatingHoursData(BaseModel):
    """餐段营业时间（厨房备餐时段，首尾包含）"""
    is_within_operating_hours: bool
    start_time: str | None = None
    end_time: str | None = None
    message: str


class CutoffData(BaseModel):
    """
    餐段截单信息（时间均为业务时区 HH:MM）

    operating_hours 只在餐段有效时返回；传了 kitchen_id 时按该厨房的时间计算。
    """
    meal_window: str
    is_past_cutoff: bool
    cutoff_time: str | None = None
    current_time: str | None = None
    message: str
    operating_hours: OperatingHoursData | None = None


# ============================================================
# 支付结果回调
# ============================================================


class PaymentResultRequest(BaseModel):
    """
    支付结果回调

    entity_type 区分订单支付和订阅支付；网关交互由外部支付服务负责，
    这里只接收最终结果。
    """
    entity_type: Literal["ORDER", "SUBSCRIPTION"]
    entity_id: int
    payment_status: PaymentStatus


class SubscriptionData(BaseModel):
    """订阅数据模型"""
    id: SnowflakeId
    user_id: SnowflakeId
    plan_name: str | None = None
    status: SubscriptionStatus
    total_vouchers_issued: int
    vouchers_used: int
    voucher_expiry_date: datetime


# ============================================================
# 自动下单（管理员）
# ============================================================


class AutoOrderRunRequest(BaseModel):
    """手动触发一次自动下单"""
    meal_window: MealWindow
    dry_run: bool = False


class AutoOrderOutcomeData(BaseModel):
    """单个订阅的处理结果"""
    subscription_id: SnowflakeId
    user_id: SnowflakeId
    status: AutoOrderStatus
    failure_category: FailureCategory | None = None
    reason: str | None = None
    order_id: SnowflakeId | None = None
    order_number: str | None = None
    context: dict[str, Any] = {}


class AutoOrderRunData(BaseModel):
    """一次批处理的执行统计"""
    cron_run_id: str
    meal_window: MealWindow
    dry_run: bool
    total: int
    processed: int
    succeeded: int
    skipped: int
    failed: int
    duration_ms: int
    outcomes: list[AutoOrderOutcomeData] = []


class AutoOrderLogData(BaseModel):
    """自动下单结果日志"""
    id: SnowflakeId
    subscription_id: SnowflakeId
    user_id: SnowflakeId
    order_id: SnowflakeId | None = None
    order_number: str | None = None
    meal_window: MealWindow
    processed_date: date
    status: AutoOrderStatus
    failure_category: FailureCategory | None = None
    reason: str | None = None
    context: dict[str, Any] | None = None
    cron_run_id: str
    processing_time_ms: int | None = None
    created_at: datetime


class FailureSummaryRow(BaseModel):
    """失败分类 x 餐段 统计"""
    failure_category: FailureCategory | None = None
    meal_window: MealWindow
    status: AutoOrderStatus
    count: int
