"""
订单状态机

所有订单状态变更都必须经过 transition()，其他代码不要直接写 order.status。
每次变更在 order_status_events 追加一条时间线记录。

transition() 只修改会话中的对象，不提交；由调用方把状态变更、退券等
放在同一个事务里统一提交。
"""
from __future__ import annotations

from datetime import datetime

from sqlmodel import Session, select

from app.api.errors import InvalidTransition
from app.enums import OrderActor, OrderStatus
from app.models import Order, OrderStatusEvent, utc_now

TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PLACED: frozenset(
        {OrderStatus.ACCEPTED, OrderStatus.REJECTED, OrderStatus.CANCELLED}
    ),
    OrderStatus.ACCEPTED: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset({OrderStatus.PICKED_UP}),
    OrderStatus.PICKED_UP: frozenset(
        {OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED, OrderStatus.FAILED}
    ),
    OrderStatus.OUT_FOR_DELIVERY: frozenset({OrderStatus.DELIVERED, OrderStatus.FAILED}),
}

TERMINAL_STATUSES = frozenset(
    {OrderStatus.DELIVERED, OrderStatus.REJECTED, OrderStatus.CANCELLED, OrderStatus.FAILED}
)

# 进入这些状态时记录对应时间戳
_STATUS_TIMESTAMPS = {
    OrderStatus.ACCEPTED: "accepted_at",
    OrderStatus.REJECTED: "rejected_at",
    OrderStatus.CANCELLED: "cancelled_at",
    OrderStatus.READY: "prepared_at",
    OrderStatus.PICKED_UP: "picked_up_at",
    OrderStatus.DELIVERED: "delivered_at",
}


def get_next_valid_statuses(status: OrderStatus | str) -> frozenset[OrderStatus]:
    return TRANSITIONS.get(OrderStatus(status), frozenset())


def can_transition(current: OrderStatus | str, target: OrderStatus | str) -> bool:
    return OrderStatus(target) in get_next_valid_statuses(current)


def open_order(
    session: Session,
    order: Order,
    *,
    actor: OrderActor,
    actor_id: int | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> Order:
    """新订单以 PLACED 入库，并写入时间线第一条"""
    now = now or utc_now()
    order.status = OrderStatus.PLACED
    order.placed_at = now
    order.created_at = now
    order.updated_at = now
    session.add(order)
    session.add(
        OrderStatusEvent(
            order_id=order.id,
            status=OrderStatus.PLACED,
            actor=actor,
            actor_id=actor_id,
            notes=notes,
            created_at=now,
        )
    )
    return order


def transition(
    session: Session,
    order: Order,
    new_status: OrderStatus,
    *,
    actor: OrderActor,
    actor_id: int | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> Order:
    """
    执行一次状态变更

    不在流转表里的变更抛 InvalidTransition，订单和时间线都不会被修改。

    Args:
        session: 数据库会话（不提交）
        order: 订单
        new_status: 目标状态
        actor: 发起方
        actor_id: 发起人用户 ID（系统操作为空）
        notes: 时间线备注
        now: 当前时间（测试注入）
    """
    current = OrderStatus(order.status)
    target = OrderStatus(new_status)
    if target not in get_next_valid_statuses(current):
        raise InvalidTransition(current.value, target.value)

    now = now or utc_now()
    order.status = target
    order.updated_at = now
    timestamp_field = _STATUS_TIMESTAMPS.get(target)
    if timestamp_field:
        setattr(order, timestamp_field, now)

    session.add(order)
    session.add(
        OrderStatusEvent(
            order_id=order.id,
            status=target,
            actor=actor,
            actor_id=actor_id,
            notes=notes,
            created_at=now,
        )
    )
    return order


def get_timeline(session: Session, order_id: int) -> list[OrderStatusEvent]:
    """订单状态时间线（按时间先后）"""
    return list(
        session.exec(
            select(OrderStatusEvent)
            .where(OrderStatusEvent.order_id == order_id)
            .order_by(OrderStatusEvent.created_at, OrderStatusEvent.id)
        ).all()
    )
