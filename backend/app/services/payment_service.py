"""
支付协作

本服务不直接调用支付网关：
- 取消 / 拒单时写入退款意向（refunds 表，PENDING），由外部支付服务执行
- 支付结果（PAID / FAILED）由 order_service.handle_payment_result 消费
"""
from __future__ import annotations

import logging
from decimal import Decimal

from sqlmodel import Session

from app.enums import OrderActor, PaymentStatus, RefundStatus
from app.models import Order, Refund

logger = logging.getLogger(__name__)


def needs_refund(order: Order) -> bool:
    """只有实际付过钱（amount_paid > 0 且已支付）的订单才需要退款"""
    return Decimal(order.amount_paid or 0) > 0 and order.payment_status == PaymentStatus.PAID


def emit_refund_intent(
    *, session: Session, order: Order, reason: str, initiated_by: OrderActor
) -> Refund | None:
    """写入退款意向并提交；不需要退款时返回 None"""
    if not needs_refund(order):
        return None
    refund = Refund(
        order_id=order.id,
        user_id=order.user_id,
        amount=Decimal(order.amount_paid),
        reason=reason[:255],
        status=RefundStatus.PENDING,
        initiated_by=initiated_by,
    )
    session.add(refund)
    session.commit()
    session.refresh(refund)
    logger.info(
        "Refund intent %s created for order %s amount=%s", refund.id, order.order_number, refund.amount
    )
    return refund
