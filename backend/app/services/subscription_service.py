"""
订阅服务

订阅支付成功后激活，并在同一事务里按 total_vouchers_issued 批量发券。
重复的支付成功回调不会重复发券（issue_vouchers 已发过则跳过）。
"""
from __future__ import annotations

import logging
from datetime import datetime

from sqlmodel import Session

from app.api.errors import NotFound, OrderValidationError
from app.crud.vouchers import issue_vouchers
from app.enums import PaymentStatus, SubscriptionStatus
from app.models import Subscription, utc_now

logger = logging.getLogger(__name__)

# 只有这些状态的订阅会被支付成功激活
_ACTIVATABLE = frozenset({SubscriptionStatus.PENDING, SubscriptionStatus.ACTIVE})


def activate_subscription(
    *, session: Session, subscription_id: int, now: datetime | None = None
) -> Subscription:
    """
    激活订阅并发券

    已取消 / 已过期 / 已暂停的订阅不处理，原样返回。
    """
    subscription = session.get(Subscription, subscription_id)
    if subscription is None:
        raise NotFound("Subscription not found")
    if SubscriptionStatus(subscription.status) not in _ACTIVATABLE:
        logger.info(
            "Subscription %s is %s, skipping activation", subscription.id, subscription.status
        )
        return subscription

    try:
        subscription.status = SubscriptionStatus.ACTIVE
        subscription.updated_at = now or utc_now()
        session.add(subscription)
        issued = issue_vouchers(session=session, subscription=subscription, commit=False)
        session.commit()
    except Exception:
        session.rollback()
        raise
    session.refresh(subscription)
    logger.info("Subscription %s activated (vouchers_issued=%d)", subscription.id, len(issued))
    return subscription


def handle_subscription_payment_result(
    *,
    session: Session,
    subscription_id: int,
    payment_status: PaymentStatus,
    now: datetime | None = None,
) -> Subscription:
    """PAID 激活并发券；FAILED 只记日志，订阅保持原状态"""
    result = PaymentStatus(payment_status)
    if result == PaymentStatus.PAID:
        return activate_subscription(session=session, subscription_id=subscription_id, now=now)
    if result != PaymentStatus.FAILED:
        raise OrderValidationError(f"Unsupported payment status {result.value}")

    subscription = session.get(Subscription, subscription_id)
    if subscription is None:
        raise NotFound("Subscription not found")
    logger.warning(
        "Payment failed for subscription %s (status=%s)", subscription.id, subscription.status
    )
    return subscription
