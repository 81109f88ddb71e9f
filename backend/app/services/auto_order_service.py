"""
自动下单批处理

每个餐段执行一次。对每个符合条件的订阅依次解析 地址 -> 区域 -> 厨房 -> 菜品，
通过券账本核销一张券，并走和手动下单相同的 create_order 入口建单。
每个订阅的尝试都落一条 AutoOrderLog；单个订阅失败不会中断整批。
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import uuid4

from sqlmodel import Session, col, select

from app.api.errors import AppError
from app.core.snowflake import generate_id
from app.crud.auto_order_logs import append_log
from app.crud.lookups import (
    is_zone_serviceable,
    resolve_address,
    resolve_kitchen,
    resolve_menu_item,
    resolve_zone,
)
from app.crud.vouchers import get_available_voucher_count, redeem_vouchers
from app.enums import (
    AutoOrderStatus,
    DefaultMealType,
    FailureCategory,
    MealWindow,
    MenuType,
    NotificationEvent,
    OrderActor,
    PaymentMethod,
    PaymentStatus,
    SubscriptionStatus,
)
from app.models import AutoOrderLog, Order, Subscription, utc_now
from app.services.config_service import BusinessConfig
from app.services.cutoff import business_now
from app.services.notification_service import Notifier, get_notifier, kitchen_target, user_target
from app.services.order_service import (
    address_snapshot,
    auto_accept,
    create_order,
    item_snapshot,
)

logger = logging.getLogger(__name__)

FAILURE_EVENTS = {
    FailureCategory.NO_VOUCHERS: NotificationEvent.AUTO_ORDER_FAILED_NO_VOUCHERS,
    FailureCategory.NO_ADDRESS: NotificationEvent.AUTO_ORDER_FAILED_NO_ADDRESS,
    FailureCategory.NO_ZONE: NotificationEvent.AUTO_ORDER_FAILED_NO_ZONE,
    FailureCategory.NO_KITCHEN: NotificationEvent.AUTO_ORDER_FAILED_NO_KITCHEN,
    FailureCategory.KITCHEN_NOT_SERVING_ZONE: NotificationEvent.AUTO_ORDER_FAILED_NO_KITCHEN,
    FailureCategory.NO_MENU_ITEM: NotificationEvent.AUTO_ORDER_FAILED_NO_MENU,
}


@dataclass(frozen=True)
class SubscriptionOutcome:
    subscription_id: int
    user_id: int
    status: AutoOrderStatus
    failure_category: FailureCategory | None = None
    reason: str | None = None
    order_id: int | None = None
    order_number: str | None = None
    auto_accepted: bool = False
    context: dict[str, Any] = field(default_factory=dict)


@dataclass
class AutoOrderRunStats:
    cron_run_id: str
    meal_window: MealWindow
    dry_run: bool = False
    total: int = 0
    processed: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    duration_ms: int = 0
    outcomes: list[SubscriptionOutcome] = field(default_factory=list)

    def record(self, outcome: SubscriptionOutcome) -> None:
        self.processed += 1
        if outcome.status == AutoOrderStatus.SUCCESS:
            self.succeeded += 1
        elif outcome.status == AutoOrderStatus.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1
        self.outcomes.append(outcome)


def new_cron_run_id(meal_window: MealWindow, now: datetime | None = None) -> str:
    now = now or utc_now()
    return f"{MealWindow(meal_window).value}-{now:%Y%m%d%H%M%S}-{uuid4().hex[:8]}"


def get_eligible_subscriptions(
    *, session: Session, meal_window: MealWindow, now: datetime | None = None
) -> list[Subscription]:
    """生效中、开启自动下单、未过期、还有未用额度、餐段偏好匹配的订阅"""
    now = now or utc_now()
    return list(
        session.exec(
            select(Subscription)
            .where(
                Subscription.status == SubscriptionStatus.ACTIVE.value,
                Subscription.auto_ordering_enabled == True,  # noqa: E712
                Subscription.voucher_expiry_date > now,
                col(Subscription.vouchers_used) < col(Subscription.total_vouchers_issued),
                col(Subscription.default_meal_type).in_(
                    [MealWindow(meal_window).value, DefaultMealType.BOTH.value]
                ),
            )
            .order_by(Subscription.created_at, Subscription.id)
        ).all()
    )


def is_paused(subscription: Subscription, now: datetime) -> bool:
    if not subscription.is_paused:
        return False
    return subscription.paused_until is None or subscription.paused_until > now


def is_slot_skipped(subscription: Subscription, today: date, meal_window: MealWindow) -> bool:
    today_str = today.isoformat()
    for slot in subscription.skipped_slots or []:
        same_day = str(slot.get("date", ""))[:10] == today_str
        if same_day and slot.get("meal_window") == meal_window.value:
            return True
    return False


def process_subscription(
    session: Session,
    subscription: Subscription,
    *,
    meal_window: MealWindow,
    config: BusinessConfig,
    now: datetime,
    today: date,
    dry_run: bool = False,
) -> SubscriptionOutcome:
    """
    处理单个订阅

    业务上可预期的失败返回 FAILED / SKIPPED 结果；
    意外异常向上抛，由批处理兜底记为 UNKNOWN。
    """
    sub_id = subscription.id
    user_id = subscription.user_id
    context: dict[str, Any] = {}

    def outcome(
        status: AutoOrderStatus, category: FailureCategory | None, reason: str, **extra: Any
    ) -> SubscriptionOutcome:
        return SubscriptionOutcome(
            subscription_id=sub_id,
            user_id=user_id,
            status=status,
            failure_category=category,
            reason=reason,
            context=dict(context),
            **extra,
        )

    if is_paused(subscription, now):
        return outcome(
            AutoOrderStatus.SKIPPED, FailureCategory.SUBSCRIPTION_PAUSED, "Subscription is paused"
        )
    if is_slot_skipped(subscription, today, meal_window):
        return outcome(AutoOrderStatus.SKIPPED, FailureCategory.SLOT_SKIPPED, "Slot is skipped")

    available = get_available_voucher_count(
        session=session, user_id=user_id, meal_window=meal_window, now=now
    )
    context["vouchers_available"] = available
    if available < 1:
        return outcome(AutoOrderStatus.FAILED, FailureCategory.NO_VOUCHERS, "No vouchers available")

    address = resolve_address(session=session, subscription=subscription)
    if not address:
        return outcome(
            AutoOrderStatus.FAILED, FailureCategory.NO_ADDRESS, "No delivery address found"
        )
    context.update(address_id=address.id, pincode=address.pincode)

    zone = resolve_zone(session=session, address=address)
    if not zone:
        return outcome(
            AutoOrderStatus.FAILED,
            FailureCategory.NO_ZONE,
            f"No zone for pincode {address.pincode}",
        )
    context.update(zone_id=zone.id, zone_name=zone.name)
    if not is_zone_serviceable(zone):
        return outcome(
            AutoOrderStatus.FAILED, FailureCategory.NO_ZONE, f"Zone {zone.name} is not serviceable"
        )

    kitchen = resolve_kitchen(
        session=session, zone_id=zone.id, preferred_kitchen_id=subscription.default_kitchen_id
    )
    if not kitchen:
        return outcome(
            AutoOrderStatus.FAILED,
            FailureCategory.NO_KITCHEN,
            f"No kitchen serving zone {zone.name}",
        )
    context.update(kitchen_id=kitchen.id, kitchen_name=kitchen.name)

    menu_item = resolve_menu_item(session=session, kitchen_id=kitchen.id, meal_window=meal_window)
    if not menu_item:
        return outcome(
            AutoOrderStatus.FAILED,
            FailureCategory.NO_MENU_ITEM,
            f"No {meal_window.value} menu item at {kitchen.name}",
        )
    context.update(menu_item_id=menu_item.id, menu_item_name=menu_item.name)

    if dry_run:
        return outcome(AutoOrderStatus.SUCCESS, None, "Dry run: order would be placed")

    order_id = generate_id()
    try:
        voucher_ids = redeem_vouchers(
            session=session,
            user_id=user_id,
            count=1,
            meal_window=meal_window,
            order_id=order_id,
            kitchen_id=kitchen.id,
            config=config,
            now=now,
            kitchen=kitchen,
            commit=False,
        )
    except AppError as exc:
        return outcome(
            AutoOrderStatus.FAILED, FailureCategory.VOUCHER_REDEMPTION_FAILED, exc.message
        )

    snapshot = item_snapshot(menu_item, 1)
    order = Order(
        id=order_id,
        user_id=user_id,
        kitchen_id=kitchen.id,
        zone_id=zone.id,
        subscription_id=sub_id,
        delivery_address_id=address.id,
        delivery_address=address_snapshot(address),
        menu_type=MenuType.MEAL_MENU,
        meal_window=meal_window,
        items=[snapshot],
        voucher_ids=voucher_ids,
        voucher_count=len(voucher_ids),
        main_courses_covered=len(voucher_ids),
        subtotal=Decimal(snapshot["total_price"]),
        grand_total=Decimal("0.00"),
        amount_paid=Decimal("0.00"),
        payment_status=PaymentStatus.PAID,
        payment_method=PaymentMethod.VOUCHER_ONLY,
        is_auto_order=True,
    )
    try:
        create_order(
            session, order, actor=OrderActor.SYSTEM, notes="Auto-order placed by scheduler", now=now
        )
        accepted = auto_accept(
            session, order, config=config, notes="Auto-accepted (voucher order)", now=now
        )
        order_number = order.order_number
        session.commit()
    except Exception as exc:
        session.rollback()
        logger.exception("Auto-order creation failed for subscription %s", sub_id)
        return outcome(AutoOrderStatus.FAILED, FailureCategory.ORDER_CREATION_FAILED, str(exc))

    return outcome(
        AutoOrderStatus.SUCCESS,
        None,
        "Order placed",
        order_id=order_id,
        order_number=order_number,
        auto_accepted=accepted,
    )


def _notify(notifier: Notifier, result: SubscriptionOutcome, meal_window: MealWindow) -> None:
    if result.status == AutoOrderStatus.SUCCESS:
        notifier.notify(
            user_target(result.user_id),
            NotificationEvent.AUTO_ORDER_SUCCESS,
            {
                "order_number": result.order_number,
                "meal_window": meal_window.value,
                "kitchen_name": result.context.get("kitchen_name"),
                "menu_item_name": result.context.get("menu_item_name"),
            },
        )
        kitchen_id = result.context.get("kitchen_id")
        event = (
            NotificationEvent.NEW_AUTO_ACCEPTED_ORDER
            if result.auto_accepted
            else NotificationEvent.NEW_AUTO_ORDER
        )
        if kitchen_id:
            notifier.notify(
                kitchen_target(kitchen_id),
                event,
                {
                    "order_id": result.order_id,
                    "order_number": result.order_number,
                    "meal_window": meal_window.value,
                },
            )
        return
    if result.status == AutoOrderStatus.FAILED:
        event = FAILURE_EVENTS.get(
            result.failure_category, NotificationEvent.AUTO_ORDER_FAILED_GENERIC
        )
        notifier.notify(
            user_target(result.user_id),
            event,
            {"meal_window": meal_window.value, "reason": result.reason},
        )


def run_auto_order_batch(
    *,
    session: Session,
    meal_window: MealWindow | str,
    config: BusinessConfig,
    now: datetime | None = None,
    dry_run: bool = False,
    notifier: Notifier | None = None,
    cron_run_id: str | None = None,
) -> AutoOrderRunStats:
    """
    执行一个餐段的自动下单批处理

    dry_run 时只解析每个订阅的下单计划，不核销券、不建单、
    不写日志、不发通知。
    """
    window = MealWindow(meal_window)
    now = now or utc_now()
    today = business_now(config, now).date()
    notifier = notifier or get_notifier()
    stats = AutoOrderRunStats(
        cron_run_id=cron_run_id or new_cron_run_id(window, now),
        meal_window=window,
        dry_run=dry_run,
    )
    started = time.perf_counter()

    if not config.auto_order.enabled:
        logger.info("Auto-ordering disabled, skipping %s run", window.value)
        return stats

    subscriptions = get_eligible_subscriptions(session=session, meal_window=window, now=now)
    targets = [(s.id, s.user_id) for s in subscriptions]
    stats.total = len(targets)
    logger.info(
        "Auto-order run %s: %d eligible subscriptions (dry_run=%s)",
        stats.cron_run_id,
        stats.total,
        dry_run,
    )

    for subscription, (sub_id, user_id) in zip(subscriptions, targets):
        sub_started = time.perf_counter()
        try:
            result = process_subscription(
                session,
                subscription,
                meal_window=window,
                config=config,
                now=now,
                today=today,
                dry_run=dry_run,
            )
        except Exception as exc:
            session.rollback()
            logger.exception("Auto-order crashed for subscription %s", sub_id)
            result = SubscriptionOutcome(
                subscription_id=sub_id,
                user_id=user_id,
                status=AutoOrderStatus.FAILED,
                failure_category=FailureCategory.UNKNOWN,
                reason=str(exc) or exc.__class__.__name__,
            )
        elapsed_ms = int((time.perf_counter() - sub_started) * 1000)
        stats.record(result)
        logger.info(
            "Auto-order %s subscription=%s status=%s category=%s reason=%s",
            stats.cron_run_id,
            sub_id,
            result.status.value,
            result.failure_category.value if result.failure_category else None,
            result.reason,
        )

        if dry_run:
            continue
        try:
            append_log(
                session=session,
                log=AutoOrderLog(
                    subscription_id=sub_id,
                    user_id=user_id,
                    order_id=result.order_id,
                    order_number=result.order_number,
                    meal_window=window,
                    processed_date=today,
                    status=result.status,
                    failure_category=result.failure_category,
                    reason=result.reason,
                    context=result.context,
                    cron_run_id=stats.cron_run_id,
                    processing_time_ms=elapsed_ms,
                ),
            )
        except Exception:
            session.rollback()
            logger.exception("Failed to write auto-order log for subscription %s", sub_id)
        _notify(notifier, result, window)

    stats.duration_ms = int((time.perf_counter() - started) * 1000)
    logger.info(
        "Auto-order run %s finished: processed=%d succeeded=%d skipped=%d failed=%d in %dms",
        stats.cron_run_id,
        stats.processed,
        stats.succeeded,
        stats.skipped,
        stats.failed,
        stats.duration_ms,
    )
    return stats
