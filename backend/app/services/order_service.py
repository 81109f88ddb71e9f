"""
订单服务

交互下单和自动下单批处理共用同一条创建路径（create_order）和同一个核销入口
（app.crud.vouchers.redeem_vouchers）。

事务边界：
- 订单写入、状态变更、退券在同一个事务里提交
- 退款意向和通知在提交之后执行，各自捕获异常，失败只记日志
"""
from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlmodel import Session

from app.api.errors import (
    CancellationNotAllowed,
    Forbidden,
    InvalidTransition,
    NotFound,
    OrderValidationError,
)
from app.core.snowflake import generate_id
from app.crud.lookups import (
    get_address,
    is_kitchen_open,
    is_zone_serviceable,
    kitchen_serves_zone,
    resolve_zone,
)
from app.crud.vouchers import redeem_vouchers, restore_vouchers
from app.enums import (
    MealWindow,
    MenuItemCategory,
    MenuType,
    NotificationEvent,
    OrderActor,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    RestorationReason,
    UserRole,
)
from app.models import CustomerAddress, Kitchen, MenuItem, Order, User, utc_now
from app.services.cancellation import check_cancellation_eligibility
from app.services.config_service import BusinessConfig
from app.services.notification_service import Notifier, get_notifier, kitchen_target, user_target
from app.services.order_state import get_next_valid_statuses, open_order, transition
from app.services.payment_service import emit_refund_intent, needs_refund

logger = logging.getLogger(__name__)

_ORDER_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits
_CENT = Decimal("0.01")

# 已关闭的订单再收到 PAID，钱要退回去
_REFUND_ON_LATE_PAYMENT = frozenset({OrderStatus.CANCELLED, OrderStatus.REJECTED})


@dataclass(frozen=True)
class OrderItemInput:
    menu_item_id: int
    quantity: int = 1


@dataclass(frozen=True)
class CancellationOutcome:
    order: Order
    vouchers_restored: int
    refund_initiated: bool
    voucher_warning: str | None = None
    message: str | None = None


def generate_order_number(now: datetime | None = None) -> str:
    """订单号 ORD-YYYYMMDD-XXXXX"""
    now = now or utc_now()
    suffix = "".join(secrets.choice(_ORDER_SUFFIX_ALPHABET) for _ in range(5))
    return f"ORD-{now:%Y%m%d}-{suffix}"


def address_snapshot(address: CustomerAddress) -> dict[str, Any]:
    return {
        "label": address.label,
        "address_line": address.address_line,
        "locality": address.locality,
        "city": address.city,
        "pincode": address.pincode,
    }


def item_snapshot(menu_item: MenuItem, quantity: int) -> dict[str, Any]:
    unit_price = Decimal(menu_item.discounted_price or menu_item.price)
    return {
        "menu_item_id": menu_item.id,
        "name": menu_item.name,
        "category": MenuItemCategory(menu_item.category).value,
        "quantity": quantity,
        "unit_price": str(unit_price),
        "total_price": str(unit_price * quantity),
    }


def _actor_for(user: User) -> OrderActor:
    role = UserRole(user.role)
    if role == UserRole.ADMIN:
        return OrderActor.ADMIN
    if role == UserRole.KITCHEN_STAFF:
        return OrderActor.KITCHEN
    if role == UserRole.DRIVER:
        return OrderActor.DRIVER
    return OrderActor.CUSTOMER


def _ensure_kitchen_access(order: Order, user: User) -> None:
    role = UserRole(user.role)
    if role == UserRole.ADMIN:
        return
    if role == UserRole.KITCHEN_STAFF and user.kitchen_id == order.kitchen_id:
        return
    raise Forbidden("Order does not belong to your kitchen")


def get_order(*, session: Session, order_id: int) -> Order:
    order = session.get(Order, order_id)
    if not order:
        raise NotFound("Order not found")
    return order


def get_order_for_user(*, session: Session, order_id: int, user: User) -> Order:
    """顾客只能看自己的订单，厨房员工只能看本厨房的，管理员不限"""
    order = get_order(session=session, order_id=order_id)
    role = UserRole(user.role)
    if role == UserRole.CUSTOMER and order.user_id != user.id:
        raise NotFound("Order not found")
    if role == UserRole.KITCHEN_STAFF:
        _ensure_kitchen_access(order, user)
    return order


def create_order(
    session: Session,
    order: Order,
    *,
    actor: OrderActor,
    actor_id: int | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> Order:
    """
    唯一的订单创建入口

    补全订单号，以 PLACED 入库并写时间线。不提交。
    """
    now = now or utc_now()
    if not order.order_number:
        order.order_number = generate_order_number(now)
    return open_order(session, order, actor=actor, actor_id=actor_id, notes=notes, now=now)


def should_auto_accept(order: Order, *, config: BusinessConfig) -> bool:
    """用了券、已支付、仍是 PLACED 的订单，在开启自动接单时自动接单"""
    return (
        config.auto_order.auto_accept_orders
        and order.voucher_count > 0
        and order.payment_status == PaymentStatus.PAID
        and order.status == OrderStatus.PLACED
    )


def auto_accept(
    session: Session, order: Order, *, config: BusinessConfig, notes: str, now: datetime | None = None
) -> bool:
    if not should_auto_accept(order, config=config):
        return False
    transition(session, order, OrderStatus.ACCEPTED, actor=OrderActor.SYSTEM, notes=notes, now=now)
    return True


def _price_items(
    session: Session,
    *,
    kitchen_id: int,
    menu_type: MenuType,
    meal_window: MealWindow | None,
    items: list[OrderItemInput],
) -> tuple[list[dict[str, Any]], Decimal, int, Decimal]:
    """校验菜品并计算 (快照, 小计, 主菜份数, 主菜总价)"""
    if not items:
        raise OrderValidationError("Order must contain at least one item")

    snapshots: list[dict[str, Any]] = []
    subtotal = Decimal("0")
    main_units = 0
    main_value = Decimal("0")
    for item in items:
        if item.quantity < 1:
            raise OrderValidationError("Item quantity must be at least 1")
        menu_item = session.get(MenuItem, item.menu_item_id)
        if not menu_item:
            raise OrderValidationError(f"Menu item not found: {item.menu_item_id}")
        if menu_item.kitchen_id != kitchen_id:
            raise OrderValidationError(f"Menu item {menu_item.name} does not belong to this kitchen")
        if menu_item.menu_type != menu_type:
            raise OrderValidationError(
                f"Menu item {menu_item.name} is not available for {menu_type.value}"
            )
        if menu_type == MenuType.MEAL_MENU and menu_item.meal_window != meal_window:
            window_label = meal_window.value if meal_window else None
            raise OrderValidationError(
                f"Menu item {menu_item.name} is not available for {window_label}"
            )
        if not menu_item.is_available:
            raise OrderValidationError(f"Menu item {menu_item.name} is not available")

        snapshot = item_snapshot(menu_item, item.quantity)
        line_total = Decimal(snapshot["total_price"])
        subtotal += line_total
        if menu_item.category == MenuItemCategory.MAIN_COURSE:
            main_units += item.quantity
            main_value += line_total
        snapshots.append(snapshot)
    return snapshots, subtotal, main_units, main_value


def place_order(
    *,
    session: Session,
    user: User,
    kitchen_id: int,
    delivery_address_id: int,
    menu_type: MenuType,
    meal_window: MealWindow | None,
    items: list[OrderItemInput],
    voucher_count: int,
    payment_method: PaymentMethod | None,
    config: BusinessConfig,
    now: datetime | None = None,
    notifier: Notifier | None = None,
) -> Order:
    """
    交互下单

    校验地址、厨房、菜品和券数量，定价后在同一个事务里核销券并创建订单。
    券覆盖的主菜免费；整单被券覆盖时直接视为已支付，并按配置自动接单。

    Raises:
        NotFound: 地址或厨房不存在
        OrderValidationError: 不满足下单规则
        CutoffPassed / InsufficientVouchers: 核销失败（账本未被修改）
    """
    now = now or utc_now()
    menu_type = MenuType(menu_type)
    window = MealWindow(meal_window) if meal_window else None

    address = get_address(session=session, address_id=delivery_address_id, user_id=user.id)
    if not address:
        raise NotFound("Delivery address not found or not owned by user")
    zone = resolve_zone(session=session, address=address)
    if not zone or not is_zone_serviceable(zone):
        raise OrderValidationError("Delivery address is not serviceable")

    kitchen = session.get(Kitchen, kitchen_id)
    if not kitchen:
        raise NotFound("Kitchen not found")
    if not is_kitchen_open(kitchen):
        raise OrderValidationError("Kitchen is not accepting orders")
    if not kitchen_serves_zone(session=session, kitchen_id=kitchen.id, zone_id=zone.id):
        raise OrderValidationError("Kitchen does not serve your area")

    if menu_type == MenuType.MEAL_MENU and window is None:
        raise OrderValidationError("Meal window is required for meal menu orders")
    if voucher_count < 0:
        raise OrderValidationError("Voucher count must be >= 0")
    if voucher_count > 0 and menu_type != MenuType.MEAL_MENU:
        raise OrderValidationError("Vouchers can only be used for meal menu orders")

    snapshots, subtotal, main_units, main_value = _price_items(
        session, kitchen_id=kitchen.id, menu_type=menu_type, meal_window=window, items=items
    )
    if voucher_count > main_units:
        raise OrderValidationError(
            f"Cannot use {voucher_count} vouchers for {main_units} main course(s)"
        )

    covered = min(voucher_count, main_units)
    coverage = Decimal("0")
    if covered:
        coverage = (main_value / main_units * covered).quantize(_CENT, rounding=ROUND_HALF_UP)
    grand_total = subtotal.quantize(_CENT, rounding=ROUND_HALF_UP)
    amount_to_pay = max(Decimal("0"), grand_total - coverage).quantize(_CENT)

    order_id = generate_id()
    voucher_ids = redeem_vouchers(
        session=session,
        user_id=user.id,
        count=voucher_count,
        meal_window=window,
        order_id=order_id,
        kitchen_id=kitchen.id,
        config=config,
        now=now,
        kitchen=kitchen,
        commit=False,
    )

    fully_covered = amount_to_pay == 0
    order = Order(
        id=order_id,
        user_id=user.id,
        kitchen_id=kitchen.id,
        zone_id=zone.id,
        delivery_address_id=address.id,
        delivery_address=address_snapshot(address),
        menu_type=menu_type,
        meal_window=window,
        items=snapshots,
        voucher_ids=voucher_ids,
        voucher_count=len(voucher_ids),
        main_courses_covered=covered,
        subtotal=grand_total,
        grand_total=grand_total,
        amount_paid=amount_to_pay,
        payment_status=PaymentStatus.PAID if fully_covered else PaymentStatus.PENDING,
        payment_method=(
            PaymentMethod.VOUCHER_ONLY if fully_covered else (payment_method or PaymentMethod.OTHER)
        ),
    )
    try:
        create_order(session, order, actor=OrderActor.CUSTOMER, actor_id=user.id, now=now)
        accepted = auto_accept(
            session, order, config=config, notes="Auto-accepted voucher order", now=now
        )
        session.commit()
    except Exception:
        session.rollback()
        raise
    session.refresh(order)

    logger.info(
        "Order %s placed by user %s (vouchers=%d, amount_to_pay=%s, auto_accepted=%s)",
        order.order_number,
        user.id,
        order.voucher_count,
        amount_to_pay,
        accepted,
    )
    (notifier or get_notifier()).notify(
        kitchen_target(kitchen.id),
        (
            NotificationEvent.NEW_AUTO_ACCEPTED_ORDER
            if accepted
            else NotificationEvent.NEW_MANUAL_ORDER
        ),
        {
            "order_id": order.id,
            "order_number": order.order_number,
            "meal_window": window.value if window else None,
        },
    )
    return order


def accept_order(
    *, session: Session, order_id: int, staff: User, now: datetime | None = None
) -> Order:
    """厨房接单（仅 PLACED）"""
    order = get_order(session=session, order_id=order_id)
    _ensure_kitchen_access(order, staff)
    transition(
        session,
        order,
        OrderStatus.ACCEPTED,
        actor=_actor_for(staff),
        actor_id=staff.id,
        notes="Order accepted by kitchen",
        now=now,
    )
    session.commit()
    session.refresh(order)
    return order


def update_order_status(
    *,
    session: Session,
    order_id: int,
    new_status: OrderStatus,
    user: User,
    notes: str | None = None,
    now: datetime | None = None,
) -> Order:
    """
    推进订单状态（备餐 / 出餐 / 取餐 / 配送 / 送达 / 配送失败）

    取消和拒单会触发退券、退款，必须走专门的入口。
    """
    target = OrderStatus(new_status)
    if target in (OrderStatus.CANCELLED, OrderStatus.REJECTED):
        raise OrderValidationError(f"Use the dedicated operation to set {target.value}")

    order = get_order(session=session, order_id=order_id)
    if UserRole(user.role) != UserRole.DRIVER:
        _ensure_kitchen_access(order, user)
    transition(
        session, order, target, actor=_actor_for(user), actor_id=user.id, notes=notes, now=now
    )
    session.commit()
    session.refresh(order)
    return order


def _finish_negative_transition(
    session: Session,
    order: Order,
    *,
    new_status: OrderStatus,
    actor: OrderActor,
    actor_id: int | None,
    reason: str,
    restore: bool,
    force_restore: bool,
    restoration_reason: RestorationReason,
    issue_refund: bool,
    now: datetime,
) -> tuple[int, bool]:
    """
    取消 / 拒单的公共部分

    状态变更和退券同一事务提交；退款意向在提交后尽力执行。
    Returns:
        (退回券数, 是否发起退款)
    """
    try:
        transition(session, order, new_status, actor=actor, actor_id=actor_id, notes=reason, now=now)
        if new_status == OrderStatus.REJECTED:
            order.rejection_reason = reason[:255]
        else:
            order.cancellation_reason = reason[:255]
            order.cancelled_by = actor
        restored = 0
        if restore and order.voucher_ids:
            restored = restore_vouchers(
                session=session,
                voucher_ids=list(order.voucher_ids),
                reason=restoration_reason,
                force=force_restore,
                now=now,
                commit=False,
            ).count
        session.commit()
    except Exception:
        session.rollback()
        raise
    session.refresh(order)

    refund_initiated = False
    if issue_refund and needs_refund(order):
        try:
            refund_initiated = (
                emit_refund_intent(session=session, order=order, reason=reason, initiated_by=actor)
                is not None
            )
        except Exception:
            session.rollback()
            logger.exception("Failed to create refund intent for order %s", order.order_number)

    logger.info(
        "Order %s -> %s by %s (vouchers_restored=%d, refund=%s)",
        order.order_number,
        OrderStatus(new_status).value,
        actor.value,
        restored,
        refund_initiated,
    )
    return restored, refund_initiated


def customer_cancel_order(
    *,
    session: Session,
    order_id: int,
    user: User,
    reason: str | None,
    config: BusinessConfig,
    now: datetime | None = None,
) -> CancellationOutcome:
    """
    顾客取消

    是否允许、是否退券由取消策略决定；截单后取消用券订单不退券，返回提示。
    """
    now = now or utc_now()
    order = get_order(session=session, order_id=order_id)
    if order.user_id != user.id:
        raise NotFound("Order not found")

    kitchen = session.get(Kitchen, order.kitchen_id)
    verdict = check_cancellation_eligibility(order, config=config, now=now, kitchen=kitchen)
    if not verdict.can_cancel:
        raise CancellationNotAllowed(verdict.reason)

    restored, refund_initiated = _finish_negative_transition(
        session,
        order,
        new_status=OrderStatus.CANCELLED,
        actor=OrderActor.CUSTOMER,
        actor_id=user.id,
        reason=reason or "Cancelled by customer",
        restore=verdict.should_restore_vouchers,
        force_restore=False,
        restoration_reason=RestorationReason.ORDER_CANCELLED,
        issue_refund=True,
        now=now,
    )

    warning = verdict.warning if order.voucher_ids and not verdict.should_restore_vouchers else None
    if warning:
        message = warning
    elif refund_initiated:
        message = "Your refund will be processed within 5-7 business days."
    elif restored:
        message = f"{restored} voucher(s) have been restored to your account."
    else:
        message = None
    return CancellationOutcome(
        order=order,
        vouchers_restored=restored,
        refund_initiated=refund_initiated,
        voucher_warning=warning,
        message=message,
    )


def kitchen_reject_order(
    *,
    session: Session,
    order_id: int,
    staff: User,
    reason: str,
    now: datetime | None = None,
    notifier: Notifier | None = None,
) -> CancellationOutcome:
    """厨房拒单（仅 PLACED），总是退券"""
    now = now or utc_now()
    order = get_order(session=session, order_id=order_id)
    _ensure_kitchen_access(order, staff)
    restored, refund_initiated = _finish_negative_transition(
        session,
        order,
        new_status=OrderStatus.REJECTED,
        actor=OrderActor.KITCHEN,
        actor_id=staff.id,
        reason=reason or "Order rejected by kitchen",
        restore=True,
        force_restore=False,
        restoration_reason=RestorationReason.ORDER_REJECTED,
        issue_refund=True,
        now=now,
    )
    (notifier or get_notifier()).notify(
        user_target(order.user_id),
        NotificationEvent.ORDER_REJECTED,
        {"order_number": order.order_number, "reason": order.rejection_reason},
    )
    return CancellationOutcome(order=order, vouchers_restored=restored, refund_initiated=refund_initiated)


def kitchen_cancel_order(
    *,
    session: Session,
    order_id: int,
    staff: User,
    reason: str,
    now: datetime | None = None,
    notifier: Notifier | None = None,
) -> CancellationOutcome:
    """厨房取消（仅 ACCEPTED / PREPARING），总是退券"""
    now = now or utc_now()
    order = get_order(session=session, order_id=order_id)
    _ensure_kitchen_access(order, staff)
    current = OrderStatus(order.status)
    if current not in (OrderStatus.ACCEPTED, OrderStatus.PREPARING):
        raise InvalidTransition(current.value, OrderStatus.CANCELLED.value)

    restored, refund_initiated = _finish_negative_transition(
        session,
        order,
        new_status=OrderStatus.CANCELLED,
        actor=OrderActor.KITCHEN,
        actor_id=staff.id,
        reason=reason or "Order cancelled by kitchen",
        restore=True,
        force_restore=False,
        restoration_reason=RestorationReason.ORDER_CANCELLED,
        issue_refund=True,
        now=now,
    )
    (notifier or get_notifier()).notify(
        user_target(order.user_id),
        NotificationEvent.ORDER_CANCELLED,
        {"order_number": order.order_number, "reason": order.cancellation_reason},
    )
    return CancellationOutcome(order=order, vouchers_restored=restored, refund_initiated=refund_initiated)


def admin_cancel_order(
    *,
    session: Session,
    order_id: int,
    admin: User,
    reason: str,
    issue_refund: bool = True,
    restore_vouchers_flag: bool = True,
    now: datetime | None = None,
    notifier: Notifier | None = None,
) -> CancellationOutcome:
    """管理员取消，强制退券（已过期的券也退回，但不延长过期时间）"""
    now = now or utc_now()
    order = get_order(session=session, order_id=order_id)
    restored, refund_initiated = _finish_negative_transition(
        session,
        order,
        new_status=OrderStatus.CANCELLED,
        actor=OrderActor.ADMIN,
        actor_id=admin.id,
        reason=reason or "Cancelled by admin",
        restore=restore_vouchers_flag,
        force_restore=True,
        restoration_reason=RestorationReason.ADMIN_ACTION,
        issue_refund=issue_refund,
        now=now,
    )
    (notifier or get_notifier()).notify(
        user_target(order.user_id),
        NotificationEvent.ORDER_CANCELLED,
        {"order_number": order.order_number, "reason": order.cancellation_reason},
    )
    return CancellationOutcome(order=order, vouchers_restored=restored, refund_initiated=refund_initiated)


def handle_payment_result(
    *,
    session: Session,
    order_id: int,
    payment_status: PaymentStatus,
    config: BusinessConfig,
    now: datetime | None = None,
) -> Order:
    """
    消费支付结果

    - PAID: 标记已支付；用券的 PLACED 订单在开启自动接单时自动接单；
      订单已取消或已拒单时不接单，改为发起退款意向
    - FAILED: 标记支付失败，系统取消订单并退券
    重复的同一结果直接返回。
    """
    now = now or utc_now()
    result = PaymentStatus(payment_status)
    if result not in (PaymentStatus.PAID, PaymentStatus.FAILED):
        raise OrderValidationError(f"Unsupported payment status {result.value}")

    order = get_order(session=session, order_id=order_id)
    if order.payment_status == result:
        return order

    if result == PaymentStatus.PAID:
        closed = OrderStatus(order.status) in _REFUND_ON_LATE_PAYMENT
        try:
            order.payment_status = PaymentStatus.PAID
            order.updated_at = now
            session.add(order)
            if not closed:
                auto_accept(
                    session, order, config=config, notes="Auto-accepted after payment", now=now
                )
            session.commit()
        except Exception:
            session.rollback()
            raise
        session.refresh(order)
        if closed:
            try:
                emit_refund_intent(
                    session=session,
                    order=order,
                    reason="Payment captured for cancelled order",
                    initiated_by=OrderActor.SYSTEM,
                )
            except Exception:
                session.rollback()
                logger.exception("Failed to create refund intent for order %s", order.order_number)
        return order

    order.payment_status = PaymentStatus.FAILED
    session.add(order)
    if OrderStatus.CANCELLED in get_next_valid_statuses(order.status):
        _finish_negative_transition(
            session,
            order,
            new_status=OrderStatus.CANCELLED,
            actor=OrderActor.SYSTEM,
            actor_id=None,
            reason="Payment failed",
            restore=True,
            force_restore=False,
            restoration_reason=RestorationReason.PAYMENT_FAILED,
            issue_refund=False,
            now=now,
        )
    else:
        session.commit()
        session.refresh(order)
    return order
