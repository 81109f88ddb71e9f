"""
取消策略

check_cancellation_eligibility 是纯函数：给定订单、当前时间和配置快照，
返回是否可取消、是否退券，不产生任何副作用，由调用方决定怎么执行。
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from app.enums import OrderStatus
from app.models import Kitchen, Order, utc_now
from app.services.config_service import BusinessConfig
from app.services.cutoff import check_cutoff

NON_CANCELLABLE_STATUSES = frozenset(
    {
        OrderStatus.PICKED_UP,
        OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
        OrderStatus.FAILED,
        OrderStatus.REJECTED,
    }
)

VOUCHERS_FORFEITED_WARNING = (
    "Vouchers used for this order will NOT be restored as the meal window has closed."
)


@dataclass(frozen=True)
class CancellationVerdict:
    can_cancel: bool
    should_restore_vouchers: bool
    reason: str
    warning: str | None = None
    remaining_minutes: int | None = None


def check_cancellation_eligibility(
    order: Order,
    *,
    config: BusinessConfig,
    now: datetime | None = None,
    kitchen: Kitchen | None = None,
) -> CancellationVerdict:
    """
    顾客取消资格判断

    - 已出餐 / 配送中 / 终态：不可取消
    - 用了券的订单：任何未出餐状态都能取消；截单前取消退券，截单后取消不退券
    - 没用券的订单：下单后 non_voucher_window_minutes 分钟内可取消；
      已接单时除非 allow_after_accepted 否则不可取消；备餐中一律不可取消
    """
    now = now or utc_now()
    status = OrderStatus(order.status)

    if status in NON_CANCELLABLE_STATUSES:
        return CancellationVerdict(
            can_cancel=False,
            should_restore_vouchers=False,
            reason=f"Order cannot be cancelled in {status.value} status",
        )

    if order.voucher_count > 0:
        cutoff = check_cutoff(order.meal_window, config=config, now=now, kitchen=kitchen)
        if cutoff.is_past_cutoff:
            return CancellationVerdict(
                can_cancel=True,
                should_restore_vouchers=False,
                reason="Cancellation allowed but vouchers will not be restored (meal window closed)",
                warning=VOUCHERS_FORFEITED_WARNING,
            )
        return CancellationVerdict(
            can_cancel=True,
            should_restore_vouchers=True,
            reason="Cancellation allowed, vouchers will be restored",
        )

    rules = config.cancellation
    if status == OrderStatus.ACCEPTED and not rules.allow_after_accepted:
        return CancellationVerdict(
            can_cancel=False,
            should_restore_vouchers=False,
            reason="Cannot cancel after kitchen has accepted the order",
        )
    if status == OrderStatus.PREPARING:
        return CancellationVerdict(
            can_cancel=False,
            should_restore_vouchers=False,
            reason="Cannot cancel order that is being prepared",
        )

    window = rules.non_voucher_window_minutes
    age_minutes = (now - order.placed_at).total_seconds() / 60
    if age_minutes > window:
        return CancellationVerdict(
            can_cancel=False,
            should_restore_vouchers=False,
            reason=f"Cancellation window of {window} minutes has passed",
        )
    return CancellationVerdict(
        can_cancel=True,
        should_restore_vouchers=False,
        reason="Cancellation allowed within time window",
        remaining_minutes=round(window - age_minutes),
    )
