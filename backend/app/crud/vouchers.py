"""
券账本 CRUD

核销（redeem）和退回（restore）是仅有的两个修改券状态的入口，
两者都经过 _move_vouchers：券状态更新和订阅 vouchers_used 计数
在同一个事务里一起变，任何调用方都不要自己改计数。

并发安全靠"先选候选 -> 条件更新时重新检查状态 -> 核对实际更新行数"：
更新行数不等于请求数量就回滚整个事务，不做任何补偿。
"""
from __future__ import annotations

import logging
import math
import secrets
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import update
from sqlmodel import Session, func, select

from app.api.errors import CutoffPassed, InsufficientVouchers
from app.enums import MealWindow, RestorationReason, VoucherMealType, VoucherStatus
from app.models import Kitchen, Subscription, Voucher, utc_now
from app.services.config_service import BusinessConfig
from app.services.cutoff import check_cutoff

logger = logging.getLogger(__name__)

SPENDABLE_STATUSES = (VoucherStatus.AVAILABLE.value, VoucherStatus.RESTORED.value)

# 去掉 0/O、1/I 这类容易看错的字符
VOUCHER_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


@dataclass(frozen=True)
class RestoreResult:
    count: int
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class VoucherAvailability:
    has_enough: bool
    available: int
    requested: int


def generate_voucher_code() -> str:
    """生成券码，格式 VCH-XXXXX-XXXXX"""
    first = "".join(secrets.choice(VOUCHER_CODE_ALPHABET) for _ in range(5))
    second = "".join(secrets.choice(VOUCHER_CODE_ALPHABET) for _ in range(5))
    return f"VCH-{first}-{second}"


def normalize_restoration_reason(reason: RestorationReason | str) -> RestorationReason:
    """把调用方传入的原因（枚举或自由文本）归一成退回原因码"""
    try:
        return RestorationReason(reason)
    except ValueError:
        pass
    text = str(reason).lower()
    if "cancel" in text:
        return RestorationReason.ORDER_CANCELLED
    if "reject" in text:
        return RestorationReason.ORDER_REJECTED
    if "payment" in text:
        return RestorationReason.PAYMENT_FAILED
    if "admin" in text:
        return RestorationReason.ADMIN_ACTION
    return RestorationReason.OTHER


def _spendable(stmt: Any, *, user_id: int, meal_window: MealWindow | str | None, now: datetime) -> Any:
    """可花费条件：AVAILABLE/RESTORED、未过期、餐段匹配（ANY 或指定餐段）"""
    stmt = stmt.where(
        Voucher.user_id == user_id,
        Voucher.status.in_(SPENDABLE_STATUSES),
        Voucher.expiry_date > now,
    )
    if meal_window is not None:
        stmt = stmt.where(
            Voucher.meal_type.in_([VoucherMealType.ANY.value, MealWindow(meal_window).value])
        )
    return stmt


def _expire_cached(session: Session, model: type, ids: Sequence[int]) -> None:
    # 批量 UPDATE 不同步会话里已加载的对象，这里让它们下次访问时重新加载
    for pk in ids:
        obj = session.identity_map.get(Session.identity_key(model, pk))
        if obj is not None:
            session.expire(obj)


def _move_vouchers(
    session: Session,
    *,
    voucher_ids: Sequence[int],
    from_statuses: Sequence[str],
    values: dict[str, Any],
    counter_step: int,
    now: datetime,
    extra_conditions: Sequence[Any] = (),
) -> list[tuple[int, int]]:
    """
    条件更新券状态，并按订阅同步 vouchers_used

    UPDATE 时重新检查 from_statuses，返回实际被更新的 (voucher_id, subscription_id)。
    不提交事务，由调用方决定提交或回滚。
    """
    stmt = (
        update(Voucher)
        .where(
            Voucher.id.in_(list(voucher_ids)),
            Voucher.status.in_(list(from_statuses)),
            *extra_conditions,
        )
        .values(**values)
        .returning(Voucher.id, Voucher.subscription_id)
        .execution_options(synchronize_session=False)
    )
    rows = [(row[0], row[1]) for row in session.exec(stmt).all()]

    per_subscription = Counter(subscription_id for _, subscription_id in rows)
    for subscription_id, moved in per_subscription.items():
        session.exec(
            update(Subscription)
            .where(Subscription.id == subscription_id)
            .values(
                vouchers_used=Subscription.vouchers_used + counter_step * moved,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

    _expire_cached(session, Voucher, [voucher_id for voucher_id, _ in rows])
    _expire_cached(session, Subscription, list(per_subscription))
    return rows


def _select_candidates(
    session: Session, *, user_id: int, count: int, meal_window: MealWindow, now: datetime
) -> list[int]:
    # FIFO：最早过期的先用
    stmt = _spendable(select(Voucher.id), user_id=user_id, meal_window=meal_window, now=now)
    stmt = stmt.order_by(Voucher.expiry_date, Voucher.id).limit(count)
    return list(session.exec(stmt).all())


def redeem_vouchers(
    *,
    session: Session,
    user_id: int,
    count: int,
    meal_window: MealWindow | str,
    order_id: int | None,
    kitchen_id: int,
    config: BusinessConfig,
    now: datetime | None = None,
    kitchen: Kitchen | None = None,
    commit: bool = True,
) -> list[int]:
    """
    核销券

    先检查截单时间，已截单直接抛 CutoffPassed，不碰账本。
    按过期时间 FIFO 选出 count 张可花费的券，条件更新为 REDEEMED，
    实际更新数量不等于 count（可能是并发核销抢先）就回滚并抛 InsufficientVouchers。

    commit=False 时由调用方在同一事务里继续写订单后统一提交；
    失败时仍然会回滚整个会话。

    Returns:
        被核销的券 ID 列表（count 为 0 时返回空列表）
    """
    if count < 0:
        raise ValueError("count must be >= 0")
    if count == 0:
        return []

    now = now or utc_now()
    cutoff = check_cutoff(meal_window, config=config, now=now, kitchen=kitchen)
    if cutoff.is_past_cutoff:
        raise CutoffPassed(cutoff.message, cutoff_time=cutoff.cutoff_time)
    window = MealWindow(meal_window)

    try:
        candidate_ids = _select_candidates(
            session, user_id=user_id, count=count, meal_window=window, now=now
        )
        if len(candidate_ids) < count:
            raise InsufficientVouchers(
                f"Only {len(candidate_ids)} vouchers available, {count} requested",
                available=len(candidate_ids),
                requested=count,
            )

        rows = _move_vouchers(
            session,
            voucher_ids=candidate_ids,
            from_statuses=SPENDABLE_STATUSES,
            values={
                "status": VoucherStatus.REDEEMED.value,
                "redeemed_at": now,
                "redeemed_order_id": order_id,
                "redeemed_kitchen_id": kitchen_id,
                "redeemed_meal_window": window.value,
            },
            counter_step=1,
            now=now,
            extra_conditions=[Voucher.expiry_date > now],
        )
        if len(rows) != count:
            raise InsufficientVouchers(
                "Voucher state changed during redemption, please retry",
                available=len(rows),
                requested=count,
            )
        if commit:
            session.commit()
    except Exception:
        session.rollback()
        raise

    redeemed = {voucher_id for voucher_id, _ in rows}
    logger.info(
        "Redeemed %d vouchers for user %s (%s, order=%s, subscriptions=%d)",
        count,
        user_id,
        window.value,
        order_id,
        len({subscription_id for _, subscription_id in rows}),
    )
    return [voucher_id for voucher_id in candidate_ids if voucher_id in redeemed]


def restore_vouchers(
    *,
    session: Session,
    voucher_ids: Sequence[int],
    reason: RestorationReason | str,
    force: bool = False,
    now: datetime | None = None,
    commit: bool = True,
) -> RestoreResult:
    """
    退回券

    只处理当前是 REDEEMED 的券，其他状态静默跳过（多处触发退回时天然幂等）。
    force=False 时过期的券不退；force=True（管理员）过期的也退，但不延长过期时间，
    退回后依然不可花费。

    commit=True 时尽力而为：出错回滚并返回 error，不抛异常。
    commit=False 时事务属于调用方，出错直接抛出，由调用方整体回滚。
    """
    if not voucher_ids:
        return RestoreResult(count=0)

    now = now or utc_now()
    reason_code = normalize_restoration_reason(reason)
    conditions = [] if force else [Voucher.expiry_date > now]

    try:
        rows = _move_vouchers(
            session,
            voucher_ids=voucher_ids,
            from_statuses=(VoucherStatus.REDEEMED.value,),
            values={
                "status": VoucherStatus.RESTORED.value,
                "restored_at": now,
                "restoration_reason": reason_code.value,
                "redeemed_at": None,
                "redeemed_order_id": None,
                "redeemed_kitchen_id": None,
                "redeemed_meal_window": None,
            },
            counter_step=-1,
            now=now,
            extra_conditions=conditions,
        )
        if commit:
            session.commit()
    except Exception as exc:
        session.rollback()
        if not commit:
            raise
        logger.exception("Failed to restore vouchers %s", list(voucher_ids))
        return RestoreResult(count=0, error=str(exc))

    logger.info(
        "Restored %d/%d vouchers (%s, force=%s)",
        len(rows),
        len(voucher_ids),
        reason_code.value,
        force,
    )
    return RestoreResult(count=len(rows))


def get_available_voucher_count(
    *,
    session: Session,
    user_id: int,
    meal_window: MealWindow | str | None = None,
    now: datetime | None = None,
) -> int:
    """可花费券数量（与核销使用相同的筛选条件）"""
    stmt = _spendable(
        select(func.count()).select_from(Voucher),
        user_id=user_id,
        meal_window=meal_window,
        now=now or utc_now(),
    )
    return int(session.exec(stmt).one())


def check_voucher_availability(
    *,
    session: Session,
    user_id: int,
    count: int,
    meal_window: MealWindow | str | None = None,
    now: datetime | None = None,
) -> VoucherAvailability:
    """下单前预检券是否足够"""
    available = get_available_voucher_count(
        session=session, user_id=user_id, meal_window=meal_window, now=now
    )
    return VoucherAvailability(has_enough=available >= count, available=available, requested=count)


def get_voucher_balance_summary(
    *, session: Session, user_id: int, now: datetime | None = None
) -> dict[str, Any]:
    """
    券余额汇总

    balance 按状态计数，usable = available + restored（不区分是否过期）；
    expiring_next 取最早过期的最多 5 张可花费券。
    """
    now = now or utc_now()
    balance = {"total": 0, "available": 0, "redeemed": 0, "restored": 0, "expired": 0, "cancelled": 0}
    counts = session.exec(
        select(Voucher.status, func.count())
        .where(Voucher.user_id == user_id)
        .group_by(Voucher.status)
    ).all()
    for status, count in counts:
        balance[str(VoucherStatus(status).value).lower()] = count
        balance["total"] += count
    balance["usable"] = balance["available"] + balance["restored"]

    expiring = session.exec(
        _spendable(select(Voucher.expiry_date), user_id=user_id, meal_window=None, now=now)
        .order_by(Voucher.expiry_date)
        .limit(5)
    ).all()
    expiring_next = None
    if expiring:
        soonest = expiring[0]
        expiring_next = {
            "count": len(expiring),
            "soonest_expiry": soonest,
            "days_remaining": math.ceil((soonest - now).total_seconds() / 86400),
        }
    return {"balance": balance, "expiring_next": expiring_next}


def issue_vouchers(
    *,
    session: Session,
    subscription: Subscription,
    meal_type: VoucherMealType = VoucherMealType.ANY,
    commit: bool = True,
) -> list[Voucher]:
    """订阅激活时按 total_vouchers_issued 批量发券，已发过则不再发"""
    existing = session.exec(
        select(func.count()).select_from(Voucher).where(Voucher.subscription_id == subscription.id)
    ).one()
    if existing:
        return []

    codes: set[str] = set()
    while len(codes) < subscription.total_vouchers_issued:
        codes.add(generate_voucher_code())
    taken = set(session.exec(select(Voucher.code).where(Voucher.code.in_(list(codes)))).all())
    codes -= taken
    while len(codes) < subscription.total_vouchers_issued:
        code = generate_voucher_code()
        if code not in taken:
            codes.add(code)

    vouchers = [
        Voucher(
            code=code,
            subscription_id=subscription.id,
            user_id=subscription.user_id,
            meal_type=meal_type,
            status=VoucherStatus.AVAILABLE,
            expiry_date=subscription.voucher_expiry_date,
        )
        for code in sorted(codes)
    ]
    session.add_all(vouchers)
    if commit:
        session.commit()
    logger.info("Issued %d vouchers for subscription %s", len(vouchers), subscription.id)
    return vouchers
