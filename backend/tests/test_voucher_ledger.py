from __future__ import annotations

import re
from datetime import timedelta

import pytest
from sqlmodel import select

from app.api.errors import CutoffPassed, InsufficientVouchers
from app.crud import vouchers as ledger
from app.enums import MealWindow, RestorationReason, VoucherMealType, VoucherStatus
from app.models import Subscription, Voucher


def _redeem(db, config, user, count, window=MealWindow.LUNCH, **kwargs):
    return ledger.redeem_vouchers(
        session=db,
        user_id=user.id,
        count=count,
        meal_window=window,
        order_id=kwargs.pop("order_id", 9001),
        kitchen_id=kwargs.pop("kitchen_id", 7001),
        config=config,
        **kwargs,
    )


def _used(db, subscription_id: int) -> int:
    db.expire_all()
    return db.get(Subscription, subscription_id).vouchers_used


def test_issue_vouchers_is_idempotent(db, factory):
    user = factory.user()
    subscription = factory.subscription(user, vouchers=4)

    vouchers = factory.vouchers(user)
    assert len(vouchers) == 4
    assert all(re.fullmatch(r"VCH-[A-Z2-9]{5}-[A-Z2-9]{5}", v.code) for v in vouchers)
    assert all(v.status == VoucherStatus.AVAILABLE for v in vouchers)
    assert all(v.expiry_date == subscription.voucher_expiry_date for v in vouchers)

    assert ledger.issue_vouchers(session=db, subscription=subscription) == []
    assert len(factory.vouchers(user)) == 4


def test_redeem_marks_vouchers_and_moves_counter(db, factory, config, clock):
    user = factory.user()
    subscription = factory.subscription(user, vouchers=5)

    ids = _redeem(db, config, user, 2, order_id=123, kitchen_id=456)

    assert len(ids) == 2
    redeemed = [v for v in factory.vouchers(user) if v.id in ids]
    for voucher in redeemed:
        assert voucher.status == VoucherStatus.REDEEMED
        assert voucher.redeemed_order_id == 123
        assert voucher.redeemed_kitchen_id == 456
        assert voucher.redeemed_meal_window == MealWindow.LUNCH
        assert voucher.redeemed_at == clock.now
    assert _used(db, subscription.id) == 2
    assert ledger.get_available_voucher_count(session=db, user_id=user.id) == 3


def test_redeem_is_fifo_by_expiry_across_subscriptions(db, factory, config):
    user = factory.user()
    late = factory.subscription(user, vouchers=2, expires_in=timedelta(days=60))
    early = factory.subscription(user, vouchers=2, expires_in=timedelta(days=5))

    ids = _redeem(db, config, user, 3)

    by_id = {v.id: v for v in factory.vouchers(user)}
    assert sorted(by_id[i].subscription_id for i in ids) == sorted(
        [early.id, early.id, late.id]
    )
    assert _used(db, early.id) == 2
    assert _used(db, late.id) == 1


def test_redeem_zero_returns_empty_even_after_cutoff(db, factory, config, clock):
    user = factory.user()
    factory.subscription(user, vouchers=1)
    clock.at(23, 0)

    assert _redeem(db, config, user, 0) == []


def test_redeem_insufficient_leaves_ledger_untouched(db, factory, config):
    user = factory.user()
    subscription = factory.subscription(user, vouchers=2)

    with pytest.raises(InsufficientVouchers) as exc:
        _redeem(db, config, user, 3)

    assert exc.value.message == "Only 2 vouchers available, 3 requested"
    assert exc.value.available == 2
    assert exc.value.status_code == 409
    assert all(v.status == VoucherStatus.AVAILABLE for v in factory.vouchers(user))
    assert _used(db, subscription.id) == 0


def test_redeem_after_cutoff_raises_before_touching_ledger(db, factory, config, clock):
    user = factory.user()
    subscription = factory.subscription(user, vouchers=2)
    clock.at(11, 0)

    with pytest.raises(CutoffPassed) as exc:
        _redeem(db, config, user, 1)

    assert exc.value.cutoff_time == "11:00"
    assert "LUNCH ordering closed" in exc.value.message
    assert _used(db, subscription.id) == 0

    # Dinner is still open at 11:00.
    assert len(_redeem(db, config, user, 1, window=MealWindow.DINNER)) == 1


def test_redeem_uses_kitchen_end_time_as_cutoff(db, factory, config, clock):
    user = factory.user()
    factory.subscription(user, vouchers=2)
    kitchen = factory.kitchen(lunch_start_time="11:00", lunch_end_time="12:30")
    clock.at(12, 0)

    with pytest.raises(CutoffPassed):
        _redeem(db, config, user, 1)
    assert len(_redeem(db, config, user, 1, kitchen=kitchen, kitchen_id=kitchen.id)) == 1


def test_meal_type_and_expiry_filter_spendable_vouchers(db, factory, config, clock):
    user = factory.user()
    factory.subscription(user, vouchers=2, meal_type=VoucherMealType.LUNCH)
    factory.subscription(user, vouchers=1, expires_in=timedelta(minutes=30))

    assert ledger.get_available_voucher_count(session=db, user_id=user.id, meal_window=MealWindow.DINNER) == 1
    assert ledger.get_available_voucher_count(session=db, user_id=user.id, meal_window=MealWindow.LUNCH) == 3

    clock.advance(minutes=31)
    assert ledger.get_available_voucher_count(session=db, user_id=user.id, meal_window=MealWindow.DINNER) == 0
    with pytest.raises(InsufficientVouchers):
        _redeem(db, config, user, 1, window=MealWindow.DINNER)


def test_concurrent_redemption_is_detected_and_rolled_back(db, factory, config, monkeypatch):
    user = factory.user()
    subscription = factory.subscription(user, vouchers=2)
    first, second = [v.id for v in factory.vouchers(user)]

    real_select = ledger._select_candidates

    def _select_then_lose_race(session, **kwargs):
        ids = real_select(session, **kwargs)
        # Another request redeems one of our candidates between select and update.
        voucher = session.get(Voucher, second)
        voucher.status = VoucherStatus.REDEEMED
        session.add(voucher)
        session.flush()
        return ids

    monkeypatch.setattr(ledger, "_select_candidates", _select_then_lose_race)

    with pytest.raises(InsufficientVouchers) as exc:
        _redeem(db, config, user, 2)

    assert exc.value.message == "Voucher state changed during redemption, please retry"
    statuses = {v.id: v.status for v in factory.vouchers(user)}
    assert statuses == {first: VoucherStatus.AVAILABLE, second: VoucherStatus.AVAILABLE}
    assert _used(db, subscription.id) == 0


def test_restore_returns_vouchers_and_clears_attribution(db, factory, config, clock):
    user = factory.user()
    subscription = factory.subscription(user, vouchers=3)
    ids = _redeem(db, config, user, 2)

    result = ledger.restore_vouchers(
        session=db, voucher_ids=ids, reason=RestorationReason.ORDER_CANCELLED
    )

    assert result.success and result.count == 2
    for voucher in factory.vouchers(user):
        if voucher.id in ids:
            assert voucher.status == VoucherStatus.RESTORED
            assert voucher.restoration_reason == RestorationReason.ORDER_CANCELLED
            assert voucher.redeemed_order_id is None
            assert voucher.redeemed_at is None
            assert voucher.restored_at == clock.now
    assert _used(db, subscription.id) == 0

    # Restored vouchers are spendable again.
    assert len(_redeem(db, config, user, 3)) == 3


def test_restore_is_idempotent(db, factory, config):
    user = factory.user()
    subscription = factory.subscription(user, vouchers=2)
    ids = _redeem(db, config, user, 2)

    assert ledger.restore_vouchers(session=db, voucher_ids=ids, reason="cancelled").count == 2
    assert ledger.restore_vouchers(session=db, voucher_ids=ids, reason="cancelled").count == 0
    assert _used(db, subscription.id) == 0


def test_restore_skips_expired_unless_forced(db, factory, config, clock):
    user = factory.user()
    subscription = factory.subscription(user, vouchers=1, expires_in=timedelta(hours=2))
    ids = _redeem(db, config, user, 1)
    expiry = factory.vouchers(user)[0].expiry_date

    clock.advance(hours=3)
    assert ledger.restore_vouchers(session=db, voucher_ids=ids, reason="cancel").count == 0
    assert _used(db, subscription.id) == 1

    forced = ledger.restore_vouchers(
        session=db, voucher_ids=ids, reason=RestorationReason.ADMIN_ACTION, force=True
    )
    assert forced.count == 1
    voucher = factory.vouchers(user)[0]
    assert voucher.status == VoucherStatus.RESTORED
    assert voucher.expiry_date == expiry
    assert ledger.get_available_voucher_count(session=db, user_id=user.id) == 0
    assert _used(db, subscription.id) == 0


def test_restore_failure_is_reported_not_raised(db, factory, config, monkeypatch):
    user = factory.user()
    factory.subscription(user, vouchers=1)
    ids = _redeem(db, config, user, 1)

    def _boom(*args, **kwargs):
        raise RuntimeError("db down")

    monkeypatch.setattr(ledger, "_move_vouchers", _boom)
    result = ledger.restore_vouchers(session=db, voucher_ids=ids, reason="cancel")

    assert not result.success
    assert result.count == 0
    assert "db down" in result.error

    with pytest.raises(RuntimeError):
        ledger.restore_vouchers(session=db, voucher_ids=ids, reason="cancel", commit=False)


@pytest.mark.parametrize(
    "reason, expected",
    [
        ("ORDER_REJECTED", RestorationReason.ORDER_REJECTED),
        ("Order cancelled by customer", RestorationReason.ORDER_CANCELLED),
        ("kitchen rejected", RestorationReason.ORDER_REJECTED),
        ("Payment failed", RestorationReason.PAYMENT_FAILED),
        ("admin override", RestorationReason.ADMIN_ACTION),
        ("something else", RestorationReason.OTHER),
    ],
)
def test_normalize_restoration_reason(reason, expected):
    assert ledger.normalize_restoration_reason(reason) == expected


def test_balance_summary_and_availability(db, factory, config, clock):
    user = factory.user()
    factory.subscription(user, vouchers=3, expires_in=timedelta(days=10))
    factory.subscription(user, vouchers=2, expires_in=timedelta(days=3))
    ids = _redeem(db, config, user, 2)
    ledger.restore_vouchers(session=db, voucher_ids=ids[:1], reason="cancel")

    summary = ledger.get_voucher_balance_summary(session=db, user_id=user.id)

    assert summary["balance"] == {
        "total": 5,
        "available": 3,
        "redeemed": 1,
        "restored": 1,
        "expired": 0,
        "cancelled": 0,
        "usable": 4,
    }
    soonest = summary["expiring_next"]
    assert soonest["count"] == 4
    assert soonest["soonest_expiry"] == clock.now + timedelta(days=3)
    assert soonest["days_remaining"] == 3

    availability = ledger.check_voucher_availability(
        session=db, user_id=user.id, count=5, meal_window=MealWindow.LUNCH
    )
    assert (availability.has_enough, availability.available, availability.requested) == (False, 4, 5)


def test_balance_summary_without_vouchers(db, factory):
    user = factory.user()
    summary = ledger.get_voucher_balance_summary(session=db, user_id=user.id)
    assert summary["balance"]["total"] == 0
    assert summary["expiring_next"] is None


def test_counter_matches_redeemed_rows(db, factory, config):
    user = factory.user()
    subscription = factory.subscription(user, vouchers=4)
    ids = _redeem(db, config, user, 3)
    ledger.restore_vouchers(session=db, voucher_ids=ids[1:], reason="reject")

    redeemed = db.exec(
        select(Voucher).where(
            Voucher.subscription_id == subscription.id,
            Voucher.status == VoucherStatus.REDEEMED.value,
        )
    ).all()
    assert _used(db, subscription.id) == len(redeemed) == 1
