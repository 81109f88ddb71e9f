from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import update
from sqlmodel import select

from app.crud.auto_order_logs import (
    get_failure_summary,
    get_logs_by_cron_run,
    get_recent_failures_by_user,
)
from app.enums import (
    AutoOrderStatus,
    DefaultMealType,
    FailureCategory,
    MealWindow,
    OrderActor,
    OrderStatus,
    PaymentMethod,
    VoucherMealType,
    VoucherStatus,
)
from app.models import AutoOrderLog, Order, Subscription, Zone
from app.services import auto_order_service
from app.services.auto_order_service import (
    is_paused,
    is_slot_skipped,
    new_cron_run_id,
    run_auto_order_batch,
)
from app.services.config_service import AutoOrderConfig, BusinessConfig
from app.services.order_state import get_timeline


def _customer(factory, **kwargs):
    kwargs.setdefault("auto_ordering_enabled", True)
    return factory.serviceable_customer(**kwargs)


def _run(db, config, **kwargs):
    return run_auto_order_batch(
        session=db, meal_window=kwargs.pop("meal_window", MealWindow.LUNCH), config=config, **kwargs
    )


def _used(db, subscription_id: int) -> int:
    db.expire_all()
    return db.get(Subscription, subscription_id).vouchers_used


def test_successful_auto_order(db, factory, config, fake_redis):
    user, address, kitchen, lunch, _, subscription = _customer(factory)

    stats = _run(db, config)

    assert (stats.total, stats.processed, stats.succeeded) == (1, 1, 1)
    [result] = stats.outcomes
    order = db.get(Order, result.order_id)
    assert order.is_auto_order
    assert order.status == OrderStatus.ACCEPTED
    assert order.payment_method == PaymentMethod.VOUCHER_ONLY
    assert order.subscription_id == subscription.id
    assert order.kitchen_id == kitchen.id
    assert order.delivery_address_id == address.id
    assert order.items[0]["menu_item_id"] == lunch.id
    assert [e.actor for e in get_timeline(db, order.id)] == [OrderActor.SYSTEM, OrderActor.SYSTEM]

    [voucher] = [v for v in factory.vouchers(user) if v.status == VoucherStatus.REDEEMED]
    assert voucher.redeemed_order_id == order.id
    assert _used(db, subscription.id) == 1

    [log] = get_logs_by_cron_run(session=db, cron_run_id=stats.cron_run_id)
    assert log.status == AutoOrderStatus.SUCCESS
    assert log.order_number == order.order_number
    assert log.processed_date == date(2026, 10, 19)
    assert log.context["kitchen_id"] == kitchen.id

    assert fake_redis.events(f"user:{user.id}") == ["AUTO_ORDER_SUCCESS"]
    assert fake_redis.events(f"kitchen:{kitchen.id}") == ["NEW_AUTO_ACCEPTED_ORDER"]


def test_without_auto_accept_order_waits_for_kitchen(db, factory, fake_redis):
    config = BusinessConfig(
        timezone="Asia/Kolkata", auto_order=AutoOrderConfig(auto_accept_orders=False)
    )
    _, _, kitchen, _, _, _ = _customer(factory)

    stats = _run(db, config)

    order = db.get(Order, stats.outcomes[0].order_id)
    assert order.status == OrderStatus.PLACED
    assert fake_redis.events(f"kitchen:{kitchen.id}") == ["NEW_AUTO_ORDER"]


def test_one_crashing_subscription_does_not_stop_the_batch(db, factory, config, monkeypatch):
    customers = [_customer(factory) for _ in range(5)]
    crashing_user = customers[2][0]
    real_resolve = auto_order_service.resolve_zone

    def _resolve_zone(*, session, address):
        if address.user_id == crashing_user.id:
            raise RuntimeError("zone lookup exploded")
        return real_resolve(session=session, address=address)

    monkeypatch.setattr(auto_order_service, "resolve_zone", _resolve_zone)

    stats = _run(db, config)

    assert (stats.total, stats.processed, stats.succeeded, stats.failed) == (5, 5, 4, 1)
    logs = get_logs_by_cron_run(session=db, cron_run_id=stats.cron_run_id)
    assert len(logs) == 5
    [crashed] = [log for log in logs if log.user_id == crashing_user.id]
    assert crashed.status == AutoOrderStatus.FAILED
    assert crashed.failure_category == FailureCategory.UNKNOWN
    assert crashed.reason == "zone lookup exploded"

    assert len(db.exec(select(Order)).all()) == 4
    assert _used(db, customers[2][5].id) == 0
    for customer in customers[:2] + customers[3:]:
        assert _used(db, customer[5].id) == 1


def test_failure_categories_and_notifications(db, factory, config, fake_redis):
    expected = {}

    user, *_ = _customer(factory, is_paused=True)
    expected[user.id] = (AutoOrderStatus.SKIPPED, FailureCategory.SUBSCRIPTION_PAUSED)

    user, *_ = _customer(
        factory, pincode="560002", skipped_slots=[{"date": "2026-10-19", "meal_window": "LUNCH"}]
    )
    expected[user.id] = (AutoOrderStatus.SKIPPED, FailureCategory.SLOT_SKIPPED)

    user, *_ = _customer(factory, pincode="560003", meal_type=VoucherMealType.DINNER)
    expected[user.id] = (AutoOrderStatus.FAILED, FailureCategory.NO_VOUCHERS)

    user = factory.user()
    factory.subscription(user, auto_ordering_enabled=True)
    expected[user.id] = (AutoOrderStatus.FAILED, FailureCategory.NO_ADDRESS)

    user = factory.user()
    factory.address(user, pincode="999999")
    factory.subscription(user, auto_ordering_enabled=True)
    expected[user.id] = (AutoOrderStatus.FAILED, FailureCategory.NO_ZONE)

    user = factory.user()
    factory.address(user, zone=factory.zone("110001", ordering_enabled=False))
    factory.subscription(user, auto_ordering_enabled=True)
    expected[user.id] = (AutoOrderStatus.FAILED, FailureCategory.NO_ZONE)

    user = factory.user()
    factory.address(user, zone=factory.zone("110002"))
    factory.subscription(user, auto_ordering_enabled=True)
    expected[user.id] = (AutoOrderStatus.FAILED, FailureCategory.NO_KITCHEN)

    user = factory.user()
    empty_zone = factory.zone("110003")
    factory.kitchen(zones=[empty_zone])
    factory.address(user, zone=empty_zone)
    factory.subscription(user, auto_ordering_enabled=True)
    expected[user.id] = (AutoOrderStatus.FAILED, FailureCategory.NO_MENU_ITEM)

    stats = _run(db, config)

    assert stats.processed == len(expected)
    assert (stats.succeeded, stats.skipped, stats.failed) == (0, 2, 6)
    logs = get_logs_by_cron_run(session=db, cron_run_id=stats.cron_run_id)
    assert {log.user_id: (log.status, log.failure_category) for log in logs} == expected

    events = {
        user_id: fake_redis.events(f"user:{user_id}") for user_id in expected
    }
    by_category = {expected[user_id][1]: evs for user_id, evs in events.items()}
    assert by_category[FailureCategory.SUBSCRIPTION_PAUSED] == []
    assert by_category[FailureCategory.SLOT_SKIPPED] == []
    assert by_category[FailureCategory.NO_VOUCHERS] == ["AUTO_ORDER_FAILED_NO_VOUCHERS"]
    assert by_category[FailureCategory.NO_ADDRESS] == ["AUTO_ORDER_FAILED_NO_ADDRESS"]
    assert by_category[FailureCategory.NO_ZONE] == ["AUTO_ORDER_FAILED_NO_ZONE"]
    assert by_category[FailureCategory.NO_KITCHEN] == ["AUTO_ORDER_FAILED_NO_KITCHEN"]
    assert by_category[FailureCategory.NO_MENU_ITEM] == ["AUTO_ORDER_FAILED_NO_MENU"]

    summary = get_failure_summary(session=db, date_from=date(2026, 10, 19), date_to=date(2026, 10, 19))
    counts = {row["failure_category"]: row["count"] for row in summary}
    assert counts["NO_ZONE"] == 2
    assert counts["SLOT_SKIPPED"] == 1
    assert sum(counts.values()) == 8
    assert get_failure_summary(session=db, date_from=date(2026, 10, 20), date_to=date(2026, 10, 21)) == []


def test_recent_failures_are_listed_newest_first(db, factory, config):
    user = factory.user()
    factory.subscription(user, auto_ordering_enabled=True)
    paused, *_ = _customer(factory, is_paused=True)

    _run(db, config, meal_window=MealWindow.LUNCH)
    _run(db, config, meal_window=MealWindow.DINNER)

    failures = get_recent_failures_by_user(session=db, user_id=user.id)
    assert [log.meal_window for log in failures] == [MealWindow.DINNER, MealWindow.LUNCH]
    assert all(log.failure_category == FailureCategory.NO_ADDRESS for log in failures)
    assert len(get_recent_failures_by_user(session=db, user_id=user.id, limit=1)) == 1
    # skipped attempts are not failures
    assert get_recent_failures_by_user(session=db, user_id=paused.id) == []


def test_only_eligible_subscriptions_are_processed(db, factory, config, clock):
    _customer(factory)
    _customer(factory, auto_ordering_enabled=False)
    _customer(factory, default_meal_type=DefaultMealType.DINNER)
    _customer(factory, expires_in=timedelta(minutes=5))
    _customer(factory, status="CANCELLED")
    _, _, _, _, _, used_up = _customer(factory, vouchers=1)
    db.exec(update(Subscription).where(Subscription.id == used_up.id).values(vouchers_used=1))
    db.commit()

    clock.advance(minutes=10)
    stats = _run(db, config)

    assert stats.total == 1
    assert stats.succeeded == 1

    dinner = _run(db, config, meal_window=MealWindow.DINNER)
    assert dinner.total == 2


def test_paused_until_in_the_past_is_not_paused(db, factory, config, clock):
    user, *_ = _customer(factory, is_paused=True, paused_until=clock.now - timedelta(hours=1))

    stats = _run(db, config)

    assert stats.succeeded == 1
    assert stats.outcomes[0].user_id == user.id


def test_preferred_kitchen_is_used_when_it_serves_the_zone(db, factory, config):
    user, address, *_ = _customer(factory)
    preferred = factory.kitchen(zones=[db.get(Zone, address.zone_id)])
    factory.menu_item(preferred, name="Standard Meal")
    subscription = db.exec(select(Subscription).where(Subscription.user_id == user.id)).one()
    subscription.default_kitchen_id = preferred.id
    db.add(subscription)
    db.commit()

    stats = _run(db, config)

    assert db.get(Order, stats.outcomes[0].order_id).kitchen_id == preferred.id


def test_dry_run_writes_nothing(db, factory, config, fake_redis):
    *_, subscription = _customer(factory)
    _customer(factory, is_paused=True)

    stats = _run(db, config, dry_run=True)

    assert stats.dry_run
    assert (stats.processed, stats.succeeded, stats.skipped) == (2, 1, 1)
    success = next(o for o in stats.outcomes if o.status == AutoOrderStatus.SUCCESS)
    assert success.reason == "Dry run: order would be placed"
    assert success.order_id is None
    assert "menu_item_id" in success.context
    assert db.exec(select(Order)).all() == []
    assert db.exec(select(AutoOrderLog)).all() == []
    assert _used(db, subscription.id) == 0
    assert fake_redis.messages == []


def test_disabled_auto_ordering_does_nothing(db, factory):
    config = BusinessConfig(timezone="Asia/Kolkata", auto_order=AutoOrderConfig(enabled=False))
    _customer(factory)

    stats = _run(db, config)

    assert stats.total == stats.processed == 0
    assert db.exec(select(AutoOrderLog)).all() == []


def test_redemption_failure_after_cutoff(db, factory, config, clock, fake_redis):
    user, *_, subscription = _customer(factory)
    clock.at(11, 30)

    stats = _run(db, config)

    [result] = stats.outcomes
    assert result.status == AutoOrderStatus.FAILED
    assert result.failure_category == FailureCategory.VOUCHER_REDEMPTION_FAILED
    assert "LUNCH ordering closed" in result.reason
    assert _used(db, subscription.id) == 0
    assert fake_redis.events(f"user:{user.id}") == ["AUTO_ORDER_FAILED_GENERIC"]


def test_order_creation_failure_rolls_back_redemption(db, factory, config, monkeypatch):
    _, _, _, _, _, subscription = _customer(factory)

    def _broken_create_order(*args, **kwargs):
        raise RuntimeError("insert failed")

    monkeypatch.setattr(auto_order_service, "create_order", _broken_create_order)

    stats = _run(db, config)

    [result] = stats.outcomes
    assert result.failure_category == FailureCategory.ORDER_CREATION_FAILED
    assert result.reason == "insert failed"
    assert _used(db, subscription.id) == 0
    assert db.exec(select(Order)).all() == []


def test_notification_outage_does_not_fail_batch(db, factory, config, fake_redis):
    _customer(factory)
    fake_redis.fail_xadd = True

    stats = _run(db, config)

    assert stats.succeeded == 1
    assert len(db.exec(select(AutoOrderLog)).all()) == 1


def test_is_paused_and_slot_helpers(clock):
    now = clock.now
    sub = Subscription(user_id=1, voucher_expiry_date=now, is_paused=True)
    assert is_paused(sub, now)
    sub.paused_until = now + timedelta(days=1)
    assert is_paused(sub, now)
    sub.paused_until = now - timedelta(seconds=1)
    assert not is_paused(sub, now)

    sub.skipped_slots = [{"date": "2026-10-19T00:00:00", "meal_window": "DINNER"}]
    assert is_slot_skipped(sub, date(2026, 10, 19), MealWindow.DINNER)
    assert not is_slot_skipped(sub, date(2026, 10, 19), MealWindow.LUNCH)
    assert not is_slot_skipped(sub, date(2026, 10, 20), MealWindow.DINNER)


@pytest.mark.parametrize("window", [MealWindow.LUNCH, MealWindow.DINNER])
def test_cron_run_id_format(window):
    run_id = new_cron_run_id(window, datetime(2026, 10, 19, 4, 30, tzinfo=timezone.utc))
    assert re.fullmatch(rf"{window.value}-20261019043000-[0-9a-f]{{8}}", run_id)
