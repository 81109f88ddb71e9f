from __future__ import annotations

import pytest
import redis
from sqlmodel import select

from app.enums import MealWindow
from app.models import AutoOrderLog
from app.services.config_service import AutoOrderConfig, BusinessConfig
from app.worker import scheduler, tasks


class _StaticProvider:
    def __init__(self, config: BusinessConfig) -> None:
        self.config = config
        self.refreshed = 0

    def get(self) -> BusinessConfig:
        return self.config

    def refresh(self) -> BusinessConfig:
        self.refreshed += 1
        return self.config


@pytest.fixture()
def provider(monkeypatch, engine, config) -> _StaticProvider:
    static = _StaticProvider(config)
    monkeypatch.setattr(tasks, "engine", engine)
    monkeypatch.setattr(tasks, "get_config_provider", lambda: static)
    return static


def test_run_takes_and_releases_lock(db, factory, provider, fake_redis):
    factory.serviceable_customer(auto_ordering_enabled=True)

    stats = tasks.run_auto_orders(MealWindow.LUNCH)

    assert stats is not None
    assert stats.succeeded == 1
    assert provider.refreshed == 1
    assert fake_redis.store == {}
    assert len(db.exec(select(AutoOrderLog)).all()) == 1


def test_run_is_skipped_while_another_instance_holds_the_lock(db, factory, provider, fake_redis):
    factory.serviceable_customer(auto_ordering_enabled=True)
    fake_redis.store["auto_order:LUNCH:lock"] = "other-worker"

    assert tasks.run_auto_orders("LUNCH") is None

    assert provider.refreshed == 0
    assert fake_redis.store == {"auto_order:LUNCH:lock": "other-worker"}
    assert db.exec(select(AutoOrderLog)).all() == []


def test_lunch_lock_does_not_block_dinner(db, provider, fake_redis):
    fake_redis.store["auto_order:LUNCH:lock"] = "other-worker"

    stats = tasks.run_auto_orders(MealWindow.DINNER)

    assert stats is not None and stats.total == 0
    assert "auto_order:DINNER:lock" not in fake_redis.store


def test_run_is_skipped_when_redis_is_down(provider, monkeypatch):
    def _unavailable(*args, **kwargs):
        raise redis.ConnectionError("connection refused")

    monkeypatch.setattr(tasks, "acquire_lock", _unavailable)

    assert tasks.run_auto_orders(MealWindow.LUNCH) is None
    assert provider.refreshed == 0


def test_lock_is_released_when_batch_crashes(provider, monkeypatch, fake_redis):
    def _crash(**kwargs):
        raise RuntimeError("database gone")

    monkeypatch.setattr(tasks, "run_auto_order_batch", _crash)

    with pytest.raises(RuntimeError):
        tasks.run_auto_orders(MealWindow.LUNCH)
    assert fake_redis.store == {}


def test_dry_run_is_passed_through(db, factory, provider):
    factory.serviceable_customer(auto_ordering_enabled=True)

    stats = tasks.run_auto_orders(MealWindow.LUNCH, dry_run=True)

    assert stats.dry_run
    assert stats.succeeded == 1
    assert db.exec(select(AutoOrderLog)).all() == []


def test_scheduler_registers_one_job_per_meal_window(monkeypatch):
    config = BusinessConfig(
        timezone="Asia/Kolkata",
        auto_order=AutoOrderConfig(lunch_cron_time="09:45", dinner_cron_time="18:30"),
    )
    monkeypatch.setattr(scheduler, "get_config_provider", lambda: _StaticProvider(config))

    built = scheduler.build_scheduler()

    jobs = {job.id: job for job in built.get_jobs()}
    assert set(jobs) == {"auto_order_lunch", "auto_order_dinner"}
    lunch_fields = {f.name: str(f) for f in jobs["auto_order_lunch"].trigger.fields}
    dinner_fields = {f.name: str(f) for f in jobs["auto_order_dinner"].trigger.fields}
    assert (lunch_fields["hour"], lunch_fields["minute"]) == ("9", "45")
    assert (dinner_fields["hour"], dinner_fields["minute"]) == ("18", "30")
    assert str(jobs["auto_order_lunch"].trigger.timezone) == "Asia/Kolkata"
    assert jobs["auto_order_lunch"].args == (MealWindow.LUNCH,)
