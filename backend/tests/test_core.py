from __future__ import annotations

import asyncio
import json
import time

import jwt
import pytest
import redis
from fastapi import HTTPException
from sqlmodel import select

from app import backend_pre_start
from app.api import deps
from app.core import redis as core_redis
from app.core import snowflake
from app.core.config import Settings, settings
from app.enums import NotificationEvent
from app.services.notification_service import Notifier


def _token(claims: dict) -> str:
    return jwt.encode({"exp": int(time.time()) + 60, **claims}, settings.SECRET_KEY, algorithm="HS256")


def test_health_check(client):
    r = client.get("/api/v1/utils/health-check/")
    assert r.status_code == 200
    assert r.json() is True


def test_http_exception_handler_dict_branch():
    from app import main as app_main

    exc = HTTPException(status_code=418, detail={"code": 418001, "message": "teapot"})
    resp = asyncio.run(app_main.http_error_handler(None, exc))  # type: ignore[arg-type]
    assert resp.status_code == 418
    assert json.loads(resp.body) == {"code": 418001, "message": "teapot", "data": None}


def test_deps_invalid_token_paths(client):
    # sub is not an int
    r = client.get("/api/v1/vouchers/balance", headers={"Authorization": f"Bearer {_token({'sub': 'abc'})}"})
    assert r.status_code == 401

    # missing sub
    r = client.get("/api/v1/vouchers/balance", headers={"Authorization": f"Bearer {_token({})}"})
    assert r.status_code == 401

    # user doesn't exist
    r = client.get("/api/v1/vouchers/balance", headers={"Authorization": f"Bearer {_token({'sub': '999999999'})}"})
    assert r.status_code == 401
    assert r.json()["message"] == "User not found"


def test_get_db_generator_uses_engine_override(engine, monkeypatch):
    monkeypatch.setattr(deps, "engine", engine)
    gen = deps.get_db()
    session = next(gen)
    assert session.exec(select(1)).one() == 1
    gen.close()


def test_snowflake_ids_are_unique_and_increasing():
    generator = snowflake.SnowflakeGenerator(node_id=7)
    ids = [generator.next_id() for _ in range(2000)]
    assert ids == sorted(ids)
    assert len(set(ids)) == len(ids)
    assert all((i >> 12) & 0x3FF == 7 for i in ids)


def test_snowflake_edge_cases(monkeypatch):
    with pytest.raises(ValueError):
        snowflake.SnowflakeGenerator(node_id=1024)

    # Small backwards drift waits for the clock to catch up.
    generator = snowflake.SnowflakeGenerator(node_id=1)
    generator._last_ms = snowflake.EPOCH_MS + 1000
    monkeypatch.setattr(snowflake, "_current_ms", lambda: snowflake.EPOCH_MS + 999)
    monkeypatch.setattr(snowflake, "_sleep_until", lambda target: target)
    assert generator.next_id() >> 22 == 1000

    # Large drift refuses to issue ids.
    generator._last_ms = snowflake.EPOCH_MS + 10_000
    with pytest.raises(RuntimeError):
        generator.next_id()

    # Sequence rollover moves to the next millisecond.
    rollover = snowflake.SnowflakeGenerator(node_id=1)
    rollover._last_ms = snowflake.EPOCH_MS + 2000
    rollover._sequence = 0xFFF
    monkeypatch.setattr(snowflake, "_current_ms", lambda: snowflake.EPOCH_MS + 2000)
    assert rollover.next_id() >> 22 == 2001


def test_snowflake_sleep_until_loop(monkeypatch):
    calls = [0, 0, 5]

    def fake_now_ms() -> int:
        return calls.pop(0) if calls else 5

    monkeypatch.setattr(snowflake, "_current_ms", fake_now_ms)
    monkeypatch.setattr(time, "sleep", lambda _: None)
    assert snowflake._sleep_until(5) == 5


def test_settings_reject_default_secrets_outside_local():
    with pytest.raises(ValueError):
        Settings(
            ENVIRONMENT="production",
            SECRET_KEY="changethis",
            POSTGRES_PASSWORD="not-changethis",
            POSTGRES_SERVER="localhost",
            POSTGRES_USER="postgres",
            POSTGRES_DB="app",
        )


def test_lock_is_only_released_by_its_owner(fake_redis):
    assert core_redis.acquire_lock("job:lock", "a", expire_seconds=5)
    assert not core_redis.acquire_lock("job:lock", "b", expire_seconds=5)

    assert not core_redis.release_lock("job:lock", "b")
    assert fake_redis.get("job:lock") == "a"
    assert core_redis.release_lock("job:lock", "a")
    assert fake_redis.get("job:lock") is None


def test_release_lock_swallows_redis_errors(monkeypatch):
    class _Down:
        def eval(self, *args):
            raise redis.ConnectionError("down")

    monkeypatch.setattr(core_redis, "get_redis", lambda: _Down())
    assert core_redis.release_lock("job:lock", "a") is False


def test_notifier_writes_to_stream(fake_redis):
    assert Notifier(stream="test-stream").notify("user:1", NotificationEvent.AUTO_ORDER_SUCCESS, {"order_number": "ORD-1"})

    [(stream, fields)] = fake_redis.messages
    assert stream == "test-stream"
    assert fields["target"] == "user:1"
    assert fields["event_type"] == "AUTO_ORDER_SUCCESS"
    assert json.loads(fields["payload"]) == {"order_number": "ORD-1"}


def test_notifier_failure_is_logged_not_raised(fake_redis, caplog):
    fake_redis.fail_xadd = True

    assert Notifier().notify("kitchen:1", "NEW_MANUAL_ORDER") is False
    assert "Failed to enqueue notification NEW_MANUAL_ORDER for kitchen:1" in caplog.text


def test_prestart_checks(engine, monkeypatch, tmp_path, fake_redis):
    from app.services import config_service

    path = tmp_path / "business.json"
    path.write_text(json.dumps({"timezone": "Asia/Kolkata"}))
    monkeypatch.setattr(backend_pre_start, "engine", engine)
    monkeypatch.setattr(backend_pre_start, "get_redis", lambda: fake_redis)
    monkeypatch.setattr(
        backend_pre_start, "get_config_provider", lambda: config_service.ConfigProvider(path)
    )

    backend_pre_start.main()
