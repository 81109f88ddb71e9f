"""
主键生成

所有表使用 64 位 Snowflake 整数主键（BigInteger，autoincrement=False），
由应用侧生成，批处理 worker 和 API 进程通过 SNOWFLAKE_NODE_ID 区分。

位布局：41 位毫秒时间戳 | 10 位节点 | 12 位序列。
"""
from __future__ import annotations

import threading
import time

from app.core.config import settings

# 2024-01-01T00:00:00Z
EPOCH_MS = 1704067200000

_NODE_BITS = 10
_SEQ_BITS = 12
_SEQ_MASK = (1 << _SEQ_BITS) - 1
_MAX_BACKWARD_MS = 5000


class SnowflakeGenerator:
    """线程安全的 Snowflake 生成器，同一毫秒最多 4096 个 ID"""

    def __init__(self, *, node_id: int) -> None:
        if not (0 <= node_id < (1 << _NODE_BITS)):
            raise ValueError("SNOWFLAKE_NODE_ID must be in [0, 1023]")
        self.node_id = node_id
        self._lock = threading.Lock()
        self._last_ms = -1
        self._sequence = 0

    def next_id(self) -> int:
        with self._lock:
            now_ms = _current_ms()
            if now_ms < self._last_ms:
                drift = self._last_ms - now_ms
                if drift > _MAX_BACKWARD_MS:
                    raise RuntimeError(f"Clock moved backwards by {drift}ms, refusing to issue ids")
                now_ms = _sleep_until(self._last_ms)

            if now_ms == self._last_ms:
                self._sequence = (self._sequence + 1) & _SEQ_MASK
                if self._sequence == 0:
                    now_ms = _sleep_until(self._last_ms + 1)
            else:
                self._sequence = 0

            self._last_ms = now_ms
            return (
                ((now_ms - EPOCH_MS) << (_NODE_BITS + _SEQ_BITS))
                | (self.node_id << _SEQ_BITS)
                | self._sequence
            )


def _current_ms() -> int:
    return time.time_ns() // 1_000_000


def _sleep_until(target_ms: int) -> int:
    now_ms = _current_ms()
    while now_ms < target_ms:
        time.sleep(0.0005)
        now_ms = _current_ms()
    return now_ms


_generator: SnowflakeGenerator | None = None
_generator_lock = threading.Lock()


def generate_id() -> int:
    """生成一个新的主键"""
    global _generator
    if _generator is None:
        with _generator_lock:
            if _generator is None:
                _generator = SnowflakeGenerator(node_id=settings.SNOWFLAKE_NODE_ID)
    return _generator.next_id()
