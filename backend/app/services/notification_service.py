"""
通知投递

核心只负责把通知事件写入 Redis Stream，模板渲染和推送渠道由外部 worker 负责。
通知失败只记日志，绝不影响触发它的订单 / 账本操作。
"""
from __future__ import annotations

import json
import logging
from typing import Any

from app.core.config import settings
from app.core.redis import get_redis
from app.enums import NotificationEvent
from app.models import utc_now

logger = logging.getLogger(__name__)


def user_target(user_id: int) -> str:
    return f"user:{user_id}"


def kitchen_target(kitchen_id: int) -> str:
    """厨房角色地址，外部 worker 负责展开成该厨房的员工"""
    return f"kitchen:{kitchen_id}"


class Notifier:
    """通知写入器，redis 客户端在每次发送时获取（便于替换）"""

    def __init__(self, stream: str | None = None) -> None:
        self.stream = stream or settings.NOTIFICATION_STREAM

    def notify(
        self,
        target: str,
        event_type: NotificationEvent | str,
        template_vars: dict[str, Any] | None = None,
    ) -> bool:
        """
        发送通知（fire-and-forget）

        Returns:
            是否写入成功；失败时已记录日志
        """
        event = NotificationEvent(event_type).value
        try:
            get_redis().xadd(
                self.stream,
                {
                    "target": target,
                    "event_type": event,
                    "payload": json.dumps(template_vars or {}, default=str),
                    "created_at": utc_now().isoformat(),
                },
            )
        except Exception:
            logger.exception("Failed to enqueue notification %s for %s", event, target)
            return False
        return True


def get_notifier() -> Notifier:
    return Notifier()
