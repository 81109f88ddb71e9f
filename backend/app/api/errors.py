"""
自定义异常模块

定义应用特定的异常类，用于统一的错误处理。
所有业务异常都继承自 AppError，在 main.py 中有统一的异常处理器。

错误码约定（6 位）：
- 404xxx: 资源不存在
- 403xxx: 无权限
- 409xxx: 券账本 / 订单状态冲突
- 400xxx: 请求参数不满足业务规则
"""
from __future__ import annotations


class AppError(Exception):
    """
    应用自定义异常类

    用于业务逻辑中的错误处理，包含：
    - code: 业务错误码（用于前端区分不同错误）
    - message: 错误消息（用户友好的提示）
    - status_code: HTTP 状态码（400, 404, 500 等）

    使用示例：
        raise AppError(code=400001, message="Invalid order", status_code=400)
    """

    def __init__(self, *, code: int, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code


class InsufficientVouchers(AppError):
    """
    可用券不足

    包括两种情况：真的不够，或者并发核销时被别的请求抢先（重新检查失败）。
    """

    def __init__(self, message: str, *, available: int | None = None, requested: int | None = None) -> None:
        super().__init__(code=409001, message=message, status_code=409)
        self.available = available
        self.requested = requested


class CutoffPassed(AppError):
    """餐段已截单，核销在修改账本之前就被拒绝"""

    def __init__(self, message: str, *, cutoff_time: str | None = None) -> None:
        super().__init__(code=409002, message=message, status_code=409)
        self.cutoff_time = cutoff_time


class InvalidTransition(AppError):
    """订单状态流转不合法，订单不会被修改"""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            code=409003,
            message=f"Cannot change order status from {current} to {target}",
            status_code=409,
        )
        self.current = current
        self.target = target


class CancellationNotAllowed(AppError):
    """取消策略不允许取消"""

    def __init__(self, message: str) -> None:
        super().__init__(code=409004, message=message, status_code=409)


class OrderValidationError(AppError):
    """下单参数不满足业务规则（地址、厨房、菜品、券数量等）"""

    def __init__(self, message: str) -> None:
        super().__init__(code=400001, message=message, status_code=400)


class NotFound(AppError):
    def __init__(self, message: str = "Not found") -> None:
        super().__init__(code=404001, message=message, status_code=404)


class Forbidden(AppError):
    def __init__(self, message: str = "Forbidden") -> None:
        super().__init__(code=403001, message=message, status_code=403)
