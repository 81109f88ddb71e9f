"""
CRUD 操作模块

- vouchers: 券账本（核销 / 退回 / 发放 / 余额查询），唯一可以修改券状态的地方
- lookups: 地址、区域、厨房、菜品的只读查询
- auto_order_logs: 自动下单结果日志（只追加）
"""
from .auto_order_logs import append_log, get_failure_summary, get_logs_by_cron_run
from .vouchers import (
    check_voucher_availability,
    get_available_voucher_count,
    get_voucher_balance_summary,
    issue_vouchers,
    redeem_vouchers,
    restore_vouchers,
)

__all__ = [
    "append_log",
    "get_failure_summary",
    "get_logs_by_cron_run",
    "check_voucher_availability",
    "get_available_voucher_count",
    "get_voucher_balance_summary",
    "issue_vouchers",
    "redeem_vouchers",
    "restore_vouchers",
]
