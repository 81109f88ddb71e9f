"""自动下单结果日志 CRUD（只追加、只读查询）"""
from datetime import date
from typing import Any

from sqlmodel import Session, col, func, select

from app.enums import AutoOrderStatus
from app.models import AutoOrderLog


def append_log(*, session: Session, log: AutoOrderLog) -> AutoOrderLog:
    """写入一条结果日志，单独提交"""
    if log.reason and len(log.reason) > 500:
        log.reason = log.reason[:500]
    session.add(log)
    session.commit()
    session.refresh(log)
    return log


def get_logs_by_cron_run(*, session: Session, cron_run_id: str) -> list[AutoOrderLog]:
    return list(
        session.exec(
            select(AutoOrderLog)
            .where(AutoOrderLog.cron_run_id == cron_run_id)
            .order_by(AutoOrderLog.created_at, AutoOrderLog.id)
        ).all()
    )


def get_failure_summary(
    *, session: Session, date_from: date, date_to: date
) -> list[dict[str, Any]]:
    """按 失败分类 x 餐段 统计 FAILED / SKIPPED 次数（日期闭区间）"""
    rows = session.exec(
        select(
            AutoOrderLog.failure_category,
            AutoOrderLog.meal_window,
            AutoOrderLog.status,
            func.count(),
        )
        .where(
            col(AutoOrderLog.status).in_(
                [AutoOrderStatus.FAILED.value, AutoOrderStatus.SKIPPED.value]
            ),
            AutoOrderLog.processed_date >= date_from,
            AutoOrderLog.processed_date <= date_to,
        )
        .group_by(AutoOrderLog.failure_category, AutoOrderLog.meal_window, AutoOrderLog.status)
        .order_by(func.count().desc())
    ).all()
    return [
        {"failure_category": category, "meal_window": window, "status": status, "count": count}
        for category, window, status, count in rows
    ]


def get_recent_failures_by_user(
    *, session: Session, user_id: int, limit: int = 10
) -> list[AutoOrderLog]:
    return list(
        session.exec(
            select(AutoOrderLog)
            .where(
                AutoOrderLog.user_id == user_id,
                AutoOrderLog.status == AutoOrderStatus.FAILED.value,
            )
            .order_by(col(AutoOrderLog.created_at).desc(), col(AutoOrderLog.id).desc())
            .limit(limit)
        ).all()
    )
