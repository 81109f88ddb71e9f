"""
截单时间策略

纯函数：输入当前时间、业务配置快照、可选的厨房，输出是否已截单。
时间一律换算到业务时区（BusinessConfig.timezone）再比较，
服务器本地时区不参与计算。
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from app.enums import MealWindow
from app.models import Kitchen, utc_now
from app.services.config_service import BusinessConfig, parse_hhmm

# 厨房没有配置营业时间时的默认餐段营业时间
DEFAULT_OPERATING_HOURS: dict[MealWindow, tuple[str, str]] = {
    MealWindow.LUNCH: ("11:00", "14:00"),
    MealWindow.DINNER: ("19:00", "22:00"),
}


@dataclass(frozen=True)
class CutoffInfo:
    meal_window: str
    is_past_cutoff: bool
    cutoff_time: str | None
    current_time: str | None
    message: str


@dataclass(frozen=True)
class OperatingHoursInfo:
    meal_window: str
    is_within_operating_hours: bool
    start_time: str | None
    end_time: str | None
    current_time: str
    message: str


@dataclass(frozen=True)
class CurrentMealWindow:
    current_window: MealWindow | None
    next_window: str
    cutoff_info: CutoffInfo


def _kitchen_hours(kitchen: Kitchen | None, meal_window: MealWindow) -> tuple[str | None, str | None]:
    if kitchen is None:
        return None, None
    if meal_window == MealWindow.LUNCH:
        return kitchen.lunch_start_time, kitchen.lunch_end_time
    return kitchen.dinner_start_time, kitchen.dinner_end_time


def _minutes(hhmm: str) -> int:
    parsed = parse_hhmm(hhmm)
    return parsed.hour * 60 + parsed.minute


def business_now(config: BusinessConfig, now: datetime | None = None) -> datetime:
    """当前时间换算到业务时区"""
    return (now or utc_now()).astimezone(config.tz)


def resolve_cutoff_time(
    meal_window: MealWindow, *, config: BusinessConfig, kitchen: Kitchen | None = None
) -> str:
    """厨房配置了该餐段的结束时间就用厨房的，否则用全局截单时间"""
    _, kitchen_end = _kitchen_hours(kitchen, meal_window)
    if kitchen_end:
        return kitchen_end
    return config.cutoff_times.for_window(meal_window)


def check_cutoff(
    meal_window: MealWindow | str,
    *,
    config: BusinessConfig,
    now: datetime | None = None,
    kitchen: Kitchen | None = None,
) -> CutoffInfo:
    """
    检查餐段是否已截单

    当前时间（业务时区，精确到分钟）>= 截单时间即视为已截单。
    未知餐段一律按已截单处理。
    """
    try:
        window = MealWindow(meal_window)
    except ValueError:
        return CutoffInfo(
            meal_window=str(meal_window),
            is_past_cutoff=True,
            cutoff_time=None,
            current_time=None,
            message=f"Invalid meal window: {meal_window}",
        )

    cutoff_time = resolve_cutoff_time(window, config=config, kitchen=kitchen)
    local_now = business_now(config, now)
    current_minutes = local_now.hour * 60 + local_now.minute
    is_past = current_minutes >= _minutes(cutoff_time)

    if is_past:
        message = f"{window.value} ordering closed. Cutoff was {cutoff_time}."
    else:
        message = f"{window.value} orders open until {cutoff_time}"
    return CutoffInfo(
        meal_window=window.value,
        is_past_cutoff=is_past,
        cutoff_time=cutoff_time,
        current_time=local_now.strftime("%H:%M"),
        message=message,
    )


def is_within_operating_hours(
    meal_window: MealWindow | str,
    *,
    config: BusinessConfig,
    now: datetime | None = None,
    kitchen: Kitchen | None = None,
) -> OperatingHoursInfo:
    """餐段营业时间（厨房备餐时段，和截单时间是两回事），首尾都包含"""
    window = MealWindow(meal_window)
    start, end = _kitchen_hours(kitchen, window)
    if not (start and end):
        start, end = DEFAULT_OPERATING_HOURS[window]

    local_now = business_now(config, now)
    current_minutes = local_now.hour * 60 + local_now.minute
    within = _minutes(start) <= current_minutes <= _minutes(end)
    label = "Within" if within else "Outside"
    return OperatingHoursInfo(
        meal_window=window.value,
        is_within_operating_hours=within,
        start_time=start,
        end_time=end,
        current_time=local_now.strftime("%H:%M"),
        message=f"{label} {window.value} operating hours ({start}-{end})",
    )


def get_current_meal_window(
    *, config: BusinessConfig, now: datetime | None = None
) -> CurrentMealWindow:
    """当前还能下单的餐段：午餐未截单返回午餐，否则晚餐，都截单了返回 None"""
    lunch = check_cutoff(MealWindow.LUNCH, config=config, now=now)
    if not lunch.is_past_cutoff:
        return CurrentMealWindow(MealWindow.LUNCH, MealWindow.DINNER.value, lunch)

    dinner = check_cutoff(MealWindow.DINNER, config=config, now=now)
    if not dinner.is_past_cutoff:
        return CurrentMealWindow(MealWindow.DINNER, "TOMORROW_LUNCH", dinner)

    closed = CutoffInfo(
        meal_window=MealWindow.DINNER.value,
        is_past_cutoff=True,
        cutoff_time=dinner.cutoff_time,
        current_time=dinner.current_time,
        message="All meal windows closed for today. Orders open tomorrow.",
    )
    return CurrentMealWindow(None, "TOMORROW_LUNCH", closed)
