import math
from datetime import date, timedelta
from typing import Any, Dict, List

from fastapi import APIRouter, Depends

from .database import get_db
from .helpers import iso_date, iso_ts, last_n_days, local_today, now_utc
from .models import LastNight, ProgressWidget, SleepWidget, StatsWidget, WidgetHabit
from .security import subscribed_user

router = APIRouter(prefix="/widgets", tags=["widgets"])

STREAK_WINDOW_DAYS = 30
STREAK_THRESHOLD = 0.7
SLEEP_TARGET_HOURS = 8
ADEQUATE_SLEEP_HOURS = 7


def completion_streak(counts: Dict[str, int], total: int, today: date) -> int:
    """Consecutive days ending today with at least 70% of habits completed."""
    if total <= 0:
        return 0
    needed = math.ceil(total * STREAK_THRESHOLD)
    streak = 0
    for i in range(STREAK_WINDOW_DAYS):
        if counts.get(iso_date(today - timedelta(days=i)), 0) >= needed:
            streak += 1
        else:
            break
    return streak


async def active_habits(db, user_id: str) -> List[Dict[str, Any]]:
    return await db.habits.find({"user_id": user_id, "deleted_at": None}).sort("order", 1).to_list(length=None)


async def completions_by_day(db, user_id: str, habit_ids: List[str], start: date, end: date) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    query = {
        "user_id": user_id,
        "habit_id": {"$in": habit_ids},
        "completed": True,
        "date": {"$gte": iso_date(start), "$lte": iso_date(end)},
    }
    async for doc in db.tracking.find(query, {"date": 1}):
        counts[doc["date"]] = counts.get(doc["date"], 0) + 1
    return counts


@router.get("/progress", response_model=ProgressWidget)
async def progress(user: Dict[str, Any] = Depends(subscribed_user), db=Depends(get_db)) -> ProgressWidget:
    today = local_today()
    habits = await active_habits(db, user["_id"])
    habit_ids = [h["_id"] for h in habits]

    done_today = {
        doc["habit_id"]
        async for doc in db.tracking.find(
            {"user_id": user["_id"], "date": iso_date(today), "completed": True, "habit_id": {"$in": habit_ids}}
        )
    }
    counts = await completions_by_day(db, user["_id"], habit_ids, today - timedelta(days=STREAK_WINDOW_DAYS - 1), today)

    return ProgressWidget(
        completed=len(done_today),
        total=len(habits),
        streak=completion_streak(counts, len(habits), today),
        habits=[WidgetHabit(name=h["name"], completed=h["_id"] in done_today) for h in habits],
        last_updated=iso_ts(now_utc()),
    )


@router.get("/stats", response_model=StatsWidget)
async def weekly_stats(user: Dict[str, Any] = Depends(subscribed_user), db=Depends(get_db)) -> StatsWidget:
    today = local_today()
    habits = await active_habits(db, user["_id"])
    total = len(habits)
    counts = await completions_by_day(
        db, user["_id"], [h["_id"] for h in habits], today - timedelta(days=STREAK_WINDOW_DAYS - 1), today
    )

    week = last_n_days(today, 7)
    weekly = [round(counts.get(iso_date(d), 0) / total * 100) if total else 0 for d in week]
    best = max(range(len(week)), key=lambda i: weekly[i])

    return StatsWidget(
        weekly_data=weekly,
        weekly_avg=round(sum(weekly) / len(weekly)),
        best_day=week[best].strftime("%a"),
        total_habits=total,
        current_streak=completion_streak(counts, total, today),
        last_updated=iso_ts(now_utc()),
    )


@router.get("/sleep", response_model=SleepWidget)
async def sleep_summary(user: Dict[str, Any] = Depends(subscribed_user), db=Depends(get_db)) -> SleepWidget:
    today = local_today()
    week = last_n_days(today, 7)

    latest = await db.sleep.find({"user_id": user["_id"], "sleep_type": "night"}).sort("date", -1).limit(1).to_list(length=1)
    last_night = LastNight()
    if latest:
        s = latest[0]
        last_night = LastNight(
            hours=round(int(s["duration"]) / 60, 1),
            quality=int(s.get("quality") or 0),
            bedtime=s.get("bedtime") or "22:00",
            wake_time=s.get("wake_time") or "06:00",
        )

    hours_by_day: Dict[str, float] = {}
    query = {"user_id": user["_id"], "sleep_type": "night", "date": {"$gte": iso_date(week[0]), "$lte": iso_date(today)}}
    async for s in db.sleep.find(query):
        hours_by_day[s["date"]] = hours_by_day.get(s["date"], 0) + int(s["duration"]) / 60

    weekly_hours = [round(hours_by_day.get(iso_date(d), 0), 1) for d in week]
    logged = [h for h in weekly_hours if h > 0]

    return SleepWidget(
        last_night=last_night,
        weekly_hours=weekly_hours,
        weekly_avg=round(sum(logged) / len(logged), 1) if logged else 0,
        sleep_debt=round(sum(logged) - SLEEP_TARGET_HOURS * len(logged), 1),
        best_night=max(logged) if logged else 0,
        consistency=round(sum(1 for h in logged if h >= ADEQUATE_SLEEP_HOURS) / len(logged) * 100) if logged else 0,
        last_updated=iso_ts(now_utc()),
    )
