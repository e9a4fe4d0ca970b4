"""Habits and their per-month name/goal overrides.

A habit document holds the *current* name and goal. The ``monthly_goals`` and
``monthly_habit_names`` collections hold at most one row per (habit, year,
month) that shadows the current value for that month only; a missing row means
"use the habit's current value". Month views always resolve through the
override rows first, so changing a default never rewrites history that was
pinned by an override.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from fastapi import APIRouter, Depends, Query

from .config import CALENDAR_TZ
from .database import get_db
from .errors import not_found
from .helpers import iso_ts, month_bounds, months_between, new_id, now_utc, one_year_before, parse_ts, validate_month
from .models import GoalUpdate, HabitCreate, HabitOut, HabitUpdate, NameUpdate, habit_out
from .security import subscribed_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/habits", tags=["habits"])

DEFAULT_HABITS = [
    {"name": "Running", "goal": 30, "color": "#FF6B6B"},
    {"name": "Meditation", "goal": 25, "color": "#4ECDC4"},
    {"name": "Taking a Bath", "goal": 20, "color": "#45B7D1"},
    {"name": "Eating healthy", "goal": 25, "color": "#96CEB4"},
    {"name": "Drink 2L of water", "goal": 25, "color": "#FFEAA7"},
    {"name": "Reading Books", "goal": 15, "color": "#DDA0DD"},
    {"name": "Stretching", "goal": 28, "color": "#98D8C8"},
    {"name": "Save $5", "goal": 28, "color": "#F7DC6F"},
    {"name": "Sleep early", "goal": 25, "color": "#BB8FCE"},
]


# -----------------------------
# Creation
# -----------------------------

def backdated_created_at(now: datetime) -> str:
    # New habits count as existing for the past year so earlier months show them
    return iso_ts(one_year_before(now))


def new_habit_doc(user_id: str, name: str, goal: int, color: str, order: int, now: datetime) -> Dict[str, Any]:
    return {
        "_id": new_id(),
        "user_id": user_id,
        "name": name,
        "goal": goal,
        "color": color,
        "order": order,
        "created_at": backdated_created_at(now),
        "deleted_at": None,
    }


async def create_default_habits(db, user_id: str, now: datetime) -> None:
    docs = [new_habit_doc(user_id, h["name"], h["goal"], h["color"], i, now) for i, h in enumerate(DEFAULT_HABITS)]
    await db.habits.insert_many(docs)


async def get_owned_habit(db, user_id: str, habit_id: str) -> Dict[str, Any]:
    habit = await db.habits.find_one({"_id": habit_id, "user_id": user_id})
    if not habit:
        raise not_found("Habit")
    return habit


# -----------------------------
# Month view
# -----------------------------

def visible_in_month_query(user_id: str, year: int, month: int) -> Dict[str, Any]:
    """Habits created by the end of the month and not deleted before it ended."""
    _, end = month_bounds(year, month)
    end_s = iso_ts(end)
    return {
        "user_id": user_id,
        "created_at": {"$lte": end_s},
        "$or": [{"deleted_at": None}, {"deleted_at": {"$gt": end_s}}],
    }


def resolve_month_view(
    habits: List[Dict[str, Any]],
    goal_overrides: Dict[str, int],
    name_overrides: Dict[str, str],
) -> List[HabitOut]:
    out = []
    for h in habits:
        hid = h["_id"]
        out.append(
            habit_out(
                h,
                goal=goal_overrides[hid] if hid in goal_overrides else int(h.get("goal", 30)),
                name=name_overrides[hid] if hid in name_overrides else h["name"],
                original_name=h["name"],
            )
        )
    return out


async def month_view(db, user_id: str, year: int, month: int) -> List[HabitOut]:
    habits = await db.habits.find(visible_in_month_query(user_id, year, month)).sort(
        [("order", 1), ("created_at", 1)]
    ).to_list(length=None)

    key = {"user_id": user_id, "year": year, "month": month}
    goal_overrides = {d["habit_id"]: int(d["goal"]) async for d in db.monthly_goals.find(key)}
    name_overrides = {d["habit_id"]: d["name"] async for d in db.monthly_habit_names.find(key)}
    return resolve_month_view(habits, goal_overrides, name_overrides)


# -----------------------------
# Goal / name updates
# -----------------------------

async def set_month_goal(db, user_id: str, habit: Dict[str, Any], year: int, month: int, goal: int) -> None:
    """Pin ``goal`` for the month and make it the default for later months."""
    await db.monthly_goals.update_one(
        {"user_id": user_id, "habit_id": habit["_id"], "year": year, "month": month},
        {"$set": {"goal": goal}, "$setOnInsert": {"_id": new_id()}},
        upsert=True,
    )
    await db.habits.update_one({"_id": habit["_id"]}, {"$set": {"goal": goal}})


def months_to_pin(created_at: datetime, year: int, month: int) -> List[Tuple[int, int]]:
    """Months from the habit's creation month up to, excluding, (year, month)."""
    created_local = created_at.astimezone(CALENDAR_TZ)
    return list(months_between(created_local.year, created_local.month, year, month))


async def set_month_name(
    db,
    user_id: str,
    habit: Dict[str, Any],
    year: int,
    month: int,
    name: str,
    is_current_month: bool,
) -> None:
    """Rename a habit for one month, or from the current month on.

    Past month: only that month's override changes.

    Current month: every earlier month without an override gets one holding
    the old name, then the default name changes and the current month's
    override (which would now shadow the new default) is removed. The pinning
    writes are independent upserts, not a transaction.
    """
    key = {"user_id": user_id, "habit_id": habit["_id"]}

    if not is_current_month:
        await db.monthly_habit_names.update_one(
            {**key, "year": year, "month": month},
            {"$set": {"name": name}, "$setOnInsert": {"_id": new_id()}},
            upsert=True,
        )
        return

    old_name = habit["name"]
    pinned = {(d["year"], d["month"]) async for d in db.monthly_habit_names.find(key)}

    created_at = parse_ts(habit.get("created_at")) or now_utc()
    to_pin = [ym for ym in months_to_pin(created_at, year, month) if ym not in pinned]
    for y, m in to_pin:
        await db.monthly_habit_names.update_one(
            {**key, "year": y, "month": m},
            {"$setOnInsert": {"_id": new_id(), "name": old_name}},
            upsert=True,
        )

    await db.habits.update_one({"_id": habit["_id"]}, {"$set": {"name": name}})
    await db.monthly_habit_names.delete_one({**key, "year": year, "month": month})
    logger.info("Habit %s renamed from month %d-%02d on, %d past months pinned", habit["_id"], year, month, len(to_pin))


# -----------------------------
# Routes
# -----------------------------

@router.get("", response_model=List[HabitOut])
async def list_habits(
    year: Optional[int] = Query(None),
    month: Optional[int] = Query(None),
    user: Dict[str, Any] = Depends(subscribed_user),
    db=Depends(get_db),
) -> List[HabitOut]:
    if year is not None and month is not None:
        validate_month(year, month)
        return await month_view(db, user["_id"], year, month)

    cursor = db.habits.find({"user_id": user["_id"], "deleted_at": None}).sort([("order", 1), ("created_at", 1)])
    return [habit_out(doc) async for doc in cursor]


@router.post("", response_model=HabitOut, status_code=201)
async def create_habit(
    payload: HabitCreate,
    user: Dict[str, Any] = Depends(subscribed_user),
    db=Depends(get_db),
) -> HabitOut:
    order = await db.habits.count_documents({"user_id": user["_id"]})
    doc = new_habit_doc(user["_id"], payload.name, payload.goal, payload.color, order, now_utc())
    await db.habits.insert_one(doc)
    return habit_out(doc)


@router.put("/{habit_id}", response_model=HabitOut)
async def update_habit(
    habit_id: str,
    payload: HabitUpdate,
    user: Dict[str, Any] = Depends(subscribed_user),
    db=Depends(get_db),
) -> HabitOut:
    habit = await get_owned_habit(db, user["_id"], habit_id)
    updates = payload.model_dump(exclude_none=True)
    if updates:
        await db.habits.update_one({"_id": habit["_id"]}, {"$set": updates})
        habit = {**habit, **updates}
    return habit_out(habit)


@router.put("/{habit_id}/goal")
async def update_habit_goal(
    habit_id: str,
    payload: GoalUpdate,
    user: Dict[str, Any] = Depends(subscribed_user),
    db=Depends(get_db),
) -> Dict[str, Any]:
    validate_month(payload.year, payload.month)
    habit = await get_owned_habit(db, user["_id"], habit_id)
    await set_month_goal(db, user["_id"], habit, payload.year, payload.month, payload.goal)
    return {"message": "Goal updated", "goal": payload.goal}


@router.put("/{habit_id}/name")
async def update_habit_name(
    habit_id: str,
    payload: NameUpdate,
    user: Dict[str, Any] = Depends(subscribed_user),
    db=Depends(get_db),
) -> Dict[str, Any]:
    validate_month(payload.year, payload.month)
    habit = await get_owned_habit(db, user["_id"], habit_id)
    await set_month_name(db, user["_id"], habit, payload.year, payload.month, payload.name, payload.is_current_month)
    return {"message": "Name updated", "name": payload.name}


@router.delete("/{habit_id}")
async def delete_habit(
    habit_id: str,
    user: Dict[str, Any] = Depends(subscribed_user),
    db=Depends(get_db),
) -> Dict[str, Any]:
    habit = await get_owned_habit(db, user["_id"], habit_id)
    # Soft delete; tracking rows are kept for past months
    if not habit.get("deleted_at"):
        await db.habits.update_one({"_id": habit["_id"]}, {"$set": {"deleted_at": iso_ts(now_utc())}})
    return {"message": "Deleted"}
