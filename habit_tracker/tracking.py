from datetime import date
from typing import Any, Dict, Iterable, List, Tuple

from fastapi import APIRouter, Depends

from .database import get_db
from .errors import bad_request
from .habits import get_owned_habit
from .helpers import iso_date, iso_ts, local_today, month_date_range, new_id, now_utc, parse_date, validate_month
from .models import StreakResponse, ToggleRequest, TrackingOut, tracking_out
from .security import subscribed_user

router = APIRouter(prefix="/tracking", tags=["tracking"])


def compute_streaks(dates: Iterable[str], today: date) -> Tuple[int, int]:
    """Return ``(current_streak, longest_streak)`` for completed ``YYYY-MM-DD`` dates.

    Zero-padded ISO dates sort chronologically as strings. The final run only
    counts as current when it ends today or yesterday.
    """
    ordered = sorted(set(dates))
    if not ordered:
        return 0, 0

    longest = run = 0
    prev = None
    for s in ordered:
        d = date.fromisoformat(s)
        run = run + 1 if prev is not None and (d - prev).days == 1 else 1
        longest = max(longest, run)
        prev = d

    gap = (today - prev).days
    current = run if gap in (0, 1) else 0
    return current, longest


def month_filter(user_id: str, year: int, month: int) -> Dict[str, Any]:
    start, end = month_date_range(year, month)
    return {"user_id": user_id, "date": {"$gte": start, "$lte": end}, "completed": True}


@router.post("/toggle", response_model=TrackingOut)
async def toggle_completion(
    payload: ToggleRequest,
    user: Dict[str, Any] = Depends(subscribed_user),
    db=Depends(get_db),
) -> TrackingOut:
    d = parse_date(payload.date)
    if d > local_today():
        raise bad_request("FUTURE_DATE", "Cannot track a future date")
    await get_owned_habit(db, user["_id"], payload.habit_id)

    key = {"user_id": user["_id"], "habit_id": payload.habit_id, "date": iso_date(d)}
    score = (payload.score or 0) if payload.completed else 0
    await db.tracking.update_one(
        key,
        {
            "$set": {"completed": payload.completed, "score": score, "updated_at": iso_ts(now_utc())},
            "$setOnInsert": {"_id": new_id()},
        },
        upsert=True,
    )
    doc = await db.tracking.find_one(key)
    return tracking_out(doc)


@router.get("/streaks/{habit_id}/{year}/{month}", response_model=StreakResponse)
async def habit_streaks(
    habit_id: str,
    year: int,
    month: int,
    user: Dict[str, Any] = Depends(subscribed_user),
    db=Depends(get_db),
) -> StreakResponse:
    # Windowed to the requested month: a run crossing the month start is cut there
    validate_month(year, month)
    query = {**month_filter(user["_id"], year, month), "habit_id": habit_id}
    dates = [doc["date"] async for doc in db.tracking.find(query, {"date": 1})]
    current, longest = compute_streaks(dates, local_today())
    return StreakResponse(current_streak=current, longest_streak=longest)


@router.get("/scores/{year}/{month}", response_model=Dict[str, int])
async def daily_scores(
    year: int,
    month: int,
    user: Dict[str, Any] = Depends(subscribed_user),
    db=Depends(get_db),
) -> Dict[str, int]:
    validate_month(year, month)
    scores: Dict[str, int] = {}
    async for doc in db.tracking.find(month_filter(user["_id"], year, month)):
        scores[doc["date"]] = scores.get(doc["date"], 0) + int(doc.get("score") or 0)
    return dict(sorted(scores.items()))


@router.get("/{year}/{month}", response_model=List[TrackingOut])
async def month_tracking(
    year: int,
    month: int,
    user: Dict[str, Any] = Depends(subscribed_user),
    db=Depends(get_db),
) -> List[TrackingOut]:
    validate_month(year, month)
    cursor = db.tracking.find(month_filter(user["_id"], year, month)).sort("date", 1)
    return [tracking_out(doc) async for doc in cursor]
