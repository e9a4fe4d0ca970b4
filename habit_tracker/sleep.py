from typing import Any, Dict, List, Literal

from fastapi import APIRouter, Depends, Query

from .database import get_db
from .helpers import iso_date, iso_ts, month_date_range, new_id, now_utc, parse_date, validate_month
from .models import SleepOut, SleepStats, SleepUpsert, sleep_out
from .security import subscribed_user

router = APIRouter(prefix="/sleep", tags=["sleep"])


def sleep_stats(nights: List[Dict[str, Any]]) -> SleepStats:
    """Monthly statistics over night-sleep entries (naps are excluded by the caller)."""
    if not nights:
        return SleepStats()

    total = sum(int(s["duration"]) for s in nights)
    rated = [int(s["quality"]) for s in nights if s.get("quality")]
    avg_quality = sum(rated) / len(rated) if rated else 0
    by_duration = sorted(nights, key=lambda s: int(s["duration"]), reverse=True)

    return SleepStats(
        total_nights=len(nights),
        avg_duration=round(total / len(nights)),
        avg_quality=round(avg_quality, 1),
        max_sleep=sleep_out(by_duration[0]),
        min_sleep=sleep_out(by_duration[-1]),
        total_sleep_hours=round(total / 60, 1),
    )


def month_query(user_id: str, year: int, month: int) -> Dict[str, Any]:
    start, end = month_date_range(year, month)
    return {"user_id": user_id, "date": {"$gte": start, "$lte": end}}


@router.get("/stats/{year}/{month}", response_model=SleepStats)
async def month_stats(
    year: int,
    month: int,
    user: Dict[str, Any] = Depends(subscribed_user),
    db=Depends(get_db),
) -> SleepStats:
    validate_month(year, month)
    nights = await db.sleep.find({**month_query(user["_id"], year, month), "sleep_type": "night"}).to_list(length=None)
    return sleep_stats(nights)


# Declared before /{year}/{month}, which would otherwise try to parse "next-nap-index" as a year
@router.get("/next-nap-index/{day}")
async def next_nap_index(
    day: str,
    user: Dict[str, Any] = Depends(subscribed_user),
    db=Depends(get_db),
) -> Dict[str, int]:
    d = parse_date(day)
    # One past the highest nap index in use that day
    last = await db.sleep.find(
        {"user_id": user["_id"], "date": iso_date(d), "sleep_type": "nap"}
    ).sort("nap_index", -1).limit(1).to_list(length=1)
    return {"nextIndex": int(last[0]["nap_index"]) + 1 if last else 0}


@router.get("/{year}/{month}", response_model=List[SleepOut])
async def month_entries(
    year: int,
    month: int,
    user: Dict[str, Any] = Depends(subscribed_user),
    db=Depends(get_db),
) -> List[SleepOut]:
    validate_month(year, month)
    cursor = db.sleep.find(month_query(user["_id"], year, month)).sort([("date", 1), ("sleep_type", 1), ("nap_index", 1)])
    return [sleep_out(doc) async for doc in cursor]


@router.post("", response_model=SleepOut)
async def upsert_entry(
    payload: SleepUpsert,
    user: Dict[str, Any] = Depends(subscribed_user),
    db=Depends(get_db),
) -> SleepOut:
    d = parse_date(payload.date)
    key = {
        "user_id": user["_id"],
        "date": iso_date(d),
        "sleep_type": payload.sleep_type,
        "nap_index": payload.nap_index,
    }
    await db.sleep.update_one(
        key,
        {
            "$set": {
                "bedtime": payload.bedtime,
                "wake_time": payload.wake_time,
                "duration": payload.duration,
                "quality": payload.quality,
                "notes": payload.notes or None,
            },
            "$setOnInsert": {"_id": new_id(), "created_at": iso_ts(now_utc())},
        },
        upsert=True,
    )
    doc = await db.sleep.find_one(key)
    return sleep_out(doc)


@router.delete("/{day}")
async def delete_entry(
    day: str,
    sleep_type: Literal["night", "nap"] = Query("night", alias="sleepType"),
    nap_index: int = Query(0, alias="napIndex", ge=0),
    user: Dict[str, Any] = Depends(subscribed_user),
    db=Depends(get_db),
) -> Dict[str, Any]:
    d = parse_date(day)
    await db.sleep.delete_one(
        {"user_id": user["_id"], "date": iso_date(d), "sleep_type": sleep_type, "nap_index": nap_index}
    )
    return {"message": "Deleted"}
