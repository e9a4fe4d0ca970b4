import logging
import math
import re
from datetime import timedelta
from typing import Any, Callable, Dict, List, Literal

from fastapi import APIRouter, Depends, Query

from .database import get_db
from .errors import ApiError, not_found
from .helpers import iso_ts, last_n_days, local_day_start, local_today, now_utc
from .images import delete_screenshot
from .models import (
    AdminLoginRequest,
    AdminLoginResponse,
    AdminUserAction,
    AdminUserOut,
    DashboardResponse,
    TopUser,
    UserDetailResponse,
    UserListResponse,
    admin_user_out,
    habit_out,
)
from .security import check_admin_credentials, create_admin_token, require_admin
from .subscription_state import (
    ACTIVE,
    EXPIRED,
    PENDING,
    approve_updates,
    days_left,
    pause_updates,
    reconcile_all,
    reconcile_user,
    reject_updates,
    resume_updates,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])

USER_COLLECTIONS = ("habits", "tracking", "monthly_goals", "monthly_habit_names", "sleep")


# -----------------------------
# Login
# -----------------------------

@router.post("/login", response_model=AdminLoginResponse)
async def admin_login(payload: AdminLoginRequest) -> AdminLoginResponse:
    if not check_admin_credentials(payload.username, payload.password):
        logger.warning("Failed admin login for %r", payload.username)
        raise ApiError(401, "INVALID_CREDENTIALS", "Invalid credentials")
    return AdminLoginResponse(token=create_admin_token(payload.username), admin={"username": payload.username})


@router.get("/verify")
async def verify(admin: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
    return {"valid": True, "admin": {"username": admin.get("username", "")}}


# -----------------------------
# Dashboard
# -----------------------------

async def top_users_by_tracking(db, limit: int = 5) -> List[TopUser]:
    pipeline = [
        {"$group": {"_id": "$user_id", "tracking_count": {"$sum": 1}}},
        {"$sort": {"tracking_count": -1}},
        {"$limit": limit},
    ]
    counts = await db.tracking.aggregate(pipeline).to_list(length=limit)
    ids = [c["_id"] for c in counts]
    users = {u["_id"]: u async for u in db.users.find({"_id": {"$in": ids}})}

    # Rows of users deleted since are skipped, like an inner join
    return [
        TopUser(
            id=c["_id"],
            name=users[c["_id"]].get("name", ""),
            email=users[c["_id"]].get("email", ""),
            picture=users[c["_id"]].get("picture"),
            tracking_count=c["tracking_count"],
        )
        for c in counts
        if c["_id"] in users
    ]


@router.get("/dashboard", response_model=DashboardResponse)
async def dashboard(admin: Dict[str, Any] = Depends(require_admin), db=Depends(get_db)) -> DashboardResponse:
    today = local_today()
    week_ago = iso_ts(local_day_start(today - timedelta(days=7)))
    month_ago = iso_ts(local_day_start(today - timedelta(days=30)))

    growth_data = []
    subscription_growth_data = []
    for d in last_n_days(today, 30):
        start = iso_ts(local_day_start(d))
        end = iso_ts(local_day_start(d + timedelta(days=1)))
        label = f"{d.day} {d.strftime('%b')}"
        users = await db.users.count_documents({"created_at": {"$gte": start, "$lt": end}})
        approvals = await db.users.count_documents(
            {"subscription_date": {"$gte": start, "$lt": end}, "subscription_status": ACTIVE}
        )
        growth_data.append({"date": label, "users": users})
        subscription_growth_data.append({"date": label, "subscriptions": approvals})

    return DashboardResponse(
        total_users=await db.users.count_documents({}),
        active_users=await db.users.count_documents({"is_active": True}),
        deactivated_users=await db.users.count_documents({"is_active": False}),
        pending_subscriptions=await db.users.count_documents({"subscription_status": PENDING}),
        active_subscriptions=await db.users.count_documents({"subscription_status": ACTIVE}),
        new_users_this_week=await db.users.count_documents({"created_at": {"$gte": week_ago}}),
        new_users_this_month=await db.users.count_documents({"created_at": {"$gte": month_ago}}),
        growth_data=growth_data,
        subscription_growth_data=subscription_growth_data,
        recent_activity=await db.tracking.count_documents({"updated_at": {"$gte": week_ago}}),
        top_users=await top_users_by_tracking(db),
    )


# -----------------------------
# Users
# -----------------------------

async def get_user_or_404(db, user_id: str) -> Dict[str, Any]:
    user = await db.users.find_one({"_id": user_id})
    if not user:
        raise not_found("User")
    return user


@router.get("/users", response_model=UserListResponse)
async def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str = "",
    status: Literal["all", "active", "deactivated"] = "all",
    admin: Dict[str, Any] = Depends(require_admin),
    db=Depends(get_db),
) -> UserListResponse:
    query: Dict[str, Any] = {}
    search = search.strip()
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"name": pattern}, {"email": pattern}]
    if status == "active":
        query["is_active"] = True
    elif status == "deactivated":
        query["is_active"] = False

    total = await db.users.count_documents(query)
    cursor = db.users.find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit)

    users = []
    async for user in cursor:
        users.append(
            admin_user_out(
                user,
                habit_count=await db.habits.count_documents({"user_id": user["_id"]}),
                tracking_count=await db.tracking.count_documents({"user_id": user["_id"]}),
            )
        )
    return UserListResponse(users=users, total=total, pages=math.ceil(total / limit), current_page=page)


@router.get("/users/{user_id}", response_model=UserDetailResponse)
async def user_detail(user_id: str, admin: Dict[str, Any] = Depends(require_admin), db=Depends(get_db)) -> UserDetailResponse:
    user = await get_user_or_404(db, user_id)
    habits = await db.habits.find({"user_id": user_id}).sort("order", 1).to_list(length=None)
    return UserDetailResponse(
        user=admin_user_out(user),
        habits=[habit_out(h) for h in habits],
        tracking_count=await db.tracking.count_documents({"user_id": user_id}),
    )


@router.put("/users/{user_id}/toggle-status", response_model=AdminUserAction)
async def toggle_user_status(
    user_id: str, admin: Dict[str, Any] = Depends(require_admin), db=Depends(get_db)
) -> AdminUserAction:
    user = await get_user_or_404(db, user_id)
    is_active = not user.get("is_active", True)
    await db.users.update_one({"_id": user_id}, {"$set": {"is_active": is_active}})
    logger.info("Admin %s %s user %s", admin.get("username"), "activated" if is_active else "deactivated", user_id)
    return AdminUserAction(
        message=f"User {'activated' if is_active else 'deactivated'}",
        user=admin_user_out({**user, "is_active": is_active}),
    )


@router.delete("/users/{user_id}")
async def delete_user(user_id: str, admin: Dict[str, Any] = Depends(require_admin), db=Depends(get_db)) -> Dict[str, str]:
    user = await get_user_or_404(db, user_id)
    for name in USER_COLLECTIONS:
        await db[name].delete_many({"user_id": user_id})
    await db.users.delete_one({"_id": user_id})
    delete_screenshot(user.get("payment_screenshot"))
    logger.info("Admin %s deleted user %s and all their data", admin.get("username"), user_id)
    return {"message": "User and all data deleted successfully"}


# -----------------------------
# Subscriptions
# -----------------------------

@router.get("/subscriptions/pending")
async def pending_subscriptions(admin: Dict[str, Any] = Depends(require_admin), db=Depends(get_db)) -> Dict[str, List[AdminUserOut]]:
    cursor = db.users.find({"subscription_status": PENDING}).sort("created_at", -1)
    return {"users": [admin_user_out(u) async for u in cursor]}


@router.get("/subscriptions/all")
async def all_subscriptions(admin: Dict[str, Any] = Depends(require_admin), db=Depends(get_db)) -> Dict[str, List[AdminUserOut]]:
    now = now_utc()
    await reconcile_all(db, now)
    cursor = db.users.find({"subscription_status": {"$in": [ACTIVE, EXPIRED, PENDING]}}).sort("subscription_date", -1)
    return {"users": [admin_user_out(u, days_left=days_left(u, now)) async for u in cursor]}


async def apply_transition(
    db,
    admin: Dict[str, Any],
    user_id: str,
    transition: Callable[[Dict[str, Any]], Dict[str, Any]],
    message: str,
) -> AdminUserAction:
    user = await get_user_or_404(db, user_id)
    user = await reconcile_user(db, user, now_utc())
    updates = transition(user)
    await db.users.update_one({"_id": user_id}, {"$set": updates})
    logger.info("Admin %s: %s for user %s", admin.get("username"), message.lower(), user_id)
    return AdminUserAction(message=message, user=admin_user_out({**user, **updates}))


@router.put("/subscriptions/{user_id}/approve", response_model=AdminUserAction)
async def approve_subscription(user_id: str, admin: Dict[str, Any] = Depends(require_admin), db=Depends(get_db)) -> AdminUserAction:
    user = await get_user_or_404(db, user_id)
    result = await apply_transition(db, admin, user_id, lambda u: approve_updates(now_utc()), "Subscription approved")
    delete_screenshot(user.get("payment_screenshot"))
    return result


@router.put("/subscriptions/{user_id}/reject", response_model=AdminUserAction)
async def reject_subscription(user_id: str, admin: Dict[str, Any] = Depends(require_admin), db=Depends(get_db)) -> AdminUserAction:
    user = await get_user_or_404(db, user_id)
    result = await apply_transition(db, admin, user_id, lambda u: reject_updates(), "Subscription rejected")
    delete_screenshot(user.get("payment_screenshot"))
    return result


@router.put("/subscriptions/{user_id}/pause", response_model=AdminUserAction)
async def pause_subscription(user_id: str, admin: Dict[str, Any] = Depends(require_admin), db=Depends(get_db)) -> AdminUserAction:
    return await apply_transition(
        db, admin, user_id, lambda u: pause_updates(u, now_utc()), "Subscription paused successfully"
    )


@router.put("/subscriptions/{user_id}/resume", response_model=AdminUserAction)
async def resume_subscription(user_id: str, admin: Dict[str, Any] = Depends(require_admin), db=Depends(get_db)) -> AdminUserAction:
    return await apply_transition(
        db, admin, user_id, lambda u: resume_updates(u, now_utc()), "Subscription resumed successfully"
    )


@router.post("/subscriptions/reconcile")
async def reconcile_subscriptions(admin: Dict[str, Any] = Depends(require_admin), db=Depends(get_db)) -> Dict[str, int]:
    expired = await reconcile_all(db, now_utc())
    return {"expired": expired}
