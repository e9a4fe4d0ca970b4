from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .images import screenshot_url


class ApiModel(BaseModel):
    # Python side is snake_case, the wire format is camelCase
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


# -----------------------------
# Users / auth
# -----------------------------

class GoogleLoginRequest(ApiModel):
    credential: str = Field(..., min_length=1)


class UserOut(ApiModel):
    id: str
    name: str
    email: str
    picture: Optional[str] = None
    dob: Optional[str] = None
    gender: Optional[str] = None
    created_at: str
    is_active: bool = True
    subscription_status: str = "none"
    subscription_expiry: Optional[str] = None
    is_paused: bool = False


class LoginResponse(ApiModel):
    token: str
    user: UserOut
    is_new_user: bool


class ProfileUpdate(ApiModel):
    name: Optional[str] = Field(None, max_length=100)
    dob: Optional[str] = None  # YYYY-MM-DD, "" or null clears
    gender: Optional[Literal["male", "female", "other", ""]] = None


class VerifyResponse(ApiModel):
    valid: bool
    user: UserOut


# -----------------------------
# Habits
# -----------------------------

class HabitCreate(ApiModel):
    name: str = Field(..., min_length=1, max_length=100)
    goal: int = Field(30, ge=1, le=31)
    color: str = "#4CAF50"


class HabitUpdate(ApiModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    goal: Optional[int] = Field(None, ge=1, le=31)
    color: Optional[str] = None
    order: Optional[int] = Field(None, ge=0)


class HabitOut(ApiModel):
    id: str
    name: str
    goal: int
    color: str
    order: int
    created_at: str
    deleted_at: Optional[str] = None
    # Only set in month views: the habit's current default name
    original_name: Optional[str] = None


class GoalUpdate(ApiModel):
    year: int
    month: int
    goal: int = Field(..., ge=1, le=31)


class NameUpdate(ApiModel):
    year: int
    month: int
    name: str = Field(..., min_length=1, max_length=100)
    is_current_month: bool = False


# -----------------------------
# Tracking
# -----------------------------

class ToggleRequest(ApiModel):
    habit_id: str = Field(..., min_length=1)
    date: str
    completed: bool
    score: Optional[int] = Field(None, ge=0)


class TrackingOut(ApiModel):
    id: str
    habit_id: str
    date: str
    completed: bool
    score: int = 0


class StreakResponse(ApiModel):
    current_streak: int = 0
    longest_streak: int = 0


# -----------------------------
# Sleep
# -----------------------------

_HHMM = r"^([01]\d|2[0-3]):[0-5]\d$"


class SleepUpsert(ApiModel):
    date: str
    duration: int = Field(..., gt=0, le=24 * 60, description="minutes")
    bedtime: Optional[str] = Field(None, pattern=_HHMM)
    wake_time: Optional[str] = Field(None, pattern=_HHMM)
    quality: Optional[int] = Field(None, ge=1, le=5)
    notes: Optional[str] = Field(None, max_length=1000)
    sleep_type: Literal["night", "nap"] = "night"
    nap_index: int = Field(0, ge=0)


class SleepOut(ApiModel):
    id: str
    date: str
    sleep_type: str
    nap_index: int
    bedtime: Optional[str] = None
    wake_time: Optional[str] = None
    duration: int
    quality: Optional[int] = None
    notes: Optional[str] = None
    created_at: str


class SleepStats(ApiModel):
    total_nights: int = 0
    avg_duration: int = 0
    avg_quality: float = 0
    max_sleep: Optional[SleepOut] = None
    min_sleep: Optional[SleepOut] = None
    total_sleep_hours: float = 0


# -----------------------------
# Widgets
# -----------------------------

class WidgetHabit(ApiModel):
    name: str
    completed: bool


class ProgressWidget(ApiModel):
    completed: int
    total: int
    streak: int
    habits: List[WidgetHabit]
    last_updated: str


class StatsWidget(ApiModel):
    weekly_data: List[int]
    weekly_avg: int
    best_day: str
    total_habits: int
    current_streak: int
    last_updated: str


class LastNight(ApiModel):
    hours: float = 0
    quality: int = 0
    bedtime: str = "22:00"
    wake_time: str = "06:00"


class SleepWidget(ApiModel):
    last_night: LastNight
    weekly_hours: List[float]
    weekly_avg: float
    sleep_debt: float
    best_night: float
    consistency: int
    last_updated: str


# -----------------------------
# Subscription / admin
# -----------------------------

class SubscriptionStatusOut(ApiModel):
    subscription_status: str
    subscription_expiry: Optional[str] = None
    is_paused: bool = False
    payment_screenshot: Optional[str] = None
    days_left: int = 0


class SubmitPaymentResponse(ApiModel):
    message: str
    user: UserOut
    screenshot_url: str


class AdminLoginRequest(ApiModel):
    username: str
    password: str


class AdminLoginResponse(ApiModel):
    token: str
    admin: Dict[str, str]


class AdminUserOut(UserOut):
    subscription_date: Optional[str] = None
    paused_at: Optional[str] = None
    payment_screenshot: Optional[str] = None
    habit_count: Optional[int] = None
    tracking_count: Optional[int] = None
    days_left: Optional[int] = None


class UserListResponse(ApiModel):
    users: List[AdminUserOut]
    total: int
    pages: int
    current_page: int


class UserDetailResponse(ApiModel):
    user: AdminUserOut
    habits: List[HabitOut]
    tracking_count: int


class AdminUserAction(ApiModel):
    message: str
    user: AdminUserOut


class TopUser(ApiModel):
    id: str
    name: str
    email: str
    picture: Optional[str] = None
    tracking_count: int


class DashboardResponse(ApiModel):
    total_users: int
    active_users: int
    deactivated_users: int
    pending_subscriptions: int
    active_subscriptions: int
    new_users_this_week: int
    new_users_this_month: int
    growth_data: List[Dict[str, Any]]
    subscription_growth_data: List[Dict[str, Any]]
    recent_activity: int
    top_users: List[TopUser]


# -----------------------------
# Document -> response
# -----------------------------

def user_out(doc: Dict[str, Any]) -> UserOut:
    return UserOut(
        id=doc["_id"],
        name=doc.get("name", ""),
        email=doc.get("email", ""),
        picture=doc.get("picture"),
        dob=doc.get("dob"),
        gender=doc.get("gender"),
        created_at=doc.get("created_at", ""),
        is_active=bool(doc.get("is_active", True)),
        subscription_status=doc.get("subscription_status", "none"),
        subscription_expiry=doc.get("subscription_expiry"),
        is_paused=bool(doc.get("is_paused", False)),
    )


def admin_user_out(doc: Dict[str, Any], **extra: Any) -> AdminUserOut:
    base = user_out(doc).model_dump()
    return AdminUserOut(
        **base,
        subscription_date=doc.get("subscription_date"),
        paused_at=doc.get("paused_at"),
        payment_screenshot=screenshot_url(doc.get("payment_screenshot")),
        **extra,
    )


def habit_out(doc: Dict[str, Any], **overrides: Any) -> HabitOut:
    fields = {
        "id": doc["_id"],
        "name": doc["name"],
        "goal": int(doc.get("goal", 30)),
        "color": doc.get("color", "#4CAF50"),
        "order": int(doc.get("order", 0)),
        "created_at": doc.get("created_at", ""),
        "deleted_at": doc.get("deleted_at"),
    }
    fields.update(overrides)
    return HabitOut(**fields)


def tracking_out(doc: Dict[str, Any]) -> TrackingOut:
    return TrackingOut(
        id=doc["_id"],
        habit_id=doc["habit_id"],
        date=doc["date"],
        completed=bool(doc.get("completed", False)),
        score=int(doc.get("score") or 0),
    )


def sleep_out(doc: Dict[str, Any]) -> SleepOut:
    return SleepOut(
        id=doc["_id"],
        date=doc["date"],
        sleep_type=doc.get("sleep_type", "night"),
        nap_index=int(doc.get("nap_index", 0)),
        bedtime=doc.get("bedtime"),
        wake_time=doc.get("wake_time"),
        duration=int(doc["duration"]),
        quality=doc.get("quality"),
        notes=doc.get("notes"),
        created_at=doc.get("created_at", ""),
    )
