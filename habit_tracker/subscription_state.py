"""Subscription lifecycle.

``none -> pending -> active <-> paused``, ``active -> expired`` (time based) and
``active/pending -> none`` (rejection). "Paused" is the ``is_paused`` flag on an
active subscription, not a status of its own.

The transition functions are pure: they take the stored user document and
``now`` and return the ``$set`` payload to persist, or raise ``ApiError`` for
transitions that are not allowed from the current state.
"""
import logging
import math
from datetime import datetime
from typing import Any, Dict, Optional

from .config import SUBSCRIPTION_LENGTH
from .errors import ApiError, bad_request
from .helpers import iso_ts, parse_ts

logger = logging.getLogger(__name__)

NONE = "none"
PENDING = "pending"
ACTIVE = "active"
EXPIRED = "expired"

_DAY_SECONDS = 24 * 60 * 60


def is_paused(user: Dict[str, Any]) -> bool:
    return user.get("subscription_status") == ACTIVE and bool(user.get("is_paused"))


def reconcile_updates(user: Dict[str, Any], now: datetime) -> Optional[Dict[str, Any]]:
    """Expire an active subscription whose expiry has passed.

    A paused subscription has its countdown frozen and never expires while
    paused. Returns None when nothing needs to change.
    """
    if user.get("subscription_status") != ACTIVE or user.get("is_paused"):
        return None
    expiry = parse_ts(user.get("subscription_expiry"))
    if expiry is not None and expiry < now:
        return {"subscription_status": EXPIRED}
    return None


async def reconcile_user(db, user: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    updates = reconcile_updates(user, now)
    if not updates:
        return user
    await db.users.update_one({"_id": user["_id"], "subscription_status": ACTIVE}, {"$set": updates})
    logger.info("Subscription of user %s expired", user["_id"])
    return {**user, **updates}


async def reconcile_all(db, now: datetime) -> int:
    """Expire every lapsed subscription. Safe to run repeatedly."""
    expired_ids = []
    async for user in db.users.find({"subscription_status": ACTIVE, "is_paused": {"$ne": True}}):
        if reconcile_updates(user, now):
            expired_ids.append(user["_id"])
    if expired_ids:
        await db.users.update_many(
            {"_id": {"$in": expired_ids}, "subscription_status": ACTIVE},
            {"$set": {"subscription_status": EXPIRED}},
        )
        logger.info("Expired %d lapsed subscriptions", len(expired_ids))
    return len(expired_ids)


def check_access(user: Dict[str, Any]) -> None:
    """Raise the 403 matching the user's state unless the subscription grants access."""
    status = user.get("subscription_status", NONE)
    if is_paused(user):
        raise ApiError(403, "SUBSCRIPTION_PAUSED", "Your subscription has been paused by admin. Please contact support.")
    if status == ACTIVE:
        return
    if status == PENDING:
        raise ApiError(403, "SUBSCRIPTION_PENDING", "Your payment is under verification. Account will be activated within 1 hour.")
    if status == EXPIRED:
        raise ApiError(403, "SUBSCRIPTION_EXPIRED", "Your subscription has expired. Please renew to continue.")
    raise ApiError(403, "NO_SUBSCRIPTION", "Please subscribe to use this service.")


def submit_updates(user: Dict[str, Any], screenshot: str) -> Dict[str, Any]:
    if user.get("subscription_status") == ACTIVE:
        raise bad_request("INVALID_STATE", "Subscription is already active")
    return {"subscription_status": PENDING, "payment_screenshot": screenshot}


def approve_updates(now: datetime) -> Dict[str, Any]:
    return {
        "subscription_status": ACTIVE,
        "subscription_date": iso_ts(now),
        "subscription_expiry": iso_ts(now + SUBSCRIPTION_LENGTH),
        "is_paused": False,
        "paused_at": None,
        "payment_screenshot": None,
    }


def reject_updates() -> Dict[str, Any]:
    return {"subscription_status": NONE, "payment_screenshot": None, "is_paused": False, "paused_at": None}


def pause_updates(user: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    if user.get("subscription_status") != ACTIVE:
        raise bad_request("INVALID_STATE", "Can only pause active subscriptions")
    if user.get("is_paused"):
        raise bad_request("INVALID_STATE", "Subscription is already paused")
    return {"is_paused": True, "paused_at": iso_ts(now)}


def resume_updates(user: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    """Unpause, pushing the expiry forward by however long the pause lasted."""
    if user.get("subscription_status") != ACTIVE:
        raise bad_request("INVALID_STATE", "Can only resume active subscriptions")
    if not user.get("is_paused"):
        raise bad_request("INVALID_STATE", "Subscription is not paused")

    updates: Dict[str, Any] = {"is_paused": False, "paused_at": None}
    paused_at = parse_ts(user.get("paused_at"))
    expiry = parse_ts(user.get("subscription_expiry"))
    if expiry is not None and paused_at is not None:
        updates["subscription_expiry"] = iso_ts(expiry + (now - paused_at))
    return updates


def days_left(user: Dict[str, Any], now: datetime) -> int:
    if user.get("subscription_status") != ACTIVE:
        return 0
    expiry = parse_ts(user.get("subscription_expiry"))
    if expiry is None:
        return 0
    if user.get("is_paused"):
        ref = parse_ts(user.get("paused_at"))
        if ref is None:
            return 0
    else:
        ref = now
    return max(0, math.ceil((expiry - ref).total_seconds() / _DAY_SECONDS))
