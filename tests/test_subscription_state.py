"""
Unit tests for the subscription state machine
"""
from datetime import datetime, timedelta, timezone

import pytest

from conftest import run
from habit_tracker.errors import ApiError
from habit_tracker.helpers import iso_ts, parse_ts
from habit_tracker.subscription_state import (
    approve_updates,
    check_access,
    days_left,
    pause_updates,
    reconcile_all,
    reconcile_updates,
    reject_updates,
    resume_updates,
    submit_updates,
)

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def active_user(expiry=T0 + timedelta(days=100), **fields):
    user = {"_id": "u1", "subscription_status": "active", "subscription_expiry": iso_ts(expiry), "is_paused": False}
    user.update(fields)
    return user


class TestTransitions:
    def test_approve_sets_one_year(self):
        updates = approve_updates(T0)
        assert updates["subscription_status"] == "active"
        assert parse_ts(updates["subscription_expiry"]) - T0 == timedelta(days=365)
        assert updates["payment_screenshot"] is None
        assert updates["is_paused"] is False

    def test_reject_returns_to_none(self):
        assert reject_updates()["subscription_status"] == "none"

    def test_submit_from_expired(self):
        updates = submit_updates({"subscription_status": "expired"}, "shot.jpg")
        assert updates == {"subscription_status": "pending", "payment_screenshot": "shot.jpg"}

    def test_submit_while_active_rejected(self):
        with pytest.raises(ApiError) as exc:
            submit_updates(active_user(), "shot.jpg")
        assert exc.value.error == "INVALID_STATE"

    def test_pause_then_resume_shifts_expiry_by_pause_length(self):
        expiry = T0 + timedelta(days=100)
        user = active_user(expiry)
        user.update(pause_updates(user, T0))
        assert user["is_paused"] is True

        t2 = T0 + timedelta(days=10, hours=5)
        user.update(resume_updates(user, t2))
        assert user["is_paused"] is False
        assert user["paused_at"] is None
        assert parse_ts(user["subscription_expiry"]) == expiry + (t2 - T0)

    @pytest.mark.parametrize(
        "user,action",
        [
            ({"subscription_status": "pending"}, pause_updates),
            (active_user(is_paused=True, paused_at=iso_ts(T0)), pause_updates),
            ({"subscription_status": "expired"}, resume_updates),
            (active_user(), resume_updates),
        ],
    )
    def test_invalid_pause_resume(self, user, action):
        with pytest.raises(ApiError) as exc:
            action(user, T0)
        assert exc.value.error == "INVALID_STATE"


class TestReconcile:
    def test_lapsed_active_expires(self):
        assert reconcile_updates(active_user(T0 - timedelta(seconds=1)), T0) == {"subscription_status": "expired"}

    def test_unexpired_active_unchanged(self):
        assert reconcile_updates(active_user(T0 + timedelta(seconds=1)), T0) is None

    def test_paused_never_expires(self):
        user = active_user(T0 - timedelta(days=5), is_paused=True, paused_at=iso_ts(T0 - timedelta(days=10)))
        assert reconcile_updates(user, T0) is None

    def test_reconcile_all_is_idempotent(self, db):
        run(db.users.insert_many([
            {**active_user(T0 - timedelta(days=1)), "_id": "lapsed", "google_id": "g-lapsed"},
            {**active_user(T0 + timedelta(days=1)), "_id": "current", "google_id": "g-current"},
            {"_id": "pending", "google_id": "g-pending", "subscription_status": "pending"},
        ]))
        assert run(reconcile_all(db, T0)) == 1
        assert run(reconcile_all(db, T0)) == 0
        assert run(db.users.find_one({"_id": "lapsed"}))["subscription_status"] == "expired"
        assert run(db.users.find_one({"_id": "current"}))["subscription_status"] == "active"


class TestDaysLeft:
    def test_rounds_up(self):
        assert days_left(active_user(T0 + timedelta(days=2, hours=1)), T0) == 3

    def test_never_negative(self):
        assert days_left(active_user(T0 - timedelta(days=3)), T0) == 0

    def test_paused_counts_from_pause(self):
        user = active_user(T0 + timedelta(days=30), is_paused=True, paused_at=iso_ts(T0 + timedelta(days=10)))
        assert days_left(user, T0 + timedelta(days=25)) == 20

    def test_inactive_is_zero(self):
        assert days_left({"subscription_status": "pending"}, T0) == 0


class TestCheckAccess:
    @pytest.mark.parametrize(
        "user,code",
        [
            ({"subscription_status": "none"}, "NO_SUBSCRIPTION"),
            ({"subscription_status": "pending"}, "SUBSCRIPTION_PENDING"),
            ({"subscription_status": "expired"}, "SUBSCRIPTION_EXPIRED"),
            (active_user(is_paused=True), "SUBSCRIPTION_PAUSED"),
        ],
    )
    def test_blocked_states(self, user, code):
        with pytest.raises(ApiError) as exc:
            check_access(user)
        assert exc.value.status_code == 403
        assert exc.value.error == code

    def test_active_passes(self):
        check_access(active_user())
