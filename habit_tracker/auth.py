import logging
from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool
from pymongo.errors import DuplicateKeyError

from . import security
from .database import get_db
from .habits import create_default_habits
from .helpers import iso_date, iso_ts, new_id, now_utc, parse_date
from .models import GoogleLoginRequest, LoginResponse, ProfileUpdate, UserOut, VerifyResponse, user_out
from .subscription_state import NONE

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def new_user_doc(claims: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    email = claims.get("email", "")
    return {
        "_id": new_id(),
        "google_id": str(claims["sub"]),
        "email": email,
        "name": claims.get("name") or email.split("@")[0],
        "picture": claims.get("picture"),
        "dob": None,
        "gender": "",
        "created_at": iso_ts(now),
        "is_active": True,
        "subscription_status": NONE,
        "subscription_date": None,
        "subscription_expiry": None,
        "is_paused": False,
        "paused_at": None,
        "payment_screenshot": None,
    }


@router.post("/google", response_model=LoginResponse)
async def google_login(payload: GoogleLoginRequest, db=Depends(get_db)) -> LoginResponse:
    claims = await run_in_threadpool(security.verify_google_credential, payload.credential)
    google_id = str(claims["sub"])

    user = await db.users.find_one({"google_id": google_id})
    is_new_user = False
    if not user:
        now = now_utc()
        doc = new_user_doc(claims, now)
        try:
            await db.users.insert_one(doc)
        except DuplicateKeyError:
            # Concurrent first sign-in already created the account
            user = await db.users.find_one({"google_id": google_id})
        else:
            user = doc
            is_new_user = True
            await create_default_habits(db, user["_id"], now)
            logger.info("New user %s signed up", user["_id"])

    token = security.create_user_token(user["_id"])
    return LoginResponse(token=token, user=user_out(user), is_new_user=is_new_user)


@router.get("/profile", response_model=UserOut)
async def get_profile(user: Dict[str, Any] = Depends(security.current_user)) -> UserOut:
    return user_out(user)


@router.put("/profile", response_model=UserOut)
async def update_profile(
    payload: ProfileUpdate,
    user: Dict[str, Any] = Depends(security.current_user),
    db=Depends(get_db),
) -> UserOut:
    updates: Dict[str, Any] = {}
    if payload.name:
        updates["name"] = payload.name
    if "dob" in payload.model_fields_set:
        updates["dob"] = iso_date(parse_date(payload.dob)) if payload.dob else None
    if "gender" in payload.model_fields_set:
        updates["gender"] = payload.gender or ""

    if updates:
        await db.users.update_one({"_id": user["_id"]}, {"$set": updates})
        user = {**user, **updates}
    return user_out(user)


@router.get("/verify", response_model=VerifyResponse)
async def verify(user: Dict[str, Any] = Depends(security.current_user)) -> VerifyResponse:
    return VerifyResponse(valid=True, user=user_out(user))
