import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.concurrency import run_in_threadpool

from .config import SCREENSHOT_MAX_UPLOAD_BYTES
from .database import get_db
from .errors import bad_request
from .helpers import new_id, now_utc
from .images import compress_screenshot, delete_screenshot, screenshot_url, store_screenshot
from .models import SubmitPaymentResponse, SubscriptionStatusOut, user_out
from .security import current_user
from .subscription_state import days_left, submit_updates

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subscription", tags=["subscription"])


@router.post("/submit-payment", response_model=SubmitPaymentResponse)
async def submit_payment(
    screenshot: Optional[UploadFile] = File(None),
    user: Dict[str, Any] = Depends(current_user),
    db=Depends(get_db),
) -> SubmitPaymentResponse:
    if screenshot is None:
        raise bad_request("NO_FILE", "Payment screenshot is required")
    if screenshot.size is not None and screenshot.size > SCREENSHOT_MAX_UPLOAD_BYTES:
        raise bad_request("FILE_TOO_LARGE", "Screenshot must be 5MB or smaller")
    data = await screenshot.read()
    if not data:
        raise bad_request("NO_FILE", "Payment screenshot is required")
    if len(data) > SCREENSHOT_MAX_UPLOAD_BYTES:
        raise bad_request("FILE_TOO_LARGE", "Screenshot must be 5MB or smaller")

    submit_updates(user, "")
    compressed = await run_in_threadpool(compress_screenshot, data)
    filename = await run_in_threadpool(store_screenshot, compressed, user["_id"], new_id())
    updates = submit_updates(user, filename)
    await db.users.update_one({"_id": user["_id"]}, {"$set": updates})

    previous = user.get("payment_screenshot")
    if previous and previous != filename:
        delete_screenshot(previous)

    logger.info("User %s submitted a payment screenshot (%d bytes stored)", user["_id"], len(compressed))
    user = {**user, **updates}
    return SubmitPaymentResponse(
        message="Payment submitted. Your account will be activated after verification.",
        user=user_out(user),
        screenshot_url=screenshot_url(filename),
    )


@router.get("/status", response_model=SubscriptionStatusOut)
async def subscription_status(user: Dict[str, Any] = Depends(current_user)) -> SubscriptionStatusOut:
    return SubscriptionStatusOut(
        subscription_status=user.get("subscription_status", "none"),
        subscription_expiry=user.get("subscription_expiry"),
        is_paused=bool(user.get("is_paused", False)),
        payment_screenshot=screenshot_url(user.get("payment_screenshot")),
        days_left=days_left(user, now_utc()),
    )
