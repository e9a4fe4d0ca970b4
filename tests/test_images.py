"""
Tests for payment screenshot compression and upload
"""
import io
import os

import pytest
from fastapi import status
from PIL import Image

from conftest import run
from habit_tracker import subscription
from habit_tracker.config import SCREENSHOT_MAX_STORED_BYTES
from habit_tracker.errors import ApiError
from habit_tracker.images import compress_screenshot


def noisy_png(width=1600, height=2400):
    """A screenshot-sized image that JPEG cannot compress well"""
    img = Image.frombytes("RGB", (width, height), os.urandom(width * height * 3))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def small_png():
    buf = io.BytesIO()
    Image.new("RGBA", (200, 300), (10, 120, 200, 255)).save(buf, format="PNG")
    return buf.getvalue()


class TestCompression:
    def test_large_image_fits_limit(self):
        out = compress_screenshot(noisy_png())
        assert len(out) <= SCREENSHOT_MAX_STORED_BYTES
        img = Image.open(io.BytesIO(out))
        assert img.format == "JPEG"
        assert max(img.size) <= 1200

    def test_small_image_not_enlarged(self):
        img = Image.open(io.BytesIO(compress_screenshot(small_png())))
        assert img.size == (200, 300)
        assert img.mode == "RGB"

    def test_not_an_image(self):
        with pytest.raises(ApiError) as exc:
            compress_screenshot(b"definitely not an image")
        assert exc.value.error == "INVALID_IMAGE"

    def test_decompression_bomb(self, monkeypatch):
        # 200x300 is more than twice the limit, which Pillow refuses outright
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 10000)
        with pytest.raises(ApiError) as exc:
            compress_screenshot(small_png())
        assert exc.value.error == "INVALID_IMAGE"


class TestSubmitPayment:
    """POST /api/subscription/submit-payment"""

    def test_submit_sets_pending(self, client, db, make_user, headers_for, upload_dir):
        user = make_user("none")
        response = client.post(
            "/api/subscription/submit-payment",
            files={"screenshot": ("pay.png", small_png(), "image/png")},
            headers=headers_for(user),
        )
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["user"]["subscriptionStatus"] == "pending"
        assert data["screenshotUrl"].startswith("/api/uploads/payment-")

        stored = run(db.users.find_one({"_id": user["_id"]}))
        assert stored["subscription_status"] == "pending"
        assert (upload_dir / stored["payment_screenshot"]).exists()

    def test_resubmit_replaces_previous_file(self, client, db, make_user, headers_for, upload_dir):
        user = make_user("none")
        headers = headers_for(user)
        files = {"screenshot": ("pay.png", small_png(), "image/png")}
        client.post("/api/subscription/submit-payment", files=files, headers=headers)
        first = run(db.users.find_one({"_id": user["_id"]}))["payment_screenshot"]

        client.post("/api/subscription/submit-payment", files=files, headers=headers)
        second = run(db.users.find_one({"_id": user["_id"]}))["payment_screenshot"]
        assert second != first
        assert not (upload_dir / first).exists()
        assert [p.name for p in upload_dir.iterdir()] == [second]

    def test_missing_file(self, client, make_user, headers_for):
        response = client.post("/api/subscription/submit-payment", headers=headers_for(make_user("none")))
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"] == "NO_FILE"

    def test_invalid_image(self, client, make_user, headers_for):
        response = client.post(
            "/api/subscription/submit-payment",
            files={"screenshot": ("pay.png", b"garbage", "image/png")},
            headers=headers_for(make_user("expired")),
        )
        assert response.json()["error"] == "INVALID_IMAGE"

    def test_file_too_large(self, client, make_user, headers_for, monkeypatch, upload_dir):
        monkeypatch.setattr(subscription, "SCREENSHOT_MAX_UPLOAD_BYTES", 100)
        response = client.post(
            "/api/subscription/submit-payment",
            files={"screenshot": ("pay.png", small_png(), "image/png")},
            headers=headers_for(make_user("none")),
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"] == "FILE_TOO_LARGE"
        assert list(upload_dir.iterdir()) == []

    def test_already_active(self, client, make_user, headers_for, upload_dir):
        response = client.post(
            "/api/subscription/submit-payment",
            files={"screenshot": ("pay.png", small_png(), "image/png")},
            headers=headers_for(make_user("active")),
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"] == "INVALID_STATE"
        assert list(upload_dir.iterdir()) == []
