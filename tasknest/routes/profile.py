from __future__ import annotations

import asyncio
import base64
import logging
import sqlite3
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from ..db import connect
from ..deps import current_user_id
from ..imaging import ImageAsset, format_file_size, to_data_uri
from ..photos import intake_data_uri, intake_photo
from ..schemas import MessageResponse, PhotoUploadResponse, ProfileResponse, ProfileUpdateRequest
from ..security import hash_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/profile", tags=["profile"])

MASKED_PASSWORD = "********"
ALLOWED_PHOTO_TYPES = ("image/jpeg", "image/png")


def _profile_from_row(row: sqlite3.Row) -> ProfileResponse:
    photo = row["profile_photo"]
    return ProfileResponse(
        id=row["id"],
        name=row["name"],
        email=row["email"],
        phone=row["phone"],
        profile_photo=to_data_uri(base64.b64encode(photo).decode("ascii")) if photo else None,
        masked_password=MASKED_PASSWORD,
        created_at=row["created_at"],
    )


def _load_profile(conn: sqlite3.Connection, user_id: int) -> Optional[sqlite3.Row]:
    return conn.execute(
        "SELECT id, name, email, phone, profile_photo, created_at FROM users WHERE id=?",
        (user_id,),
    ).fetchone()


@router.get("", response_model=ProfileResponse)
@router.get("/", response_model=ProfileResponse, include_in_schema=False)
def get_profile(user_id: int = Depends(current_user_id)):
    with connect() as conn:
        row = _load_profile(conn, user_id)

    if not row:
        raise HTTPException(status_code=404, detail="User not found")
    return _profile_from_row(row)


@router.put("/update", response_model=ProfileResponse)
async def update_profile(body: ProfileUpdateRequest, user_id: int = Depends(current_user_id)):
    photo = None
    if body.profile_photo and body.profile_photo.startswith("data:image/"):
        photo = await intake_data_uri(body.profile_photo)

    assignments: List[str] = ["name=?", "email=?", "phone=?"]
    params: list = [body.name, body.email, body.phone]
    if photo is not None:
        assignments.append("profile_photo=?")
        params.append(photo)
    if body.password:
        assignments.append("password=?")
        params.append(await asyncio.to_thread(hash_password, body.password))
    params.append(user_id)

    try:
        with connect() as conn:
            cur = conn.execute(f"UPDATE users SET {', '.join(assignments)} WHERE id=?", params)
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="User not found")
            row = _load_profile(conn, user_id)
    except sqlite3.IntegrityError as exc:
        raise HTTPException(status_code=400, detail="Email is already in use") from exc

    return _profile_from_row(row)


@router.post("/photo", response_model=PhotoUploadResponse)
async def upload_photo(file: UploadFile = File(...), user_id: int = Depends(current_user_id)):
    if file.content_type not in ALLOWED_PHOTO_TYPES:
        raise HTTPException(status_code=400, detail="Only JPG and PNG are allowed.")

    contents = await file.read()
    if not contents:
        raise HTTPException(status_code=400, detail="Empty upload.")

    result = await intake_photo(ImageAsset(data=contents))

    with connect() as conn:
        cur = conn.execute(
            "UPDATE users SET profile_photo=? WHERE id=?", (result.to_bytes(), user_id)
        )
        if cur.rowcount == 0:
            raise HTTPException(status_code=404, detail="User not found")

    logger.info(
        "Stored profile photo for user %s: %s (compressed=%s)",
        user_id,
        format_file_size(result.size),
        result.compressed,
    )
    return PhotoUploadResponse(
        size=result.size,
        compressed=result.compressed,
        original_size=result.original_size,
        budget_met=result.budget_met,
        size_label=format_file_size(result.size),
        profile_photo=result.data_uri,
    )


@router.delete("/delete", response_model=MessageResponse)
def delete_account(user_id: int = Depends(current_user_id)):
    with connect() as conn:
        conn.execute("DELETE FROM todos WHERE user_id=?", (user_id,))
        cur = conn.execute("DELETE FROM users WHERE id=?", (user_id,))
        if cur.rowcount == 0:
            raise HTTPException(status_code=404, detail="User not found")

    logger.info("Deleted account %s", user_id)
    return MessageResponse(message="Account deleted successfully")
