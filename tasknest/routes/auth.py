from __future__ import annotations

import asyncio
import logging
import re
import sqlite3

from fastapi import APIRouter, HTTPException, status

from ..db import connect
from ..photos import intake_data_uri
from ..schemas import LoginRequest, MessageResponse, RegisterRequest, TokenResponse
from ..security import create_access_token, hash_password, verify_password
from ..timeutil import now_iso

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 6


def _bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


@router.post("/register", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def register(body: RegisterRequest):
    if not body.name or not body.email or not body.password or not body.confirm_password:
        raise _bad_request("Name, email, password, and confirm password are required")
    if body.password != body.confirm_password:
        raise _bad_request("Passwords do not match")
    if not body.agree_to_terms:
        raise _bad_request("You must agree to the terms and conditions")
    if not EMAIL_RE.match(body.email):
        raise _bad_request("Please enter a valid email address")
    if len(body.password) < MIN_PASSWORD_LENGTH:
        raise _bad_request(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")

    with connect() as conn:
        exists = conn.execute("SELECT 1 FROM users WHERE email=?", (body.email,)).fetchone()
    if exists:
        raise _bad_request("User already exists")

    photo = await intake_data_uri(body.profile_photo) if body.profile_photo else None
    hashed = await asyncio.to_thread(hash_password, body.password)

    try:
        with connect() as conn:
            conn.execute(
                """
                INSERT INTO users (name, email, phone, password, profile_photo, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    body.name,
                    body.email,
                    body.phone or None,
                    hashed,
                    photo,
                    now_iso(),
                ),
            )
    except sqlite3.IntegrityError as exc:
        # Lost a race against a concurrent registration with the same email.
        raise _bad_request("User already exists") from exc

    logger.info("Registered user %s", body.email)
    return MessageResponse(message="User registered successfully")


@router.post("/login", response_model=TokenResponse)
def login(body: LoginRequest):
    if not body.email or not body.password:
        raise _bad_request("All fields are required")

    with connect() as conn:
        user = conn.execute(
            "SELECT id, password FROM users WHERE email=?", (body.email,)
        ).fetchone()

    if not user:
        raise _bad_request("Invalid credentials")
    if not verify_password(body.password, user["password"]):
        raise _bad_request("Invalid password")

    return TokenResponse(token=create_access_token(user["id"]))
