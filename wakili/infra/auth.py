from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt

ROLES = ("client", "provider", "admin")


def create_access_token(
    subject: str,
    role: str,
    ttl_minutes: int,
    settings,
) -> str:
    if role not in ROLES:
        raise ValueError(f"unknown role: {role}")
    expire = datetime.now(tz=timezone.utc) + timedelta(minutes=ttl_minutes)
    payload: Dict[str, Any] = {
        "sub": subject,
        "role": role,
        "exp": expire,
        "iat": datetime.now(tz=timezone.utc),
    }
    return jwt.encode(payload, settings.auth_secret_key, algorithm="HS256")


def decode_access_token(token: str, secret: str) -> dict[str, Any]:
    return jwt.decode(token, secret, algorithms=["HS256"])
