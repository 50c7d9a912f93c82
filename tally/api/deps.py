"""
tally.api.deps — FastAPI dependency injection
==============================================

JWTs are HS256, signed with ``JWT_SECRET``.  ``sub`` carries the member id
and ``is_admin`` marks administrators.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from tally.config import TallyConfig, load_config
from tally.database.engine import create_db_engine
from tally.services.fulfillment import FlutterwaveGateway

_WEAK_SECRETS = frozenset({
    "tally-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> TallyConfig:
    return load_config()


@lru_cache(maxsize=1)
def get_gateway() -> FlutterwaveGateway:
    return FlutterwaveGateway.from_env()


def _decode(authorization: str | None) -> dict:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    try:
        payload["member_id"] = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token subject")
    return payload


def get_current_member(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Validate JWT and return its payload with ``member_id`` set. 401 if invalid."""
    return _decode(authorization)


def get_current_admin(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Validate JWT and return admin user payload. Raises 401/403."""
    payload = _decode(authorization)
    if not payload.get("is_admin"):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not admin")
    return payload


def require_self_or_admin(member_id: int, caller: dict) -> None:
    """Members may only read their own ledger; admins may read anyone's."""
    if caller["member_id"] != member_id and not caller.get("is_admin"):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not allowed")
