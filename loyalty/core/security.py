from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

import bcrypt
import jwt

from loyalty.core.config import settings


class TokenError(Exception):
    pass


# -------------------------
# Password hashing (bcrypt)
# -------------------------
def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)
    hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False


def random_password() -> str:
    # never handed out; OAuth accounts only need a non-guessable hash on file
    return secrets.token_hex(32)


def generate_qr_token() -> str:
    return f"QRC_{secrets.token_hex(16)}"


def generate_reset_token() -> str:
    return secrets.token_hex(32)


# -------------------------
# JWT tokens
# -------------------------
def create_access_token(*, account_id: int, role: str, email: str) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(account_id),
        "role": role,
        "email": email,
        "type": "access",
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=settings.JWT_ACCESS_MINUTES)).timestamp()),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def create_refresh_token(*, account_id: int) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(account_id),
        "type": "refresh",
        # two refreshes within the same second must still yield distinct tokens
        "jti": secrets.token_hex(8),
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(days=settings.JWT_REFRESH_DAYS)).timestamp()),
    }
    return jwt.encode(payload, settings.refresh_secret, algorithm=settings.JWT_ALG)


def _decode(token: str, secret: str, expected_type: str) -> dict:
    try:
        payload = jwt.decode(token, secret, algorithms=[settings.JWT_ALG])
    except jwt.ExpiredSignatureError as e:
        raise TokenError("Token expired") from e
    except jwt.InvalidTokenError as e:
        raise TokenError("Invalid token") from e

    if payload.get("type") != expected_type:
        raise TokenError("Wrong token type")
    return payload


def decode_access_token(token: str) -> dict:
    return _decode(token, settings.JWT_SECRET, "access")


def decode_refresh_token(token: str) -> dict:
    return _decode(token, settings.refresh_secret, "refresh")


def token_account_id(payload: dict) -> int:
    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError) as e:
        raise TokenError("Token missing account id") from e
