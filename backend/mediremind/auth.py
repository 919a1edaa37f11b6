from __future__ import annotations

import base64
import hashlib
import hmac
import secrets
import time
from typing import Any

import jwt

JWT_ALG = "HS256"
PBKDF2_ITERS = 200000


def _b64(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).decode("utf-8").rstrip("=")


def _b64d(s: str) -> bytes:
    pad = "=" * (-len(s) % 4)
    return base64.urlsafe_b64decode((s + pad).encode("utf-8"))


def hash_password(pw: str, iters: int = PBKDF2_ITERS) -> str:
    # Format: pbkdf2_sha256$iters$salt$hash
    salt = secrets.token_bytes(16)
    dk = hashlib.pbkdf2_hmac("sha256", pw.encode("utf-8"), salt, iters, dklen=32)
    return f"pbkdf2_sha256${iters}${_b64(salt)}${_b64(dk)}"


def verify_password(pw: str, pw_hash: str) -> bool:
    try:
        algo, iters_s, salt_s, hash_s = pw_hash.split("$", 3)
        if algo != "pbkdf2_sha256":
            return False
        iters = int(iters_s)
        salt = _b64d(salt_s)
        expected = _b64d(hash_s)
        dk = hashlib.pbkdf2_hmac("sha256", pw.encode("utf-8"), salt, iters, dklen=len(expected))
        return hmac.compare_digest(dk, expected)
    except (ValueError, TypeError):
        return False


def make_token(user_id: str, email: str, secret: str, ttl_seconds: int, now: int | None = None) -> str:
    now = int(time.time()) if now is None else int(now)
    payload: dict[str, Any] = {
        "sub": str(user_id),
        "email": email,
        "iat": now,
        "exp": now + ttl_seconds,
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALG)


def decode_token(token: str, secret: str, now: int | None = None) -> dict[str, Any]:
    # raises jwt.InvalidTokenError (expired, bad signature, malformed)
    if now is None:
        return jwt.decode(token, secret, algorithms=[JWT_ALG], options={"require": ["sub", "exp"]})
    claims = jwt.decode(
        token,
        secret,
        algorithms=[JWT_ALG],
        options={"require": ["sub", "exp"], "verify_exp": False, "verify_iat": False},
    )
    if int(claims["exp"]) <= int(now):
        raise jwt.ExpiredSignatureError("Signature has expired")
    return claims
