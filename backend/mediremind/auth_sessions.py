from __future__ import annotations

import hmac
import logging
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable

from sqlalchemy.orm import Session

from .errors import CodeError, ValidationError
from .models import PURPOSES, VerificationSession, normalize_email

logger = logging.getLogger(__name__)

CODE_TTL_SECONDS = 15 * 60
CODE_MAX_ATTEMPTS = 5


def now_s() -> int:
    return int(time.time())


def new_code() -> str:
    # uniform over 100000..999999
    return str(100000 + secrets.randbelow(900000))


@dataclass
class CodeCheck:
    valid: bool
    error: CodeError | None = None
    purpose: str | None = None


class VerificationStore:
    """One-time email codes, one active session per normalized email."""

    def __init__(
        self,
        engine,
        ttl_seconds: int = CODE_TTL_SECONDS,
        max_attempts: int = CODE_MAX_ATTEMPTS,
        clock: Callable[[], float] | None = None,
    ):
        self.engine = engine
        self.ttl_seconds = ttl_seconds
        self.max_attempts = max_attempts
        self._clock = clock
        self._write_lock = threading.Lock()

    def _now(self) -> int:
        return int(self._clock()) if self._clock is not None else now_s()

    def create_session(self, email: str, purpose: str) -> str:
        if purpose not in PURPOSES:
            raise ValidationError(f"unknown verification purpose: {purpose}")
        key = normalize_email(email)
        code = new_code()
        now = self._now()
        with self._write_lock, Session(self.engine) as s:
            row = s.get(VerificationSession, key)
            if row is None:
                row = VerificationSession(email=key)
            # overwrite whatever was outstanding for this email
            row.code = code
            row.purpose = purpose
            row.expires_at = now + self.ttl_seconds
            row.attempts = 0
            row.created_at = now
            s.add(row)
            s.commit()
        logger.info("verification session issued email=%s purpose=%s", key, purpose)
        return code

    def verify_code(self, email: str, code: str, purpose: str | None = None) -> CodeCheck:
        """Check and consume a code. With `purpose`, a session issued for
        another purpose is treated as absent and left untouched."""
        key = normalize_email(email)
        code = (code or "").strip()
        now = self._now()
        with self._write_lock, Session(self.engine) as s:
            row = s.get(VerificationSession, key)
            if row is None or (purpose is not None and row.purpose != purpose):
                return CodeCheck(False, CodeError.NO_SESSION)

            # expired rows stay until a resend replaces them
            if now > int(row.expires_at):
                return CodeCheck(False, CodeError.EXPIRED)

            if not code.isascii() or not hmac.compare_digest(str(row.code), code):
                row.attempts = int(row.attempts or 0) + 1
                if row.attempts >= self.max_attempts:
                    logger.warning("verification session burned after %s mismatches email=%s", row.attempts, key)
                    s.delete(row)
                else:
                    s.add(row)
                s.commit()
                return CodeCheck(False, CodeError.MISMATCH)

            purpose = str(row.purpose)
            s.delete(row)
            s.commit()
        return CodeCheck(True, purpose=purpose)

    def get_session(self, email: str) -> VerificationSession | None:
        with Session(self.engine, expire_on_commit=False) as s:
            return s.get(VerificationSession, normalize_email(email))
