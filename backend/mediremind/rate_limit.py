"""
Per-email login throttle.

Counts consecutive failed logins and blocks the email for a fixed window
once MAX_FAILS is reached. A correct password clears the record. Lockouts
expire on their own; they are never permanent.

LoginRateLimiter keeps its state in process memory (a restart clears every
lockout). RedisLoginRateLimiter keeps the same records in Redis so they are
shared by workers and survive restarts.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from typing import Callable

import redis

from .auth_sessions import now_s
from .models import normalize_email

logger = logging.getLogger(__name__)

MAX_FAILS = 5
LOCK_SECONDS = 30 * 60


@dataclass
class LoginAttemptRecord:
    attempts: int = 0
    last_attempt: float = 0.0
    blocked_until: float | None = None


@dataclass
class RateLimitStatus:
    allowed: bool
    blocked_minutes: int | None = None
    remaining_attempts: int | None = None


class LoginRateLimiter:
    def __init__(
        self,
        max_fails: int = MAX_FAILS,
        lock_seconds: int = LOCK_SECONDS,
        clock: Callable[[], float] | None = None,
    ):
        self.max_fails = max_fails
        self.lock_seconds = lock_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._records: dict[str, LoginAttemptRecord] = {}

    def _now(self) -> float:
        return float(self._clock()) if self._clock is not None else float(now_s())

    def check(self, email: str) -> RateLimitStatus:
        key = normalize_email(email)
        now = self._now()
        with self._lock:
            rec = self._records.get(key)
            if rec is None:
                return RateLimitStatus(True, remaining_attempts=self.max_fails)

            if rec.blocked_until is not None:
                if now < rec.blocked_until:
                    return RateLimitStatus(False, blocked_minutes=math.ceil((rec.blocked_until - now) / 60))
                # lockout over: start counting from zero again
                del self._records[key]
                return RateLimitStatus(True, remaining_attempts=self.max_fails)

            return RateLimitStatus(True, remaining_attempts=max(self.max_fails - rec.attempts, 0))

    def record_failure(self, email: str) -> LoginAttemptRecord:
        key = normalize_email(email)
        now = self._now()
        with self._lock:
            rec = self._records.get(key)
            if rec is None:
                rec = LoginAttemptRecord(last_attempt=now)
                self._records[key] = rec
            rec.attempts += 1
            rec.last_attempt = now
            if rec.attempts >= self.max_fails and rec.blocked_until is None:
                rec.blocked_until = now + self.lock_seconds
                logger.warning("login locked email=%s for %ss after %s failures", key, self.lock_seconds, rec.attempts)
            return LoginAttemptRecord(rec.attempts, rec.last_attempt, rec.blocked_until)

    def reset(self, email: str) -> None:
        with self._lock:
            self._records.pop(normalize_email(email), None)


class RedisLoginRateLimiter:
    """Same contract as LoginRateLimiter, one Redis hash per email."""

    KEY_PREFIX = "mediremind:login_attempts:"

    def __init__(
        self,
        client,
        max_fails: int = MAX_FAILS,
        lock_seconds: int = LOCK_SECONDS,
        clock: Callable[[], float] | None = None,
    ):
        self.r = client
        self.max_fails = max_fails
        self.lock_seconds = lock_seconds
        self._clock = clock

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisLoginRateLimiter":
        return cls(redis.Redis.from_url(url, decode_responses=True), **kwargs)

    def _now(self) -> float:
        return float(self._clock()) if self._clock is not None else float(now_s())

    def _key(self, email: str) -> str:
        return self.KEY_PREFIX + normalize_email(email)

    def check(self, email: str) -> RateLimitStatus:
        key = self._key(email)
        data = self.r.hgetall(key)
        if not data:
            return RateLimitStatus(True, remaining_attempts=self.max_fails)

        now = self._now()
        blocked_until = float(data.get("blocked_until") or 0)
        if blocked_until:
            if now < blocked_until:
                return RateLimitStatus(False, blocked_minutes=math.ceil((blocked_until - now) / 60))
            self.r.delete(key)
            return RateLimitStatus(True, remaining_attempts=self.max_fails)

        attempts = int(data.get("attempts") or 0)
        return RateLimitStatus(True, remaining_attempts=max(self.max_fails - attempts, 0))

    def record_failure(self, email: str) -> LoginAttemptRecord:
        key = self._key(email)
        now = self._now()
        attempts = int(self.r.hincrby(key, "attempts", 1))
        self.r.hset(key, "last_attempt", now)
        blocked_until = self.r.hget(key, "blocked_until")
        if attempts >= self.max_fails and not blocked_until:
            blocked_until = now + self.lock_seconds
            self.r.hset(key, "blocked_until", blocked_until)
            logger.warning("login locked email=%s for %ss after %s failures", normalize_email(email), self.lock_seconds, attempts)
        # idle records fall out on their own
        self.r.expire(key, self.lock_seconds * 2)
        return LoginAttemptRecord(attempts, now, float(blocked_until) if blocked_until else None)

    def reset(self, email: str) -> None:
        self.r.delete(self._key(email))

    def ping(self) -> bool:
        try:
            return bool(self.r.ping())
        except Exception:  # noqa: BLE001
            return False
