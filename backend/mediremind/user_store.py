from __future__ import annotations

import logging
import threading
import uuid
from typing import Callable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .auth import PBKDF2_ITERS, hash_password, verify_password
from .auth_sessions import now_s
from .errors import AlreadyExists, NotFound, ValidationError
from .models import PLANS, User, normalize_email

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


class UserStore:
    """Durable mapping from normalized email to User."""

    def __init__(self, engine, pbkdf2_iters: int = PBKDF2_ITERS, clock: Callable[[], float] | None = None):
        self.engine = engine
        self.pbkdf2_iters = pbkdf2_iters
        self._clock = clock
        self._write_lock = threading.Lock()
        # compared against when the email is unknown so both paths cost one hash
        self._dummy_hash = hash_password(uuid.uuid4().hex, iters=pbkdf2_iters)

    def _now(self) -> int:
        return int(self._clock()) if self._clock is not None else now_s()

    def _session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    def create_user(self, full_name: str, email: str, password: str) -> User:
        key = normalize_email(email)
        pw_hash = hash_password(password, iters=self.pbkdf2_iters)
        with self._write_lock, self._session() as s:
            existing = s.execute(select(User).where(User.email == key)).scalars().first()
            if existing is not None:
                raise AlreadyExists()
            u = User(
                id=uuid.uuid4().hex,
                email=key,
                full_name=full_name.strip(),
                password_hash=pw_hash,
                verified=False,
                created_at=self._now(),
                plan="free",
                plan_expiry=None,
            )
            s.add(u)
            try:
                s.commit()
            except IntegrityError:
                # another writer got the same email in first
                s.rollback()
                raise AlreadyExists() from None
        logger.info("user created id=%s email=%s", u.id, key)
        return u

    def get_user_by_email(self, email: str) -> User | None:
        with self._session() as s:
            return s.execute(select(User).where(User.email == normalize_email(email))).scalars().first()

    def get_user_by_id(self, user_id: str) -> User | None:
        with self._session() as s:
            return s.get(User, user_id)

    def verify_user(self, email: str) -> bool:
        with self._write_lock, self._session() as s:
            u = s.execute(select(User).where(User.email == normalize_email(email))).scalars().first()
            if u is None:
                return False
            if not bool(u.verified):
                u.verified = True
                s.add(u)
                s.commit()
                logger.info("user verified id=%s", u.id)
        return True

    def verify_password(self, email: str, password: str) -> bool:
        u = self.get_user_by_email(email)
        if u is None:
            verify_password(password, self._dummy_hash)
            return False
        return verify_password(password, u.password_hash)

    def update_user_plan(self, user_id: str, plan: str, expiry_days: int | None = None) -> User:
        if plan not in PLANS:
            raise ValidationError(f"Invalid plan: {plan}")
        with self._write_lock, self._session() as s:
            u = s.get(User, user_id)
            if u is None:
                raise NotFound()
            u.plan = plan
            if expiry_days is not None:
                u.plan_expiry = self._now() + int(expiry_days) * SECONDS_PER_DAY
            s.add(u)
            s.commit()
        logger.info("plan updated id=%s plan=%s expiry=%s", user_id, plan, u.plan_expiry)
        return u
