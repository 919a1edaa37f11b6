from __future__ import annotations

import logging
import re
from dataclasses import dataclass

import jwt

from .auth import decode_token, make_token
from .auth_sessions import VerificationStore
from .errors import (
    InvalidCredentials,
    InvalidOrExpiredCode,
    InvalidToken,
    NotFound,
    NotVerified,
    RateLimited,
    ValidationError,
)
from .mailer import Mailer, verification_email
from .models import PURPOSES, User, normalize_email
from .settings import Settings
from .user_store import UserStore

logger = logging.getLogger(__name__)

PAID_PLANS = ("individual", "family")
BILLING_DAYS = {"monthly": 30, "yearly": 365}


@dataclass
class IssuedCode:
    email: str
    purpose: str
    code: str


@dataclass
class LoginResult:
    token: str
    user: User


def _validate_email(email: str) -> None:
    if "@" not in email or "." not in email.split("@")[-1]:
        raise ValidationError("Invalid email address")


def _validate_strong_password(pw: str) -> None:
    # >=8, at least 1 digit, 1 uppercase, 1 lowercase
    if len(pw) < 8:
        raise ValidationError("Password must be at least 8 characters")
    if not re.search(r"[a-z]", pw):
        raise ValidationError("Password must include a lowercase letter")
    if not re.search(r"[A-Z]", pw):
        raise ValidationError("Password must include an uppercase letter")
    if not re.search(r"\d", pw):
        raise ValidationError("Password must include a number")


class AuthService:
    """Signup, email verification, two-step login and plan changes."""

    def __init__(self, settings: Settings, users: UserStore, codes: VerificationStore, limiter, mailer: Mailer, clock=None):
        self.settings = settings
        self.users = users
        self.codes = codes
        self.limiter = limiter
        self.mailer = mailer
        self._clock = clock

    # ---------------------------------------------------------------- helpers

    def _now(self) -> int | None:
        return int(self._clock()) if self._clock is not None else None

    def _issue_code(self, user: User, purpose: str, resend: bool = False) -> IssuedCode:
        code = self.codes.create_session(user.email, purpose)
        subject, html, text = verification_email(
            user.full_name, code, purpose, ttl_minutes=self.settings.code_ttl_seconds // 60, resend=resend
        )
        ok, reason = self.mailer.send(user.email, subject, html=html, text=text)
        if not ok:
            # the code stays valid; dev builds still surface it
            logger.warning("verification mail not delivered email=%s purpose=%s reason=%s", user.email, purpose, reason)
        if self.settings.debug_codes:
            logger.info("[dev] %s code for %s: %s", purpose, user.email, code)
        return IssuedCode(email=user.email, purpose=purpose, code=code)

    def _check_code(self, email: str, code: str, purpose: str) -> None:
        if not email or not code:
            raise ValidationError("Email and code are required")
        check = self.codes.verify_code(email, code, purpose=purpose)
        if not check.valid:
            # the reason stays in the log, the client only sees one error
            logger.info("code rejected email=%s purpose=%s reason=%s", normalize_email(email), purpose, check.error.value)
            raise InvalidOrExpiredCode()

    # ---------------------------------------------------------------- signup

    def signup(self, full_name: str, email: str, password: str) -> IssuedCode:
        full_name = (full_name or "").strip()
        email = normalize_email(email)
        password = password or ""
        if not full_name or not email or not password:
            raise ValidationError("All fields are required")
        _validate_email(email)
        _validate_strong_password(password)

        user = self.users.create_user(full_name, email, password)
        return self._issue_code(user, "signup")

    def verify_signup(self, email: str, code: str) -> User:
        self._check_code(email, code, "signup")
        if not self.users.verify_user(email):
            raise NotFound()
        user = self.users.get_user_by_email(email)
        if user is None:
            raise NotFound()
        return user

    # ---------------------------------------------------------------- login

    def login(self, email: str, password: str) -> IssuedCode:
        email = normalize_email(email)
        if not email or not password:
            raise ValidationError("Email and password are required")

        status = self.limiter.check(email)
        if not status.allowed:
            raise RateLimited(status.blocked_minutes or 1)

        user = self.users.get_user_by_email(email)
        if user is None:
            rec = self.limiter.record_failure(email)
            raise InvalidCredentials(remainingAttempts=max(self.limiter.max_fails - rec.attempts, 0))

        # not counted as a failed attempt
        if not bool(user.verified):
            raise NotVerified()

        if not self.users.verify_password(email, password):
            rec = self.limiter.record_failure(email)
            raise InvalidCredentials(remainingAttempts=max(self.limiter.max_fails - rec.attempts, 0))

        self.limiter.reset(email)
        return self._issue_code(user, "login")

    def verify_login(self, email: str, code: str) -> LoginResult:
        self._check_code(email, code, "login")
        user = self.users.get_user_by_email(email)
        if user is None:
            raise NotFound()
        if not bool(user.verified):
            raise NotVerified()
        token = make_token(user.id, user.email, self.settings.jwt_secret, self.settings.jwt_ttl_seconds, now=self._now())
        logger.info("login complete id=%s", user.id)
        return LoginResult(token=token, user=user)

    # ---------------------------------------------------------------- resend

    def resend_code(self, email: str, purpose: str | None = None) -> IssuedCode:
        email = normalize_email(email)
        purpose = (purpose or "signup").strip().lower()
        if not email:
            raise ValidationError("Email is required")
        if purpose not in PURPOSES:
            raise ValidationError(f"Invalid verification type: {purpose}")
        user = self.users.get_user_by_email(email)
        if user is None:
            raise NotFound()
        if purpose == "login":
            self._check_login_resend(user)
        return self._issue_code(user, purpose, resend=True)

    def _check_login_resend(self, user: User) -> None:
        # a login code is only reissued while the password step is still pending
        status = self.limiter.check(user.email)
        if not status.allowed:
            raise RateLimited(status.blocked_minutes or 1)
        if not bool(user.verified):
            raise NotVerified()
        pending = self.codes.get_session(user.email)
        if pending is None or pending.purpose != "login":
            raise ValidationError("No login in progress. Please login with your password first.")

    # ---------------------------------------------------------------- tokens / plans

    def user_from_token(self, token: str | None) -> User:
        if not token:
            raise InvalidToken()
        try:
            claims = decode_token(token, self.settings.jwt_secret, now=self._now())
        except jwt.InvalidTokenError:
            raise InvalidToken("Invalid or expired token") from None
        user = self.users.get_user_by_id(str(claims.get("sub")))
        if user is None:
            raise InvalidToken("User not found")
        return user

    def upgrade_plan(self, user: User, plan: str, billing_cycle: str | None = None) -> User:
        plan = (plan or "").strip().lower()
        if plan not in PAID_PLANS:
            raise ValidationError("Invalid plan")
        days = BILLING_DAYS.get((billing_cycle or "monthly").strip().lower(), BILLING_DAYS["monthly"])
        return self.users.update_user_plan(user.id, plan, expiry_days=days)
