from datetime import timedelta

import jwt
import pytest
from freezegun import freeze_time

from mediremind.auth_sessions import VerificationStore
from mediremind.errors import (
    AlreadyExists,
    InvalidCredentials,
    InvalidOrExpiredCode,
    InvalidToken,
    NotFound,
    NotVerified,
    RateLimited,
    ValidationError,
)
from mediremind.rate_limit import LoginRateLimiter
from mediremind.service import AuthService
from mediremind.user_store import UserStore

PASSWORD = "Str0ng!Pass"


def _wrong(code: str) -> str:
    return "000000" if code != "000000" else "111111"


def _verified_user(service, email="alice@example.com"):
    issued = service.signup("Alice", email, PASSWORD)
    service.verify_signup(email, issued.code)
    return issued


def test_signup_to_authenticated_token(service, mailer, settings):
    c1 = service.signup("Alice", "alice@example.com", PASSWORD)
    assert c1.purpose == "signup"
    assert mailer.sent[-1]["to"] == "alice@example.com"
    assert c1.code in mailer.sent[-1]["html"]

    with pytest.raises(InvalidOrExpiredCode):
        service.verify_signup("alice@example.com", _wrong(c1.code))

    user = service.verify_signup("alice@example.com", c1.code)
    assert user.verified is True

    c2 = service.login("alice@example.com", PASSWORD)
    assert c2.purpose == "login"
    assert mailer.sent[-1]["subject"] == "MediRemind Login Verification Code"

    result = service.verify_login("alice@example.com", c2.code)
    claims = jwt.decode(result.token, settings.jwt_secret, algorithms=["HS256"], options={"verify_exp": False})
    assert claims["sub"] == user.id
    assert claims["email"] == "alice@example.com"
    assert claims["exp"] - claims["iat"] == settings.jwt_ttl_seconds

    assert service.user_from_token(result.token).id == user.id


@pytest.mark.parametrize(
    "full_name,email,password",
    [
        ("", "a@example.com", PASSWORD),
        ("Alice", "", PASSWORD),
        ("Alice", "a@example.com", ""),
        (None, None, None),
        ("Alice", "not-an-email", PASSWORD),
        ("Alice", "a@example.com", "short1A"),
        ("Alice", "a@example.com", "alllowercase1"),
        ("Alice", "a@example.com", "ALLUPPERCASE1"),
        ("Alice", "a@example.com", "NoDigitsHere"),
    ],
)
def test_signup_validation(service, users, full_name, email, password):
    with pytest.raises(ValidationError):
        service.signup(full_name, email, password)
    assert users.get_user_by_email("a@example.com") is None


def test_signup_twice(service):
    service.signup("Alice", "alice@example.com", PASSWORD)
    with pytest.raises(AlreadyExists):
        service.signup("Alice", "Alice@Example.com", PASSWORD)


def test_signup_survives_mail_failure(service, mailer, users):
    mailer.ok = False
    issued = service.signup("Alice", "alice@example.com", PASSWORD)

    assert users.get_user_by_email("alice@example.com") is not None
    assert service.verify_signup("alice@example.com", issued.code).verified is True


def test_unverified_login_does_not_count(service, limiter):
    service.signup("Alice", "alice@example.com", PASSWORD)

    with pytest.raises(NotVerified):
        service.login("alice@example.com", PASSWORD)
    assert limiter.check("alice@example.com").remaining_attempts == 5


def test_not_verified_short_circuits_before_password(service, users, limiter):
    """Wrong passwords on an unverified account still only say NotVerified."""
    service.signup("Alice", "alice@example.com", PASSWORD)
    for _ in range(6):
        with pytest.raises(NotVerified):
            service.login("alice@example.com", "Wr0ng!Pass")
    assert limiter.check("alice@example.com").allowed is True

    # once verified, five wrong passwords lock it
    users.verify_user("alice@example.com")
    for _ in range(5):
        with pytest.raises(InvalidCredentials):
            service.login("alice@example.com", "Wr0ng!Pass")
    with pytest.raises(RateLimited) as exc:
        service.login("alice@example.com", PASSWORD)
    assert exc.value.blocked_minutes == 30


def test_wrong_password_reports_remaining(service):
    _verified_user(service)

    with pytest.raises(InvalidCredentials) as exc:
        service.login("alice@example.com", "Wr0ng!Pass")
    assert exc.value.extra["remainingAttempts"] == 4


def test_unknown_email_counts_and_looks_like_wrong_password(service, limiter):
    with pytest.raises(InvalidCredentials) as exc:
        service.login("ghost@example.com", PASSWORD)
    assert exc.value.message == "Invalid email or password"
    assert limiter.check("ghost@example.com").remaining_attempts == 4


def test_correct_password_resets_failures(service, limiter):
    _verified_user(service)
    for _ in range(3):
        with pytest.raises(InvalidCredentials):
            service.login("alice@example.com", "Wr0ng!Pass")

    service.login("alice@example.com", PASSWORD)
    assert limiter.check("alice@example.com").remaining_attempts == 5


def test_lockout_expires(service, clock):
    _verified_user(service)
    for _ in range(5):
        with pytest.raises(InvalidCredentials):
            service.login("alice@example.com", "Wr0ng!Pass")

    with pytest.raises(RateLimited):
        service.login("alice@example.com", PASSWORD)

    clock.advance(30 * 60 + 1)
    assert service.login("alice@example.com", PASSWORD).purpose == "login"


def test_bad_login_code_does_not_touch_limiter(service, limiter):
    _verified_user(service)
    issued = service.login("alice@example.com", PASSWORD)

    with pytest.raises(InvalidOrExpiredCode):
        service.verify_login("alice@example.com", _wrong(issued.code))
    assert limiter.check("alice@example.com").remaining_attempts == 5

    assert service.verify_login("alice@example.com", issued.code).token


def test_expired_login_code(service, clock):
    _verified_user(service)
    issued = service.login("alice@example.com", PASSWORD)
    clock.advance(16 * 60)

    with pytest.raises(InvalidOrExpiredCode):
        service.verify_login("alice@example.com", issued.code)


def test_signup_code_cannot_complete_login(service):
    issued = service.signup("Alice", "alice@example.com", PASSWORD)
    with pytest.raises(InvalidOrExpiredCode):
        service.verify_login("alice@example.com", issued.code)
    # and it is still good for its own purpose
    assert service.verify_signup("alice@example.com", issued.code).verified is True


def test_resend_replaces_code(service, mailer):
    first = service.signup("Alice", "alice@example.com", PASSWORD)
    second = service.resend_code("alice@example.com", "signup")

    assert "new verification code" in mailer.sent[-1]["html"]
    if first.code != second.code:
        with pytest.raises(InvalidOrExpiredCode):
            service.verify_signup("alice@example.com", first.code)
    assert service.verify_signup("alice@example.com", second.code).verified is True


def test_resend_defaults_to_signup(service):
    service.signup("Alice", "alice@example.com", PASSWORD)
    assert service.resend_code("alice@example.com").purpose == "signup"


def test_resend_errors(service):
    with pytest.raises(ValidationError):
        service.resend_code("")
    with pytest.raises(NotFound):
        service.resend_code("ghost@example.com")
    service.signup("Alice", "alice@example.com", PASSWORD)
    with pytest.raises(ValidationError):
        service.resend_code("alice@example.com", "reset")


def test_login_resend_needs_pending_password_step(service):
    service.signup("Alice", "alice@example.com", PASSWORD)

    # unverified accounts never get a login code
    with pytest.raises(NotVerified):
        service.resend_code("alice@example.com", "login")

    _verified_user(service, "bob@example.com")
    with pytest.raises(ValidationError):
        service.resend_code("bob@example.com", "login")


def test_login_resend_after_password_step(service, clock):
    _verified_user(service)
    first = service.login("alice@example.com", PASSWORD)
    clock.advance(16 * 60)

    # an expired login session can still be reissued
    second = service.resend_code("alice@example.com", "login")

    assert second.purpose == "login"
    if first.code != second.code:
        with pytest.raises(InvalidOrExpiredCode):
            service.verify_login("alice@example.com", first.code)
    assert service.verify_login("alice@example.com", second.code).token


def test_login_resend_respects_lockout(service):
    _verified_user(service)
    service.login("alice@example.com", PASSWORD)
    for _ in range(5):
        with pytest.raises(InvalidCredentials):
            service.login("alice@example.com", "Wr0ng!Pass")

    with pytest.raises(RateLimited):
        service.resend_code("alice@example.com", "login")


def test_verify_login_rejects_unverified_account(service, codes):
    service.signup("Alice", "alice@example.com", PASSWORD)
    code = codes.create_session("alice@example.com", "login")

    with pytest.raises(NotVerified):
        service.verify_login("alice@example.com", code)


def test_upgrade_plan(service, users, clock):
    _verified_user(service)
    user = users.get_user_by_email("alice@example.com")

    monthly = service.upgrade_plan(user, "individual", "monthly")
    assert monthly.plan == "individual"
    assert monthly.plan_expiry == clock.now + 30 * 86400

    yearly = service.upgrade_plan(user, "family", "yearly")
    assert yearly.plan == "family"
    assert yearly.plan_expiry == clock.now + 365 * 86400


def test_upgrade_rejects_free_and_unknown(service, users):
    _verified_user(service)
    user = users.get_user_by_email("alice@example.com")
    for plan in ("free", "gold", None):
        with pytest.raises(ValidationError):
            service.upgrade_plan(user, plan, "monthly")


def test_token_rejections(service, settings, clock):
    _verified_user(service)
    token = service.verify_login("alice@example.com", service.login("alice@example.com", PASSWORD).code).token

    with pytest.raises(InvalidToken):
        service.user_from_token(None)
    header, _, sig = token.split(".")
    forged = jwt.encode({"sub": "someone-else", "exp": clock.now + 60}, "x", algorithm="HS256").split(".")[1]
    with pytest.raises(InvalidToken):
        service.user_from_token(f"{header}.{forged}.{sig}")
    with pytest.raises(InvalidToken):
        service.user_from_token(jwt.encode({"sub": "x", "exp": clock.now + 60}, "other-secret", algorithm="HS256"))
    with pytest.raises(InvalidToken):
        service.user_from_token(jwt.encode({"sub": "nobody", "exp": clock.now + 60}, settings.jwt_secret, algorithm="HS256"))

    clock.advance(settings.jwt_ttl_seconds + 1)
    with pytest.raises(InvalidToken):
        service.user_from_token(token)


def test_wall_clock_expiry(settings, engine, mailer):
    """No injected clock: expiry and lockout follow time.time()."""
    svc = AuthService(
        settings,
        UserStore(engine, pbkdf2_iters=1000),
        VerificationStore(engine),
        LoginRateLimiter(),
        mailer,
    )
    with freeze_time("2025-03-01 09:00:00") as frozen:
        issued = svc.signup("Alice", "alice@example.com", PASSWORD)
        frozen.tick(timedelta(minutes=16))
        with pytest.raises(InvalidOrExpiredCode):
            svc.verify_signup("alice@example.com", issued.code)

        fresh = svc.resend_code("alice@example.com")
        svc.verify_signup("alice@example.com", fresh.code)

        for _ in range(5):
            with pytest.raises(InvalidCredentials):
                svc.login("alice@example.com", "Wr0ng!Pass")
        with pytest.raises(RateLimited):
            svc.login("alice@example.com", PASSWORD)

        frozen.tick(timedelta(minutes=31))
        login = svc.login("alice@example.com", PASSWORD)
        token = svc.verify_login("alice@example.com", login.code).token
        assert svc.user_from_token(token).email == "alice@example.com"
