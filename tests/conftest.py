import pytest
from fastapi.testclient import TestClient

from mediremind.auth_sessions import VerificationStore
from mediremind.db import get_engine
from mediremind.main import create_app
from mediremind.models import Base
from mediremind.rate_limit import LoginRateLimiter
from mediremind.service import AuthService
from mediremind.settings import Settings
from mediremind.user_store import UserStore

T0 = 1_700_000_000


class FakeClock:
    def __init__(self, now: float = T0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingMailer:
    def __init__(self, ok: bool = True):
        self.ok = ok
        self.sent: list[dict] = []

    def send(self, to, subject, html=None, text=None):
        self.sent.append({"to": to, "subject": subject, "html": html, "text": text})
        return (True, "recorded") if self.ok else (False, "boom")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    # cheap hashing keeps the suite fast
    return Settings(app_env="dev", database_url="sqlite://", pbkdf2_iters=1000, jwt_secret="test-secret", log_level="WARNING")


@pytest.fixture
def engine():
    eng = get_engine("sqlite://")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def users(engine, clock):
    return UserStore(engine, pbkdf2_iters=1000, clock=clock)


@pytest.fixture
def codes(engine, clock):
    return VerificationStore(engine, clock=clock)


@pytest.fixture
def limiter(clock):
    return LoginRateLimiter(clock=clock)


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def service(settings, users, codes, limiter, mailer, clock):
    return AuthService(settings, users, codes, limiter, mailer, clock=clock)


@pytest.fixture
def app(settings, engine, limiter, mailer, clock):
    return create_app(settings, engine=engine, limiter=limiter, mailer=mailer, clock=clock)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c
