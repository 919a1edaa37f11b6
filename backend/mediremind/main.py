from __future__ import annotations

import logging
import time

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from .auth_sessions import VerificationStore
from .db import get_engine
from .deps import get_auth_service, get_current_user
from .errors import AuthError
from .mailer import Mailer
from .models import Base, User
from .rate_limit import LoginRateLimiter, RedisLoginRateLimiter
from .schemas import LoginIn, LoginOut, ProfileOut, ResendCodeIn, SignupIn, UpgradeIn, UserOut, VerifyCodeIn
from .service import AuthService
from .settings import Settings
from .user_store import UserStore

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def build_limiter(settings: Settings, clock=None):
    if settings.rate_limit_backend == "redis":
        return RedisLoginRateLimiter.from_url(
            settings.redis_url,
            max_fails=settings.login_max_fails,
            lock_seconds=settings.login_lock_seconds,
            clock=clock,
        )
    return LoginRateLimiter(max_fails=settings.login_max_fails, lock_seconds=settings.login_lock_seconds, clock=clock)


def create_app(settings: Settings | None = None, *, engine=None, limiter=None, mailer=None, clock=None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    engine = engine if engine is not None else get_engine(settings.database_url)
    limiter = limiter if limiter is not None else build_limiter(settings, clock=clock)
    users = UserStore(engine, pbkdf2_iters=settings.pbkdf2_iters, clock=clock)
    codes = VerificationStore(
        engine,
        ttl_seconds=settings.code_ttl_seconds,
        max_attempts=settings.code_max_attempts,
        clock=clock,
    )
    service = AuthService(settings, users, codes, limiter, mailer or Mailer(settings), clock=clock)

    app = FastAPI(title="MediRemind API")
    app.state.settings = settings
    app.state.engine = engine
    app.state.auth_service = service

    # CORS for dev
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    def _startup():
        # Postgres in docker-compose might not be ready when API boots.
        last_exc: Exception | None = None
        for _ in range(30):
            try:
                Base.metadata.create_all(bind=engine)
                logger.info("database ready env=%s rate_limit=%s", settings.app_env, settings.rate_limit_backend)
                return
            except Exception as exc:  # noqa: BLE001
                last_exc = exc
                logger.warning("database not ready yet: %r", exc)
                time.sleep(1.0)
        raise RuntimeError(f"DB init failed after retries: {last_exc}")

    @app.exception_handler(AuthError)
    async def _auth_error(request: Request, exc: AuthError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def _internal_error(request: Request, exc: Exception):
        logger.exception("unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "internal_error", "message": "Internal server error"},
        )

    def _with_debug(body: dict, code: str) -> dict:
        if settings.debug_codes:
            body["debug_code"] = code
        return body

    @app.get("/health")
    def health():
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            db_ok = True
        except Exception:  # noqa: BLE001
            db_ok = False
        body = {"ok": db_ok, "db": db_ok}
        if isinstance(limiter, RedisLoginRateLimiter):
            body["redis"] = limiter.ping()
        return body

    @app.get("/healthz")
    async def healthz():
        # super cheap liveness probe
        return {"ok": True}

    @app.post("/api/signup", status_code=201)
    def signup(body: SignupIn, svc: AuthService = Depends(get_auth_service)):
        issued = svc.signup(body.full_name, body.email, body.password)
        return _with_debug({"success": True, "message": f"Verification code sent to {issued.email}"}, issued.code)

    @app.post("/api/verify")
    def verify_signup(body: VerifyCodeIn, svc: AuthService = Depends(get_auth_service)):
        svc.verify_signup(body.email, body.code)
        return {"success": True, "message": "Account verified successfully!"}

    @app.post("/api/login")
    def login(body: LoginIn, svc: AuthService = Depends(get_auth_service)):
        """Password step. A correct password mails a second-factor code."""
        issued = svc.login(body.email, body.password)
        return _with_debug(
            {"success": True, "message": "Verification code sent to your email", "requiresVerification": True},
            issued.code,
        )

    @app.post("/api/login/verify", response_model=LoginOut)
    def verify_login(body: VerifyCodeIn, svc: AuthService = Depends(get_auth_service)):
        result = svc.verify_login(body.email, body.code)
        return LoginOut(token=result.token, user=UserOut.model_validate(result.user))

    @app.post("/api/resend-code")
    def resend_code(body: ResendCodeIn, svc: AuthService = Depends(get_auth_service)):
        issued = svc.resend_code(body.email, body.type)
        return _with_debug({"success": True, "message": "Verification code resent successfully"}, issued.code)

    @app.get("/api/me", response_model=ProfileOut)
    def me(u: User = Depends(get_current_user)):
        return ProfileOut.model_validate(u)

    @app.post("/api/user/upgrade")
    def upgrade(body: UpgradeIn, u: User = Depends(get_current_user), svc: AuthService = Depends(get_auth_service)):
        updated = svc.upgrade_plan(u, body.plan, body.billing_cycle)
        label = "Premium" if updated.plan == "individual" else "Family"
        return {
            "success": True,
            "message": f"Successfully upgraded to {label} plan!",
            "plan": updated.plan,
            "expiresAt": updated.plan_expiry,
        }

    return app


app = create_app()
