from __future__ import annotations

from sqlalchemy import BigInteger, Boolean, Column, Integer, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()

PLANS = ("free", "individual", "family")
PURPOSES = ("signup", "login")


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class User(Base):
    __tablename__ = "users"

    id = Column(String(32), primary_key=True)
    email = Column(String(255), nullable=False, unique=True, index=True)  # normalized
    full_name = Column(String(255), nullable=False)
    password_hash = Column(String(255), nullable=False)

    verified = Column(Boolean, nullable=False, default=False)
    created_at = Column(BigInteger, nullable=False)  # unix seconds

    # subscription tier
    plan = Column(String(16), nullable=False, default="free")  # free|individual|family
    plan_expiry = Column(BigInteger, nullable=True)  # unix seconds


class VerificationSession(Base):
    __tablename__ = "verification_sessions"

    # one active session per normalized email
    email = Column(String(255), primary_key=True)
    code = Column(String(6), nullable=False)
    purpose = Column(String(16), nullable=False)  # signup|login
    expires_at = Column(BigInteger, nullable=False)  # unix seconds
    attempts = Column(Integer, nullable=False, default=0)
    created_at = Column(BigInteger, nullable=False)
