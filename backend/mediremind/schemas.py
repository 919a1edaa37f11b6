from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class _In(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SignupIn(_In):
    full_name: str | None = Field(default=None, alias="fullName")
    email: str | None = None
    password: str | None = None


class LoginIn(_In):
    email: str | None = None
    password: str | None = None


class VerifyCodeIn(_In):
    email: str | None = None
    code: str | None = None


class ResendCodeIn(_In):
    email: str | None = None
    type: str | None = None  # signup|login


class UpgradeIn(_In):
    plan: str | None = None  # individual|family
    billing_cycle: str | None = Field(default=None, alias="billingCycle")  # monthly|yearly


class UserOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: str
    full_name: str = Field(serialization_alias="fullName")
    email: str


class ProfileOut(UserOut):
    verified: bool
    plan: str
    plan_expiry: int | None = Field(default=None, serialization_alias="planExpiry")
    created_at: int = Field(serialization_alias="createdAt")


class LoginOut(BaseModel):
    success: bool = True
    token: str
    user: UserOut
