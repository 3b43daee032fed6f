"""
API request and response models for AdvisorGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two -- the
orchestrator never sees an unvalidated body.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import Credentials

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    email may carry the operator form "target@x.com(operator@y.com)"; the
    route splits it before authentication. Password length is capped below
    bcrypt's 72-byte truncation point.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=640)
    password: Optional[str] = Field(default=None, max_length=64)
    pin: Optional[str] = Field(default=None, max_length=12, pattern=r"^\d+$")
    two_fa_token: Optional[str] = Field(default=None, max_length=10)

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return value.lower()

    def to_credentials(self, email: Optional[str] = None) -> Credentials:
        return Credentials(
            email=email or self.email,
            password=self.password or None,
            pin=self.pin or None,
            two_fa_token=self.two_fa_token or None,
        )


class ReauthRequest(BaseModel):
    """Request body for POST /api/v1/auth/reauth -- PIN or password."""

    model_config = ConfigDict(str_strip_whitespace=True)

    password: Optional[str] = Field(default=None, max_length=64)
    pin: Optional[str] = Field(default=None, max_length=12, pattern=r"^\d+$")


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class LoginResponse(BaseModel):
    access_token: str
    token_type: str
    expires_at: str
    email: str
    display_name: str
    office: str


class SessionUserResponse(BaseModel):
    user_id: int
    email: str
    display_name: str
    office: str
    two_fa_enabled: bool
    last_login: Optional[str] = None


class ReauthResponse(BaseModel):
    confirmed: bool


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str] = {}


class ErrorDetail(BaseModel):
    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    error: ErrorDetail
