from datetime import datetime

from pydantic import BaseModel


class UserOut(BaseModel):
    id: str
    email: str
    is_active: bool
    email_verified: bool
    last_sign_in_at: datetime | None = None

    model_config = {"from_attributes": True}


# ── Magic link ───────────────────────────────────────────────

class MagicLinkRequest(BaseModel):
    # Plain str: malformed addresses are rejected by the session gate
    email: str


class MagicLinkResponse(BaseModel):
    message: str
    dev_link: str | None = None  # only in dev (no SMTP)


class MagicLinkVerify(BaseModel):
    token: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    user: UserOut


# ── Token refresh ────────────────────────────────────────────

class RefreshRequest(BaseModel):
    refresh_token: str
