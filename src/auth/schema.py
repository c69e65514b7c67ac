from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class SessionPhase(str, Enum):
    UNKNOWN = "unknown"
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"


class SessionEvent(str, Enum):
    PROBE_SUCCEEDED = "probe_succeeded"
    PROBE_FAILED = "probe_failed"
    PROBE_SKIPPED = "probe_skipped"
    LOGIN_SUCCEEDED = "login_succeeded"
    LOGGED_OUT = "logged_out"
    UNAUTHORIZED = "unauthorized"


class SessionSnapshot(BaseModel):
    """Read-only view of the session state handed to observers."""

    model_config = ConfigDict(frozen=True)

    phase: SessionPhase
    bootstrapping: bool

    @property
    def authenticated(self) -> bool:
        return self.phase is SessionPhase.AUTHENTICATED


class LoginCredentials(BaseModel):
    username: str
    password: str


class LoginResult(BaseModel):
    success: bool
    error: Optional[str] = None
