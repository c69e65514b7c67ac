from .session_state import SessionStateHolder, TRANSITIONS
from .schema import LoginCredentials, LoginResult, SessionEvent, SessionPhase, SessionSnapshot
from .marker_storage import (
    DiskMarkerStorage,
    InMemoryMarkerStorage,
    MarkerStorage,
    RedisMarkerStorage,
    create_marker_storage,
)
from .navigation import InMemoryNavigator, Navigator, redirect_to_login

__all__ = [
    "SessionStateHolder",
    "TRANSITIONS",
    "LoginCredentials",
    "LoginResult",
    "SessionEvent",
    "SessionPhase",
    "SessionSnapshot",
    "DiskMarkerStorage",
    "InMemoryMarkerStorage",
    "MarkerStorage",
    "RedisMarkerStorage",
    "create_marker_storage",
    "InMemoryNavigator",
    "Navigator",
    "redirect_to_login",
]
