import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class Navigator(Protocol):
    """Where the application currently is, and how to send it elsewhere."""

    @property
    def current_path(self) -> str: ...

    def go(self, path: str) -> None: ...


class InMemoryNavigator:
    """Navigator that just records where the application was sent."""

    def __init__(self, start_path: str = "/"):
        self.history: list[str] = [start_path]

    @property
    def current_path(self) -> str:
        return self.history[-1]

    def go(self, path: str) -> None:
        logger.info(f"Navigating from {self.current_path} to {path}")
        self.history.append(path)


def redirect_to_login(navigator: Navigator, login_entry_point: str) -> bool:
    """
    Send the application to the login entry point unless it is already there.

    Returns:
        bool: True if a redirect happened.
    """
    if navigator.current_path == login_entry_point:
        logger.debug(f"Already at {login_entry_point}, not redirecting")
        return False
    navigator.go(login_entry_point)
    return True
