"""
Process-wide authentication state for the portal client.

``SessionStateHolder`` owns the single ``authenticated`` flag. It changes only
through the transition table below, driven by the start-up probe, by
``login``/``logout``, and by authorization failures the client reports on any
request. Everything else in the application reads ``state`` (a frozen
snapshot) or subscribes with ``add_listener``.

    unknown          --probe_succeeded-->  authenticated
    unknown          --probe_failed/skipped/unauthorized/logged_out-->  unauthenticated
    unknown          --login_succeeded-->  authenticated
    unauthenticated  --login_succeeded-->  authenticated
    authenticated    --logged_out/unauthorized-->  unauthenticated

Repeated logout/unauthorized events in ``unauthenticated`` are no-ops. Any
other event is ignored and logged.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from client.api_client import CredentialedClient
from client.errors import (
    AuthorizationError,
    BusinessFailure,
    ClientError,
    HttpError,
)

from .marker_storage import MARKER_KEY, MARKER_VALUE, InMemoryMarkerStorage, MarkerStorage
from .navigation import InMemoryNavigator, Navigator, redirect_to_login
from .schema import LoginCredentials, LoginResult, SessionEvent, SessionPhase, SessionSnapshot

logger = logging.getLogger(__name__)

GENERIC_LOGIN_ERROR = "Login failed. Please try again."
DEFAULT_BUSINESS_ERROR = "Invalid credentials"

SessionListener = Callable[[SessionSnapshot], None]

_U = SessionPhase.UNKNOWN
_A = SessionPhase.AUTHENTICATED
_N = SessionPhase.UNAUTHENTICATED

TRANSITIONS: dict[tuple[SessionPhase, SessionEvent], SessionPhase] = {
    (_U, SessionEvent.PROBE_SUCCEEDED): _A,
    (_U, SessionEvent.PROBE_FAILED): _N,
    (_U, SessionEvent.PROBE_SKIPPED): _N,
    (_U, SessionEvent.UNAUTHORIZED): _N,
    (_U, SessionEvent.LOGGED_OUT): _N,
    (_U, SessionEvent.LOGIN_SUCCEEDED): _A,
    (_N, SessionEvent.LOGIN_SUCCEEDED): _A,
    (_N, SessionEvent.PROBE_FAILED): _N,
    (_N, SessionEvent.UNAUTHORIZED): _N,
    (_N, SessionEvent.LOGGED_OUT): _N,
    (_A, SessionEvent.LOGGED_OUT): _N,
    (_A, SessionEvent.UNAUTHORIZED): _N,
}


class SessionStateHolder:
    """Authoritative logged-in/logged-out state, built on a ``CredentialedClient``."""

    def __init__(
        self,
        client: CredentialedClient,
        storage: Optional[MarkerStorage] = None,
        navigator: Optional[Navigator] = None,
    ):
        self._client = client
        self._config = client.config
        self._storage = storage if storage is not None else InMemoryMarkerStorage()
        self._navigator = navigator if navigator is not None else InMemoryNavigator()

        self._phase = SessionPhase.UNKNOWN
        self._bootstrapping = True
        self._bootstrap_task: Optional[asyncio.Task] = None
        self._background: set[asyncio.Task] = set()
        self._listeners: list[SessionListener] = []

        client.add_unauthorized_listener(self._on_unauthorized)

    # Read-only view

    @property
    def state(self) -> SessionSnapshot:
        return SessionSnapshot(phase=self._phase, bootstrapping=self._bootstrapping)

    @property
    def authenticated(self) -> bool:
        return self._phase is SessionPhase.AUTHENTICATED

    @property
    def bootstrapping(self) -> bool:
        return self._bootstrapping

    @property
    def navigator(self) -> Navigator:
        return self._navigator

    def add_listener(self, listener: SessionListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: SessionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # Commands

    async def bootstrap(self) -> SessionSnapshot:
        """
        Run the one-time start-up check, or join it if it is already running.

        With a stored marker the probe path is requested: success means the
        session is still alive, 401/403 clears the marker. Without a marker no
        probe is made and the credential is warmed in the background so the
        first login submission does not wait for it.
        """
        if self._bootstrap_task is None:
            self._bootstrap_task = asyncio.ensure_future(self._run_bootstrap())
        await asyncio.shield(self._bootstrap_task)
        return self.state

    async def login(self, username: str, password: str) -> LoginResult:
        """
        Submit credentials to the login endpoint.

        A 2xx response with ``success: false`` is a normal failed login, not an
        HTTP error: the server's message is returned and no retry or logout
        handling runs.
        """
        if self._bootstrap_task is not None and not self._bootstrap_task.done():
            await self.bootstrap()

        credentials = LoginCredentials(username=username, password=password)

        await self._client.warm_credential()

        try:
            data = await self._client.post(self._config.login_path, credentials.model_dump())
            self._raise_for_business_failure(data)
        except BusinessFailure as e:
            logger.info(f"Login rejected for '{username}': {e.message}")
            return LoginResult(success=False, error=e.message)
        except HttpError as e:
            logger.error(f"Login error: {e}")
            server_error = e.payload.get("error") if isinstance(e.payload, dict) else None
            return LoginResult(success=False, error=server_error or GENERIC_LOGIN_ERROR)
        except ClientError as e:
            logger.error(f"Login error: {e}")
            return LoginResult(success=False, error=GENERIC_LOGIN_ERROR)

        self._transition(SessionEvent.LOGIN_SUCCEEDED)
        try:
            await self._storage.put(MARKER_KEY, MARKER_VALUE)
        except Exception as e:
            logger.error(f"Could not store session marker: {e}", exc_info=True)

        # The backend rotates the credential on login
        await self._client.warm_credential()

        logger.info(f"User '{username}' logged in")
        return LoginResult(success=True)

    async def logout(self) -> None:
        """Best-effort server logout; always ends logged out and at the login entry point."""
        try:
            await self._client.post(self._config.logout_path)
        except ClientError as e:
            logger.error(f"Logout error: {e}")
        finally:
            self._transition(SessionEvent.LOGGED_OUT)
            await self._clear_marker()
            redirect_to_login(self._navigator, self._config.login_entry_point)

    async def aclose(self) -> None:
        """Wait for background work started by this holder."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # Internals

    async def _run_bootstrap(self) -> None:
        try:
            marker = await self._storage.get(MARKER_KEY)
            if str(marker).lower() != MARKER_VALUE:
                logger.info("No session marker found, skipping session probe")
                self._spawn(self._client.warm_credential())
                self._transition(SessionEvent.PROBE_SKIPPED)
                return

            await self._client.warm_credential()
            try:
                await self._client.get(self._config.probe_path)
            except HttpError as e:
                if e.status in (401, 403):
                    logger.info(f"Stored session is no longer valid ({e.status}), clearing marker")
                    await self._clear_marker()
                else:
                    logger.warning(f"Session probe failed: {e}")
                self._transition(SessionEvent.PROBE_FAILED)
            except ClientError as e:
                logger.warning(f"Session probe failed: {e}")
                self._transition(SessionEvent.PROBE_FAILED)
            else:
                self._transition(SessionEvent.PROBE_SUCCEEDED)
        except Exception as e:
            logger.error(f"Bootstrap failed: {e}", exc_info=True)
            self._transition(SessionEvent.PROBE_FAILED)
        finally:
            self._bootstrapping = False
            self._notify()

    async def _on_unauthorized(self, error: AuthorizationError) -> None:
        logger.warning(f"Authorization failure ({error.status}: {error.detail}), logging out locally")
        self._transition(SessionEvent.UNAUTHORIZED)
        await self._clear_marker()
        redirect_to_login(self._navigator, self._config.login_entry_point)

    async def _clear_marker(self) -> None:
        try:
            await self._storage.delete(MARKER_KEY)
        except Exception as e:
            logger.error(f"Could not clear session marker: {e}", exc_info=True)

    @staticmethod
    def _raise_for_business_failure(data: Any) -> None:
        if isinstance(data, dict) and data.get("success"):
            return
        message = data.get("error") if isinstance(data, dict) else None
        raise BusinessFailure(message or DEFAULT_BUSINESS_ERROR, payload=data)

    def _transition(self, event: SessionEvent) -> None:
        target = TRANSITIONS.get((self._phase, event))
        if target is None:
            logger.warning(f"Ignoring session event '{event.value}' in phase '{self._phase.value}'")
            return
        if target is not self._phase:
            logger.info(f"Session {self._phase.value} -> {target.value} ({event.value})")
            self._phase = target
            self._notify()

    def _notify(self) -> None:
        snapshot = self.state
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Session listener {listener!r} failed: {e}", exc_info=True)

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
