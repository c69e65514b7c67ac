import inspect
import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Literal, Optional, Union

import httpx

from utils.single_flight import SingleFlight

from .config import ClientConfig
from .errors import (
    AuthorizationError,
    CredentialError,
    NetworkError,
    error_from_response,
)

logger = logging.getLogger(__name__)

STATE_CHANGING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

ResponseType = Literal["json", "bytes", "text", "response"]
UnauthorizedListener = Callable[[AuthorizationError], Union[None, Awaitable[None]]]


def _mask(token: Optional[str]) -> str:
    if not token:
        return "<none>"
    return f"{token[:6]}..." if len(token) > 6 else "***"


def _domain_matches(domain: str, host: str) -> bool:
    # http.cookiejar stores dotless hosts as "<host>.local"
    domain = domain.lstrip(".")
    return host == domain or host.endswith(f".{domain}") or domain == f"{host}.local"


@dataclass(frozen=True)
class ApiRequest:
    """One outbound call. Retries are new values, never mutations of the original."""

    method: str
    path: str
    body: Any = None
    params: Optional[dict] = None
    headers: Optional[dict] = None
    response_type: ResponseType = "json"
    attempt: int = 1

    @property
    def is_state_changing(self) -> bool:
        return self.method in STATE_CHANGING_METHODS

    def for_retry(self) -> "ApiRequest":
        return replace(self, attempt=self.attempt + 1)


class CredentialedClient:
    """
    HTTP client for the portal API that manages the CSRF credential.

    State-changing calls carry the credential read from the cookie jar. A
    missing credential is acquired once for all concurrent callers, a request
    of any method rejected with a CSRF failure is retried exactly once with a
    refreshed credential, and any authorization failure is broadcast to the
    registered unauthorized listeners before being raised to the caller.
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            config (ClientConfig, optional): Client settings. Read from the environment if omitted.
            transport (httpx.AsyncBaseTransport, optional): Transport for the underlying httpx client.
            http_client (httpx.AsyncClient, optional): Pre-built httpx client; its cookie jar becomes the cookie store.
        """
        self.config = config or ClientConfig.from_env()
        self._http = http_client or httpx.AsyncClient(
            base_url=self.config.base_url,
            headers={"Content-Type": "application/json"},
            timeout=self.config.timeout,
            transport=transport,
        )
        self._acquire_flight: SingleFlight[Optional[str]] = SingleFlight("csrf-acquire")
        self._refresh_flight: SingleFlight[Optional[str]] = SingleFlight("csrf-refresh")
        self._unauthorized_listeners: list[UnauthorizedListener] = []

    async def __aenter__(self) -> "CredentialedClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    @property
    def cookies(self) -> httpx.Cookies:
        return self._http.cookies

    def add_unauthorized_listener(self, listener: UnauthorizedListener) -> None:
        self._unauthorized_listeners.append(listener)

    def remove_unauthorized_listener(self, listener: UnauthorizedListener) -> None:
        if listener in self._unauthorized_listeners:
            self._unauthorized_listeners.remove(listener)

    # Public verbs

    async def get(self, path: str, **opts) -> Any:
        return await self.request("GET", path, **opts)

    async def post(self, path: str, body: Any = None, **opts) -> Any:
        return await self.request("POST", path, json=body, **opts)

    async def put(self, path: str, body: Any = None, **opts) -> Any:
        return await self.request("PUT", path, json=body, **opts)

    async def patch(self, path: str, body: Any = None, **opts) -> Any:
        return await self.request("PATCH", path, json=body, **opts)

    async def delete(self, path: str, **opts) -> Any:
        return await self.request("DELETE", path, **opts)

    async def request(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
        response_type: ResponseType = "json",
    ) -> Any:
        """
        Send a request to the portal API.

        Args:
            method (str): HTTP method.
            path (str): Path relative to the configured base URL.
            json (Any, optional): JSON-serializable request body.
            params (dict, optional): Query string parameters.
            headers (dict, optional): Extra request headers.
            response_type (str): "json", "bytes" (file downloads), "text" or "response" for the raw httpx.Response.

        Returns:
            The decoded response body.

        Raises:
            NetworkError: No response was received.
            HttpError: The server answered with a non-2xx status after the retry policy ran.
        """
        api_request = ApiRequest(
            method=method.upper(),
            path=path,
            body=json,
            params=params,
            headers=dict(headers) if headers else None,
            response_type=response_type,
        )

        credential = await self._credential_for(api_request)
        try:
            return await self._dispatch(api_request, credential)
        except CredentialError as e:
            logger.warning(f"CSRF failure on {api_request.method} {api_request.path}: {e.detail}; refreshing credential")
            refreshed = await self.refresh_credential()
            if not refreshed:
                logger.error(f"Could not refresh credential, giving up on {api_request.method} {api_request.path}")
                raise
            return await self._dispatch(api_request.for_retry(), refreshed)

    # Credential handling

    def read_credential(self) -> Optional[str]:
        """
        Read the credential from the cookie jar.

        The cookie set for the API host wins, since that is the one httpx sends
        back. A cookie set for another host (the fallback origin may be
        ``127.0.0.1`` while the API is ``localhost``) is used only when the API
        host has none.
        """
        api_host = httpx.URL(self.config.base_url).host
        fallback = None
        for cookie in self._http.cookies.jar:
            if cookie.name != self.config.csrf_cookie_name or not cookie.value:
                continue
            if _domain_matches(cookie.domain, api_host):
                return cookie.value
            if fallback is None:
                fallback = cookie.value
        return fallback

    async def ensure_credential(self) -> Optional[str]:
        """
        Return the current credential, acquiring one if the cookie is absent.

        Concurrent callers share a single acquisition. Failure to acquire is
        logged and reported as None; the request then goes out without a
        credential and the server's rejection drives the normal error path.
        """
        credential = self.read_credential()
        if credential:
            return credential
        return await self._acquire_flight.run(self._acquire)

    async def refresh_credential(self) -> Optional[str]:
        """Ask the backend for a fresh credential even if a cookie is present."""
        return await self._refresh_flight.run(self._issue_credential)

    async def warm_credential(self) -> Optional[str]:
        """Best-effort refresh; never raises."""
        try:
            return await self.refresh_credential()
        except Exception as e:
            logger.warning(f"Credential warm-up failed: {e}")
            return None

    async def _acquire(self) -> Optional[str]:
        credential = self.read_credential()
        if credential:
            return credential
        try:
            return await self._issue_credential()
        except Exception as e:
            logger.warning(f"Could not acquire CSRF credential: {e}")
            return None

    async def _issue_credential(self) -> Optional[str]:
        body_token = None
        try:
            response = await self._http.get(self.config.credential_path)
            response.raise_for_status()
            body_token = self._token_from_body(response)
        except (httpx.HTTPError, ValueError) as e:
            logger.info(f"Primary credential endpoint failed ({e}), trying {self.config.credential_fallback_url}")
            try:
                await self._http.get(self.config.credential_fallback_url)
            except httpx.HTTPError as fallback_error:
                logger.warning(f"Fallback credential endpoint failed: {fallback_error}")

        credential = self.read_credential() or body_token
        if credential:
            logger.debug(f"Credential issued: {_mask(credential)}")
        else:
            logger.warning("Credential endpoints responded but no credential was issued")
        return credential

    @staticmethod
    def _token_from_body(response: httpx.Response) -> Optional[str]:
        if not response.content:
            return None
        try:
            data = response.json()
        except ValueError:
            return None
        if isinstance(data, dict):
            token = data.get("csrf_token")
            return token if isinstance(token, str) and token else None
        return None

    async def _credential_for(self, api_request: ApiRequest) -> Optional[str]:
        if not api_request.is_state_changing:
            return None
        return await self.ensure_credential()

    # Dispatch

    async def _dispatch(self, api_request: ApiRequest, credential: Optional[str]) -> Any:
        headers = dict(api_request.headers or {})
        if credential:
            headers[self.config.csrf_header_name] = credential

        logger.debug(
            f"{api_request.method} {api_request.path} (attempt {api_request.attempt}, "
            f"credential {_mask(credential)})"
        )

        try:
            response = await self._http.request(
                api_request.method,
                api_request.path,
                json=api_request.body,
                params=api_request.params,
                headers=headers,
            )
        except httpx.TransportError as e:
            logger.error(f"Transport failure for {api_request.method} {api_request.path}: {e!r}")
            raise NetworkError(f"Request to {api_request.path} failed: {e}", url=api_request.path) from e

        if response.is_success:
            return self._decode(response, api_request.response_type)

        payload = self._error_payload(response)
        error = error_from_response(response.status_code, payload)
        logger.info(f"{api_request.method} {api_request.path} -> {response.status_code} {type(error).__name__}: {error.detail}")

        if isinstance(error, AuthorizationError):
            await self._notify_unauthorized(error)
        raise error

    async def _notify_unauthorized(self, error: AuthorizationError) -> None:
        for listener in list(self._unauthorized_listeners):
            try:
                result = listener(error)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Unauthorized listener {listener!r} failed: {e}", exc_info=True)

    @staticmethod
    def _decode(response: httpx.Response, response_type: ResponseType) -> Any:
        if response_type == "response":
            return response
        if response_type == "bytes":
            return response.content
        if response_type == "text":
            return response.text
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    @staticmethod
    def _error_payload(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text
