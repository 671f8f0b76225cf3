"""
Credential Provider
-------------------
Owns the access token for the export run.

Two modes:
- static: a fixed token that never expires
- refreshable: an OAuth refresh token exchanged for short-lived access tokens

Refreshes are single-flight: concurrent callers waiting on an expired
token share one token request and observe the same result.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional
import asyncio
import logging
import time

import httpx

from core.errors import AuthError, NetworkError


DEFAULT_SAFETY_BUFFER_SECONDS = 60.0
DEFAULT_MIN_TTL_SECONDS = 300.0


class CredentialMode(str, Enum):
    STATIC = "static"
    REFRESHABLE = "refreshable"


@dataclass
class Credential:
    """
    Token state for one process run.

    Mutated in place on refresh; `expires_at` is None in static mode.
    """
    mode: CredentialMode
    token: Optional[str] = None
    expires_at: Optional[float] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    refresh_token: Optional[str] = None

    def __repr__(self) -> str:
        # never print secrets
        return f"Credential(mode={self.mode.value}, expires_at={self.expires_at})"

    @classmethod
    def static(cls, token: str) -> "Credential":
        return cls(mode=CredentialMode.STATIC, token=token)

    @classmethod
    def refreshable(
        cls, client_id: str, client_secret: str, refresh_token: str
    ) -> "Credential":
        return cls(
            mode=CredentialMode.REFRESHABLE,
            client_id=client_id,
            client_secret=client_secret,
            refresh_token=refresh_token,
        )

    def is_valid(self, now: float) -> bool:
        if self.mode == CredentialMode.STATIC:
            return self.token is not None
        return self.token is not None and self.expires_at is not None and now < self.expires_at


class CredentialProvider:
    """
    Supplies a currently valid token on demand.

    The provider is constructed once per run and shares the token state
    with every request issued through it.
    """

    def __init__(
        self,
        credential: Credential,
        token_url: str,
        http: Optional[httpx.AsyncClient] = None,
        auth_scheme: str = "Bearer",
        token_request_format: str = "form",
        safety_buffer: float = DEFAULT_SAFETY_BUFFER_SECONDS,
        min_ttl: float = DEFAULT_MIN_TTL_SECONDS,
        timeout: float = 30.0,
        clock: Callable[[], float] = time.time,
    ):
        if token_request_format not in ("form", "json"):
            raise ValueError(f"Unknown token request format: {token_request_format}")

        self.credential = credential
        self.token_url = token_url
        self.auth_scheme = auth_scheme
        self.token_request_format = token_request_format
        self.safety_buffer = safety_buffer
        self.min_ttl = min_ttl
        self._http = http
        self._timeout = timeout
        self._clock = clock
        self._inflight: Optional["asyncio.Task[str]"] = None
        self._refresh_count = 0
        self._logger = logging.getLogger("ghl_export.api.credentials")

    @property
    def mode(self) -> CredentialMode:
        return self.credential.mode

    @property
    def refresh_count(self) -> int:
        """Number of token requests sent to the issuing endpoint."""
        return self._refresh_count

    async def get_token(self) -> str:
        """Return a valid token, refreshing at most once per expiry."""
        if self.credential.mode == CredentialMode.STATIC:
            return self.credential.token

        if self.credential.is_valid(self._clock()):
            return self.credential.token

        return await self._join_refresh()

    async def force_refresh(self, rejected_token: Optional[str] = None) -> str:
        """
        Invalidate the cached token and fetch a new one.

        If `rejected_token` has already been replaced by a concurrent
        refresh, the replacement is returned without another round-trip.
        """
        if self.credential.mode == CredentialMode.STATIC:
            raise AuthError("Static access token was rejected and cannot be refreshed")

        if self._inflight is None:
            current = self.credential.token
            if rejected_token is not None and current is not None and current != rejected_token:
                if self.credential.is_valid(self._clock()):
                    return current
            self.credential.token = None
            self.credential.expires_at = None

        return await self._join_refresh()

    def format_authorization(self, token: str) -> str:
        """Authorization header value for `token` under the configured scheme."""
        if self.auth_scheme:
            return f"{self.auth_scheme} {token}"
        return token

    async def authorization_header(self) -> str:
        return self.format_authorization(await self.get_token())

    async def _join_refresh(self) -> str:
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._run_refresh())
        # shield so one cancelled waiter does not cancel the shared refresh
        return await asyncio.shield(self._inflight)

    async def _run_refresh(self) -> str:
        try:
            return await self.refresh()
        finally:
            self._inflight = None

    async def refresh(self) -> str:
        """
        Exchange the refresh token for a new access token.

        Raises AuthError when the endpoint refuses or returns no token, and
        NetworkError when it cannot be reached.
        """
        cred = self.credential
        if cred.mode != CredentialMode.REFRESHABLE:
            raise AuthError("Only refreshable credentials can be refreshed")

        payload = {
            "grant_type": "refresh_token",
            "client_id": cred.client_id,
            "client_secret": cred.client_secret,
            "refresh_token": cred.refresh_token,
        }

        self._refresh_count += 1
        self._logger.info("Refreshing OAuth token")

        try:
            response = await self._post(payload)
        except httpx.TransportError as e:
            raise NetworkError(f"Token request failed: {e}", path=self.token_url) from e
        except httpx.HTTPError as e:
            raise AuthError(f"Token request failed: {e}", path=self.token_url) from e

        if not response.is_success:
            self._logger.error(f"OAuth refresh failed: {response.status_code}")
            raise AuthError(
                "OAuth refresh failed",
                path=self.token_url,
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise AuthError("Token response is not JSON", path=self.token_url) from e

        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            raise AuthError("No access_token in OAuth response", path=self.token_url)

        ttl = self._parse_ttl(data.get("expires_in"))
        validity = ttl - self.safety_buffer
        if validity <= 0:
            # lifetime shorter than the buffer; use half of it
            validity = ttl / 2
            self._logger.warning(
                f"expires_in {ttl:.0f}s is within the {self.safety_buffer:.0f}s safety buffer, "
                f"caching token for {validity:.0f}s"
            )
        cred.token = token
        cred.expires_at = self._clock() + validity
        if data.get("refresh_token"):
            cred.refresh_token = data["refresh_token"]

        self._logger.info(f"OAuth token refreshed, valid for {validity:.0f}s")
        return token

    def _parse_ttl(self, value: Any) -> float:
        try:
            ttl = float(value or 0)
        except (TypeError, ValueError):
            ttl = 0.0
        if ttl <= 0:
            self._logger.warning(f"No usable expires_in, assuming {self.min_ttl:.0f}s")
            return self.min_ttl
        return ttl

    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        if self.token_request_format == "json":
            kwargs: Dict[str, Any] = {"json": payload}
        else:
            kwargs = {
                "data": payload,
                "headers": {"Content-Type": "application/x-www-form-urlencoded"},
            }

        if self._http is not None:
            return await self._http.post(self.token_url, timeout=self._timeout, **kwargs)

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.post(self.token_url, **kwargs)
