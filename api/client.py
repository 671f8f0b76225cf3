"""
API Client Framework
--------------------
Issues one authenticated GET and classifies the outcome.

Tokens come from the CredentialProvider and are never logged. A rejected
token in refreshable mode triggers exactly one forced refresh and one
re-issue of the request; rate limiting is left to the caller's retry policy.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Union
import logging

import httpx

from api.credentials import CredentialMode, CredentialProvider
from core.errors import NetworkError


DEFAULT_API_VERSION = "2021-07-28"

Scalar = Union[str, int, float, bool]


class StatusCategory(str, Enum):
    """Classification of an HTTP response."""
    SUCCESS = "success"
    AUTH_FAILURE = "auth_failure"
    RATE_LIMITED = "rate_limited"
    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"

    @classmethod
    def from_status(cls, status_code: int) -> "StatusCategory":
        if 200 <= status_code < 300:
            return cls.SUCCESS
        if status_code in (401, 403):
            return cls.AUTH_FAILURE
        if status_code == 429:
            return cls.RATE_LIMITED
        if status_code >= 500:
            return cls.SERVER_ERROR
        return cls.CLIENT_ERROR


@dataclass(frozen=True)
class RequestDescriptor:
    """
    What to fetch.

    `list_key` names the field holding the item array in a paginated
    response; None means auto-detect. `page_size` enables page-number
    pagination when the endpoint issues no continuation token.
    """
    path: str
    params: Dict[str, Scalar] = field(default_factory=dict)
    list_key: Optional[str] = None
    name: str = ""
    page_size: Optional[int] = None
    method: str = "GET"


@dataclass
class RequestResult:
    """Normalized response from one call."""
    category: StatusCategory
    status_code: int
    body: Any = None
    response_time_ms: float = 0.0

    @property
    def success(self) -> bool:
        return self.category == StatusCategory.SUCCESS


class RequestExecutor:
    """
    Performs authenticated requests against the API base URL.

    Rules:
    - Authorization comes from the credential provider on every call
    - At most one forced refresh per request
    - Every call carries a bounded timeout
    """

    def __init__(
        self,
        base_url: str,
        credentials: CredentialProvider,
        http: Optional[httpx.AsyncClient] = None,
        api_version: str = DEFAULT_API_VERSION,
        timeout_seconds: float = 30.0,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.base_url = base_url
        self.credentials = credentials
        self.api_version = api_version
        self.timeout_seconds = timeout_seconds
        self._extra_headers = dict(headers or {})
        self._http = http
        self._logger = logging.getLogger("ghl_export.api.client")

    def _get_headers(self, authorization: str) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Version": self.api_version,
        }
        headers.update(self._extra_headers)
        headers["Authorization"] = authorization
        return headers

    def _url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

    async def execute(
        self,
        descriptor: RequestDescriptor,
        params: Optional[Dict[str, Scalar]] = None,
    ) -> RequestResult:
        """
        Issue the request once, plus one re-issue after a forced refresh.

        `params` replaces the descriptor's base parameters when given.
        Raises NetworkError on timeouts, connection failures and bodies
        that are not JSON.
        """
        query = dict(descriptor.params if params is None else params)

        token = await self.credentials.get_token()
        result = await self._send(descriptor, query, token)

        if (
            result.category == StatusCategory.AUTH_FAILURE
            and self.credentials.mode == CredentialMode.REFRESHABLE
        ):
            self._logger.warning(
                f"Token rejected on {descriptor.path} ({result.status_code}), forcing refresh"
            )
            token = await self.credentials.force_refresh(rejected_token=token)
            result = await self._send(descriptor, query, token)

        return result

    async def _send(
        self,
        descriptor: RequestDescriptor,
        query: Dict[str, Scalar],
        token: str,
    ) -> RequestResult:
        authorization = self.credentials.format_authorization(token)
        url = self._url(descriptor.path)
        start_time = datetime.now()

        self._logger.debug(f"{descriptor.method} {descriptor.path} {query}")

        try:
            if self._http is not None:
                response = await self._http.request(
                    descriptor.method,
                    url,
                    params=_encode_params(query),
                    headers=self._get_headers(authorization),
                    timeout=self.timeout_seconds,
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.request(
                        descriptor.method,
                        url,
                        params=_encode_params(query),
                        headers=self._get_headers(authorization),
                    )
        except httpx.TimeoutException as e:
            raise NetworkError(
                f"Request timed out after {self.timeout_seconds}s",
                resource=descriptor.name,
                path=descriptor.path,
            ) from e
        except httpx.TransportError as e:
            raise NetworkError(
                f"Network error: {e}",
                resource=descriptor.name,
                path=descriptor.path,
            ) from e

        response_time = (datetime.now() - start_time).total_seconds() * 1000
        category = StatusCategory.from_status(response.status_code)

        body = None
        if category == StatusCategory.SUCCESS and response.content:
            try:
                body = response.json()
            except ValueError as e:
                raise NetworkError(
                    "Malformed JSON body",
                    resource=descriptor.name,
                    path=descriptor.path,
                    status_code=response.status_code,
                ) from e
        elif category != StatusCategory.SUCCESS:
            body = _error_body(response)
            self._logger.debug(
                f"{descriptor.path} -> {response.status_code} ({category.value})"
            )

        return RequestResult(
            category=category,
            status_code=response.status_code,
            body=body,
            response_time_ms=response_time,
        )


def _encode_params(params: Dict[str, Scalar]) -> Dict[str, str]:
    encoded = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            encoded[key] = "true" if value else "false"
        else:
            encoded[key] = str(value)
    return encoded


def _error_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text or None
