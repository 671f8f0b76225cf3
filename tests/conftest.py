"""
Exporter Test Configuration
---------------------------
Shared fixtures: a controllable clock, a recording sleep and a scripted
HTTP transport standing in for the API and the token endpoint.
"""

import logging
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import httpx
import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from api.client import RequestExecutor
from api.credentials import Credential, CredentialProvider
from api.paginator import Paginator
from api.retry import RetryPolicy


BASE_URL = "https://api.test"
TOKEN_URL = "https://auth.test/oauth/token"


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


Reply = Union[httpx.Response, Callable[[httpx.Request], httpx.Response]]


class ScriptedAPI:
    """
    Scripted transport.

    Replies are queued per path and consumed in order; the last reply for
    a path repeats once the queue is drained. Token endpoint replies are
    queued separately.
    """

    def __init__(self):
        self.routes: Dict[str, List[Reply]] = {}
        self.token_replies: List[Reply] = []
        self.requests: List[httpx.Request] = []
        self.token_requests: List[httpx.Request] = []

    def add(self, path: str, *replies: Reply) -> "ScriptedAPI":
        self.routes.setdefault(path, []).extend(replies)
        return self

    def add_token(self, *replies: Reply) -> "ScriptedAPI":
        self.token_replies.extend(replies)
        return self

    def calls(self, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def _next(self, queue: List[Reply], request: httpx.Request) -> httpx.Response:
        if not queue:
            return httpx.Response(404, json={"message": "no scripted reply"})
        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(reply):
            return reply(request)
        return reply

    def handler(self, request: httpx.Request) -> httpx.Response:
        if str(request.url) == TOKEN_URL:
            self.token_requests.append(request)
            return self._next(self.token_replies, request)
        self.requests.append(request)
        return self._next(self.routes.get(request.url.path, []), request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


def token_reply(token: str = "fresh-token", expires_in: Optional[int] = 3600) -> httpx.Response:
    body: Dict[str, Any] = {"access_token": token}
    if expires_in is not None:
        body["expires_in"] = expires_in
    return httpx.Response(200, json=body)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeps() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def api() -> ScriptedAPI:
    return ScriptedAPI()


@pytest.fixture
def refreshable_credential() -> Credential:
    return Credential.refreshable("client-id", "client-secret", "refresh-1")


@pytest.fixture
def make_paginator(api, clock, sleeps):
    """Build the full client stack over the scripted transport."""

    def _make(
        credential: Optional[Credential] = None,
        max_attempts: int = 5,
        backoff_base: float = 1.0,
        backoff_cap: float = 30.0,
        max_pages: int = 1000,
    ) -> Paginator:
        http = api.client()
        provider = CredentialProvider(
            credential or Credential.static("static-token"),
            token_url=TOKEN_URL,
            http=http,
            clock=clock,
        )
        executor = RequestExecutor(BASE_URL, provider, http=http)
        policy = RetryPolicy(
            max_attempts=max_attempts,
            backoff_base=backoff_base,
            backoff_cap=backoff_cap,
        )
        return Paginator(executor, policy, max_pages=max_pages, sleep=sleeps)

    return _make


@pytest.fixture(autouse=True)
def reset_export_logging():
    """Undo configure_logging() so caplog keeps seeing exporter records."""
    yield
    import infra.logging as export_logging

    logger = logging.getLogger(export_logging.ROOT_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
    export_logging._logging_initialized = False
