"""
Paginator
---------
Assembles a complete, ordered collection from a list endpoint.

Design:
- Each page goes through a bounded retry loop (RequestExecutor + RetryPolicy)
- Items are extracted with a fixed, ordered list of strategies
- A continuation token always wins; page-number paging is the fallback
- A page is merged only after its response succeeded in full

Extraction order when no explicit key is configured:
1. the body itself, if it is an array
2. the `items` field
3. the `data` field
4. the first other array-valued field, in response field order
5. otherwise an empty page
"""

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple
import asyncio
import logging

from api.client import RequestDescriptor, RequestExecutor, Scalar, StatusCategory
from api.retry import RetryPolicy


CONTINUATION_FIELD = "nextPageToken"
CONVENTIONAL_LIST_KEYS = ("items", "data")
DEFAULT_MAX_PAGES = 1000


class CursorKind(Enum):
    ABSENT = auto()     # First page
    TOKEN = auto()      # Server-issued continuation token
    PAGE = auto()       # Numeric page index


@dataclass(frozen=True)
class PageCursor:
    """Position of the next request."""
    kind: CursorKind = CursorKind.ABSENT
    token: Optional[str] = None
    page: Optional[int] = None

    @classmethod
    def first(cls) -> "PageCursor":
        return cls()

    @classmethod
    def from_token(cls, token: str) -> "PageCursor":
        return cls(kind=CursorKind.TOKEN, token=token)

    @classmethod
    def from_page(cls, page: int) -> "PageCursor":
        return cls(kind=CursorKind.PAGE, page=page)

    def params(self, page_size: Optional[int]) -> Dict[str, Scalar]:
        """Pagination parameters merged over the descriptor's base parameters."""
        params: Dict[str, Scalar] = {}
        if page_size:
            params["limit"] = page_size
        if self.kind == CursorKind.TOKEN:
            params[CONTINUATION_FIELD] = self.token
        elif self.kind == CursorKind.PAGE:
            params["page"] = self.page
        return params


@dataclass
class AggregationResult:
    """All items of a collection, in server order."""
    items: List[Any] = field(default_factory=list)
    complete: bool = True
    pages: int = 0

    @property
    def total(self) -> int:
        return len(self.items)


# =============================================================================
# Item extraction
# =============================================================================

Extractor = Callable[[Any], Optional[List[Any]]]


def _bare_array(body: Any) -> Optional[List[Any]]:
    return body if isinstance(body, list) else None


def _named_field(key: str) -> Extractor:
    def extract(body: Any) -> Optional[List[Any]]:
        if isinstance(body, dict) and isinstance(body.get(key), list):
            return body[key]
        return None
    extract.__name__ = f"field_{key}"
    return extract


def _any_array_field(body: Any) -> Optional[List[Any]]:
    if isinstance(body, dict):
        for value in body.values():
            if isinstance(value, list):
                return value
    return None


EXTRACTION_STRATEGIES: Tuple[Extractor, ...] = (
    _bare_array,
    *(_named_field(key) for key in CONVENTIONAL_LIST_KEYS),
    _any_array_field,
)


def extract_items(body: Any, list_key: Optional[str] = None) -> List[Any]:
    """
    Pull the item array out of a response body.

    With an explicit `list_key` only that field is consulted. Unknown
    shapes yield an empty list rather than an error.
    """
    if list_key is not None:
        return _named_field(list_key)(body) or []

    for strategy in EXTRACTION_STRATEGIES:
        items = strategy(body)
        if items is not None:
            return items
    return []


def continuation_token(body: Any) -> Optional[str]:
    """Continuation token at the top level or under `meta`, if any."""
    if not isinstance(body, dict):
        return None
    token = body.get(CONTINUATION_FIELD)
    if not token and isinstance(body.get("meta"), dict):
        token = body["meta"].get(CONTINUATION_FIELD)
    return str(token) if token else None


# =============================================================================
# Paginator
# =============================================================================

class Paginator:
    """
    Drives repeated requests until a collection is complete.

    Rate-limited pages are retried with backoff; every other failure
    surfaces as a typed ExportError.
    """

    def __init__(
        self,
        executor: RequestExecutor,
        retry_policy: Optional[RetryPolicy] = None,
        max_pages: int = DEFAULT_MAX_PAGES,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.executor = executor
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_pages = max_pages
        self._sleep = sleep
        self._logger = logging.getLogger("ghl_export.api.paginator")

    async def fetch_page(
        self,
        descriptor: RequestDescriptor,
        params: Optional[Dict[str, Scalar]] = None,
    ) -> Any:
        """
        Fetch one response body, retrying while rate limited.

        Terminal states: success, RateLimitExceeded, AuthError, HttpError.
        NetworkError from the executor propagates unchanged.
        """
        attempt = 0
        while True:
            result = await self.executor.execute(descriptor, params)
            if result.category == StatusCategory.SUCCESS:
                return result.body

            decision = self.retry_policy.decide(result.category, attempt)
            if not decision.should_retry:
                raise self.retry_policy.terminal_error(result, descriptor, attempts=attempt + 1)

            self._logger.warning(
                f"Rate limited on {descriptor.path}, retry {attempt + 1}/"
                f"{self.retry_policy.max_attempts} in {decision.delay:.1f}s"
            )
            await self._sleep(decision.delay)
            attempt += 1

    async def fetch_one(self, descriptor: RequestDescriptor) -> Any:
        """Fetch a non-paginated resource and return its JSON body untouched."""
        return await self.fetch_page(descriptor, dict(descriptor.params))

    async def iter_pages(self, descriptor: RequestDescriptor) -> AsyncIterator[List[Any]]:
        """
        Yield item arrays page by page.

        Each call starts again from the first page. The generator returns
        early (with a warning) on a repeated token or the page limit; use
        fetch_all to learn whether the collection was complete.
        """
        async for items, _ in self._walk(descriptor):
            yield items

    async def iter_items(self, descriptor: RequestDescriptor) -> AsyncIterator[Any]:
        """Lazily yield items in server order."""
        async for items in self.iter_pages(descriptor):
            for item in items:
                yield item

    async def fetch_all(self, descriptor: RequestDescriptor) -> AggregationResult:
        """Fetch every page and return the materialized collection."""
        result = AggregationResult()
        async for items, complete in self._walk(descriptor):
            result.items.extend(items)
            result.pages += 1
            result.complete = complete

        self._logger.info(
            f"{descriptor.name or descriptor.path}: {result.total} items in {result.pages} page(s)",
            extra={"resource": descriptor.name, "path": descriptor.path,
                   "items": result.total, "pages": result.pages},
        )
        return result

    async def _walk(self, descriptor: RequestDescriptor):
        # yields (items, complete_so_far)
        cursor = PageCursor.first()
        seen_tokens = set()
        pages = 0

        while True:
            params = dict(descriptor.params)
            params.update(cursor.params(descriptor.page_size))

            body = await self.fetch_page(descriptor, params)
            items = extract_items(body, descriptor.list_key)
            pages += 1

            next_cursor = self._advance(cursor, body, items, descriptor.page_size)
            complete = True

            if next_cursor is not None and next_cursor.kind == CursorKind.TOKEN:
                if next_cursor.token in seen_tokens:
                    self._logger.warning(
                        f"{descriptor.path}: continuation token repeated, stopping"
                    )
                    next_cursor, complete = None, False
                else:
                    seen_tokens.add(next_cursor.token)

            if next_cursor is not None and pages >= self.max_pages:
                self._logger.warning(
                    f"{descriptor.path}: stopped after {pages} pages (max_pages)"
                )
                next_cursor, complete = None, False

            yield items, complete

            if next_cursor is None:
                return
            cursor = next_cursor

    def _advance(
        self,
        cursor: PageCursor,
        body: Any,
        items: List[Any],
        page_size: Optional[int],
    ) -> Optional[PageCursor]:
        token = continuation_token(body)
        if token:
            return PageCursor.from_token(token)

        if not page_size or len(items) < page_size:
            return None

        current = cursor.page if cursor.kind == CursorKind.PAGE else 1
        return PageCursor.from_page(current + 1)
