# API module - resilient client layer for the export API
# Credentials, one-shot requests, retry decisions and pagination

from .credentials import Credential, CredentialMode, CredentialProvider
from .client import RequestDescriptor, RequestExecutor, RequestResult, StatusCategory
from .retry import RetryDecision, RetryPolicy
from .paginator import AggregationResult, PageCursor, Paginator, extract_items

__all__ = [
    "Credential", "CredentialMode", "CredentialProvider",
    "RequestDescriptor", "RequestExecutor", "RequestResult", "StatusCategory",
    "RetryDecision", "RetryPolicy",
    "AggregationResult", "PageCursor", "Paginator", "extract_items",
]
