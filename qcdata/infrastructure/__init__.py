"""Infrastructure layer exports."""

from .http import Fetch, FetchResponse, HttpxFetcher, HttpxResponse

__all__ = [
    "Fetch",
    "FetchResponse",
    "HttpxFetcher",
    "HttpxResponse",
]
