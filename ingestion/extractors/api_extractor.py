"""
API data source extractor.

Issues exactly one request per call and classifies failures into the
exception taxonomy so that the task scheduler can decide whether to retry:

- 401/403 -> AuthenticationError (permanent)
- 404 -> ResourceNotFoundError (permanent)
- 429 -> RateLimitError (retryable, honours Retry-After)
- 5xx, timeouts, transport errors -> NetworkError (retryable)
- undecodable JSON -> DataFormatError (permanent)
"""

import httpx
from typing import Any, Dict, Optional
from core.config import settings
from core.exceptions import (
    APIExtractionError,
    AuthenticationError,
    DataFormatError,
    NetworkError,
    RateLimitError,
    ResourceNotFoundError,
)
import logging

logger = logging.getLogger(__name__)

# Methods whose parameters travel in the query string; the rest send a JSON body.
QUERY_METHODS = ("GET",)


class APIExtractor:
    """
    Fetch a project's API response.

    Attributes:
        timeout: Request timeout in seconds (default: settings.FETCH_TIMEOUT)
        headers: Extra headers sent with every request
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        headers: Optional[Dict[str, str]] = None
    ):
        self.timeout = timeout or settings.FETCH_TIMEOUT
        self.headers = {"Accept": "application/json", **(headers or {})}

    def _raise_for_status(self, response: httpx.Response, url: str, method: str) -> None:
        context = {
            "status_code": response.status_code,
            "api_url": url,
            "method": method,
        }

        if response.status_code in (401, 403):
            raise AuthenticationError(f"Authentication failed for {url}", context=context)

        if response.status_code == 404:
            raise ResourceNotFoundError(f"Resource not found: {url}", context=context)

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(
                f"Rate limit exceeded for {url}",
                context=context,
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None
            )

        if response.status_code >= 500:
            context["response_body"] = response.text[:500]
            raise NetworkError(
                f"Server error {response.status_code} from {url}",
                context=context,
                max_retries=settings.MAX_RETRIES,
                retry_delay=settings.RETRY_DELAY
            )

        if response.status_code >= 400:
            context["response_body"] = response.text[:500]
            raise APIExtractionError(f"Request rejected with {response.status_code}", context=context)

    async def fetch(self, url: str, method: str = "GET", params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Request ``url`` and return the decoded JSON body.

        Args:
            url: Endpoint to call
            method: HTTP method; GET sends ``params`` as query string,
                every other method as JSON body
            params: Merged request parameters

        Returns:
            Decoded JSON payload (list, dict or scalar)
        """
        method = (method or "GET").upper()
        params = params or {}
        request_kwargs: Dict[str, Any] = {"headers": self.headers}
        if method in QUERY_METHODS:
            request_kwargs["params"] = params
        else:
            request_kwargs["json"] = params

        logger.info(f"Fetching {method} {url}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(method, url, **request_kwargs)

        except httpx.TimeoutException as e:
            raise NetworkError(
                f"Request timeout for {url}",
                context={"api_url": url, "method": method, "timeout": self.timeout},
                original_exception=e,
                max_retries=settings.MAX_RETRIES,
                retry_delay=settings.RETRY_DELAY
            )

        except httpx.TransportError as e:
            raise NetworkError(
                f"Network error for {url}",
                context={"api_url": url, "method": method},
                original_exception=e,
                max_retries=settings.MAX_RETRIES,
                retry_delay=settings.RETRY_DELAY
            )

        self._raise_for_status(response, url, method)

        try:
            return response.json()
        except ValueError as e:
            raise DataFormatError(
                "Failed to parse JSON response",
                context={
                    "api_url": url,
                    "method": method,
                    "response_body": response.text[:500]
                },
                original_exception=e
            )
