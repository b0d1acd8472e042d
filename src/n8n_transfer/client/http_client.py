"""Resilient async HTTP client for the n8n REST API.

This module provides the client used to talk to both SOURCE and TARGET
instances. It adds:
- Sliding-window rate limiting
- Per-attempt timeout
- Retry with exponential backoff for transient failures
- API key masking in every log line
- Request statistics
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from tenacity import RetryCallState

from n8n_transfer.client.exceptions import (
    APIError,
    AuthenticationError,
    AuthorizationError,
    ClientError,
    ConfigurationError,
    ConflictError,
    NetworkError,
    NotFoundError,
    PayloadValidationError,
    RateLimitError,
    RequestTimeoutError,
    ServerError,
    TransferError,
    TransportFailureError,
)
from n8n_transfer.client.rate_limiter import SlidingWindowRateLimiter
from n8n_transfer.models import ConnectionResult
from n8n_transfer.utils.logging import (
    get_logger,
    log_api_request,
    mask_api_key,
    payload_preview,
    register_secret,
)
from n8n_transfer.utils.retry import build_retrying

logger = get_logger(__name__)

API_KEY_HEADER = "X-N8N-API-KEY"

_DNS_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo",
    "name resolution",
    "no address associated",
    "could not resolve",
)
_TLS_MARKERS = ("ssl", "certificate", "tls")


def classify_transport_error(exc: httpx.TransportError) -> TransferError:
    """Map an httpx transport failure onto the transfer error taxonomy.

    Args:
        exc: Exception raised by httpx

    Returns:
        NetworkError with an ECONN*/ETIMEDOUT/ENOTFOUND code for transient
        failures, TransportFailureError otherwise
    """
    message = str(exc) or type(exc).__name__
    lowered = message.lower()

    if isinstance(exc, httpx.TimeoutException):
        return RequestTimeoutError(f"Request timeout: {message}")
    if isinstance(exc, httpx.ConnectError):
        if any(marker in lowered for marker in _DNS_MARKERS):
            return NetworkError(f"Host not found: {message}", code="ENOTFOUND")
        if any(marker in lowered for marker in _TLS_MARKERS):
            return TransportFailureError(f"TLS error: {message}")
        return NetworkError(f"Connection refused: {message}", code="ECONNREFUSED")
    if isinstance(exc, (httpx.ReadError, httpx.WriteError, httpx.RemoteProtocolError)):
        return NetworkError(f"Connection reset: {message}", code="ECONNRESET")
    if isinstance(exc, httpx.CloseError):
        return NetworkError(f"Connection reset: {message}", code="ECONNRESET")
    return TransportFailureError(f"Transport error: {message}")


class ResilientHttpClient:
    """Async client for one n8n instance.

    Every call goes through ``_request_with_retry``: the rate limiter is
    consulted before each attempt, each attempt is bounded by ``timeout`` and
    transient failures are retried with a doubling backoff.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        max_retries: int = 3,
        timeout: float = 10.0,
        max_requests_per_second: int = 10,
        base_delay: float = 1.0,
        verify_ssl: bool = True,
        api_prefix: str = "/api/v1",
        label: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the client.

        Args:
            base_url: Instance URL (trailing slash is stripped)
            api_key: API key sent in the X-N8N-API-KEY header
            max_retries: Total number of attempts per request
            timeout: Per-attempt timeout in seconds
            max_requests_per_second: Sliding-window rate limit (0 disables it)
            base_delay: Backoff delay after the first failed attempt, in seconds
            verify_ssl: Whether to verify TLS certificates
            api_prefix: Path prefix of the public API
            label: Name used in log lines (e.g. SOURCE or TARGET)
            transport: Optional httpx transport (used by tests)
            sleep: Async sleep used for backoff and rate limiting

        Raises:
            ConfigurationError: If base_url or api_key is missing
        """
        if not base_url or not str(base_url).strip():
            raise ConfigurationError("base_url is required")
        if not api_key or not str(api_key).strip():
            raise ConfigurationError("api_key is required")

        self.base_url = str(base_url).strip().rstrip("/")
        self.api_key = api_key
        self.max_retries = max(1, int(max_retries))
        self.timeout = timeout
        self.base_delay = base_delay
        self.api_prefix = "/" + api_prefix.strip("/") if api_prefix.strip("/") else ""
        self.label = label or self.base_url
        self._sleep = sleep

        register_secret(api_key)

        self.rate_limiter = SlidingWindowRateLimiter(
            max_requests=max_requests_per_second, window=1.0, sleep=sleep
        )

        self.client = httpx.AsyncClient(
            base_url=f"{self.base_url}{self.api_prefix}",
            headers=self._build_headers(),
            timeout=httpx.Timeout(timeout),
            verify=verify_ssl,
            follow_redirects=True,
            transport=transport,
        )

        self.stats = self._empty_stats()

        logger.info(
            "client_initialized",
            instance=self.label,
            base_url=self.base_url,
            api_key=mask_api_key(api_key),
            max_retries=self.max_retries,
            rate_limit=max_requests_per_second,
        )

    @staticmethod
    def _empty_stats() -> dict[str, int]:
        return {
            "total_requests": 0,
            "successful_requests": 0,
            "failed_requests": 0,
            "retried_requests": 0,
            "rate_limited_requests": 0,
        }

    def _build_headers(self) -> dict[str, str]:
        """Build HTTP headers for requests.

        Returns:
            Dictionary of HTTP headers
        """
        return {
            API_KEY_HEADER: self.api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _handle_error_response(self, response: httpx.Response) -> None:
        """Raise the exception matching a non-2xx response.

        Args:
            response: HTTP response object

        Raises:
            AuthenticationError: For 401 responses
            AuthorizationError: For 403 responses
            NotFoundError: For 404 responses
            ConflictError: For 409 responses
            RateLimitError: For 429 responses
            ClientError: For other 4xx responses
            ServerError: For 5xx responses
            APIError: For anything else
        """
        status_code = response.status_code
        error_data = self._parse_body(response)

        if isinstance(error_data, dict):
            error_message = error_data.get("message", error_data.get("detail", "Unknown error"))
        elif isinstance(error_data, str):
            error_message = error_data
        else:
            error_message = response.reason_phrase or "Unknown error"

        if status_code == 401:
            raise AuthenticationError(
                message="Authentication failed", status_code=status_code, response=error_data
            )
        elif status_code == 403:
            raise AuthorizationError(
                message="Authorization failed", status_code=status_code, response=error_data
            )
        elif status_code == 404:
            raise NotFoundError(
                message="Resource not found", status_code=status_code, response=error_data
            )
        elif status_code == 409:
            raise ConflictError(
                message="Resource conflict", status_code=status_code, response=error_data
            )
        elif status_code == 429:
            retry_after = response.headers.get("Retry-After")
            try:
                retry_seconds = int(retry_after) if retry_after else None
            except ValueError:
                retry_seconds = None
            raise RateLimitError(
                message="Rate limit exceeded",
                status_code=status_code,
                response=error_data,
                retry_after=retry_seconds,
            )
        elif 400 <= status_code < 500:
            raise ClientError(
                message=f"Client error: {error_message}",
                status_code=status_code,
                response=error_data,
            )
        elif 500 <= status_code < 600:
            raise ServerError(
                message=f"Server error: {error_message}",
                status_code=status_code,
                response=error_data,
            )
        else:
            raise APIError(
                message=f"Unexpected response: {error_message}",
                status_code=status_code,
                response=error_data,
            )

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        """Decode a response body.

        Returns:
            None for an empty body, decoded JSON when possible, raw text otherwise
        """
        text = response.text
        if not text or not text.strip():
            return None
        try:
            return response.json()
        except ValueError:
            return text

    async def _attempt(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_data: Any = None,
    ) -> Any:
        """Send a single request attempt.

        The limiter is consulted first, then the request runs under
        ``asyncio.wait_for`` so an attempt yields either a response or a
        timeout, never both.
        """
        if await self.rate_limiter.acquire():
            self.stats["rate_limited_requests"] += 1

        self.stats["total_requests"] += 1
        start_time = time.monotonic()

        try:
            response = await asyncio.wait_for(
                self.client.request(method, path, params=params, json=json_data),
                timeout=self.timeout,
            )
        except TimeoutError as e:
            raise RequestTimeoutError(
                f"Request timeout after {self.timeout}s: {method} {path}"
            ) from e
        except httpx.TransportError as e:
            raise classify_transport_error(e) from e

        log_api_request(
            logger,
            method=method,
            url=f"{self.base_url}{self.api_prefix}{path}",
            status_code=response.status_code,
            duration_ms=(time.monotonic() - start_time) * 1000,
            instance=self.label,
        )

        if not response.is_success:
            self._handle_error_response(response)

        self.stats["successful_requests"] += 1
        return self._parse_body(response)

    async def _request_with_retry(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_data: Any = None,
    ) -> Any:
        """Send a request, retrying transient failures.

        Args:
            method: HTTP method
            path: Path relative to the API prefix
            params: Query parameters
            json_data: JSON request body

        Returns:
            Parsed response body

        Raises:
            TransferError: The last error once retries are exhausted, or the
                first non-retryable error
        """

        def before_sleep(retry_state: RetryCallState) -> None:
            self.stats["retried_requests"] += 1
            error = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "request_retry",
                instance=self.label,
                method=method,
                path=path,
                attempt=retry_state.attempt_number,
                max_attempts=self.max_retries,
                wait_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
                error=str(error),
                api_key=mask_api_key(self.api_key),
            )

        retrying = build_retrying(
            max_attempts=self.max_retries,
            base_delay=self.base_delay,
            before_sleep=before_sleep,
            sleep=self._sleep,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    return await self._attempt(method, path, params=params, json_data=json_data)
        except TransferError as e:
            self.stats["failed_requests"] += 1
            logger.error(
                "request_failed",
                instance=self.label,
                method=method,
                path=path,
                error=str(e),
                error_type=type(e).__name__,
                api_key=mask_api_key(self.api_key),
            )
            raise

    async def get_workflows(self) -> list[dict[str, Any]]:
        """Fetch every workflow, following cursor pagination.

        Returns:
            List of workflow payloads

        Raises:
            APIError: If a page is neither a list nor a paged object
        """
        workflows: list[dict[str, Any]] = []
        params: dict[str, Any] = {}
        seen_cursors: set[str] = set()

        while True:
            data = await self._request_with_retry("GET", "/workflows", params=params or None)

            if isinstance(data, dict):
                page = data.get("data") or []
                cursor = data.get("nextCursor")
            elif isinstance(data, list):
                page, cursor = data, None
            else:
                raise APIError("Unexpected workflow listing response")

            workflows.extend(item for item in page if isinstance(item, dict))

            if not cursor or cursor in seen_cursors:
                break
            seen_cursors.add(cursor)
            params = {"cursor": cursor}

        logger.info("workflows_fetched", instance=self.label, count=len(workflows))
        return workflows

    async def get_workflow(self, workflow_id: str) -> dict[str, Any]:
        """Fetch a single workflow.

        Args:
            workflow_id: Workflow identifier

        Returns:
            Workflow payload
        """
        return await self._request_with_retry("GET", f"/workflows/{workflow_id}")

    async def create_workflow(self, data: dict[str, Any]) -> dict[str, Any]:
        """Create a workflow.

        Args:
            data: Workflow payload (must contain a name and a nodes list)

        Returns:
            Created workflow payload, including its new id

        Raises:
            PayloadValidationError: If name or nodes is missing
        """
        if not isinstance(data, dict) or not data.get("name"):
            raise PayloadValidationError("Workflow payload must include a name")
        if not isinstance(data.get("nodes"), list):
            raise PayloadValidationError("Workflow payload must include a nodes list")

        logger.debug(
            "workflow_create_request",
            instance=self.label,
            name=data.get("name"),
            payload=payload_preview(data),
        )
        result = await self._request_with_retry("POST", "/workflows", json_data=data)
        logger.info(
            "workflow_created",
            instance=self.label,
            name=data.get("name"),
            id=result.get("id") if isinstance(result, dict) else None,
        )
        return result

    async def test_connection(self) -> ConnectionResult:
        """Probe the instance with a workflow listing.

        Returns:
            ConnectionResult with a suggestion when the check fails
        """
        try:
            await self._request_with_retry("GET", "/workflows", params={"limit": 1})
        except (AuthenticationError, AuthorizationError) as e:
            return ConnectionResult(
                success=False,
                error="Authentication failed",
                suggestion="Check that the API key is valid for this instance",
                original_error=str(e),
            )
        except NetworkError as e:
            suggestions = {
                "ECONNREFUSED": (
                    "Connection refused",
                    "Check the URL and that the n8n server is running",
                ),
                "ETIMEDOUT": (
                    "Connection timed out",
                    "Check network connectivity and firewall rules",
                ),
                "ENOTFOUND": ("Host not found", "Check the URL"),
                "ECONNRESET": ("Connection reset", "Check network connectivity"),
            }
            error, suggestion = suggestions.get(e.code, (str(e), None))
            return ConnectionResult(
                success=False, error=error, suggestion=suggestion, original_error=str(e)
            )
        except TransferError as e:
            return ConnectionResult(success=False, error=str(e), original_error=str(e))

        logger.info("connection_ok", instance=self.label, base_url=self.base_url)
        return ConnectionResult(success=True, message="Connection successful")

    def get_stats(self) -> dict[str, int]:
        """Get request statistics.

        Returns:
            Copy of the statistics counters
        """
        return self.stats.copy()

    def reset_stats(self) -> None:
        """Zero all statistics counters."""
        self.stats = self._empty_stats()

    async def close(self) -> None:
        """Close the HTTP client and release the connection pool."""
        await self.client.aclose()
        logger.debug("client_closed", instance=self.label)

    async def __aenter__(self) -> "ResilientHttpClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()
