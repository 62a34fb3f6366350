"""
Resilient access to the third-party transit APIs.
Every upstream call goes through fetch_with_retry, which applies a hard
timeout per attempt and retries connection-level failures with
exponential backoff. fetch_with_status_backoff additionally waits out
HTTP 502/503 on a fixed schedule; other error statuses are returned to
the caller.
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, Optional

import httpx

import config

logger = logging.getLogger(__name__)

RETRYABLE_EXCEPTIONS = (httpx.ConnectError, httpx.TimeoutException, asyncio.TimeoutError)


class UpstreamError(Exception):
    """Raised when an upstream API answers with an unusable response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(UpstreamError):
    """Raised when an upstream API answers HTTP 429."""

    def __init__(self, message: str = "Upstream rate limit (429)"):
        super().__init__(message, status_code=429)


class GraphQLError(UpstreamError):
    """Raised when a GraphQL response carries errors and no data."""
    pass


# Everything an upstream call can end with once retries are exhausted
UPSTREAM_FAILURES = (UpstreamError, httpx.HTTPError, asyncio.TimeoutError)


def default_headers() -> Dict[str, str]:
    return {"ET-Client-Name": config.CLIENT_NAME}


async def fetch_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    timeout: float = config.DEFAULT_TIMEOUT_S,
    retries: int = config.DEFAULT_RETRIES,
    backoff: float = config.INITIAL_BACKOFF_S,
    **kwargs: Any
) -> httpx.Response:
    """
    Send a request, retrying only connection refusals and timeouts.

    Args:
        client: Shared async HTTP client
        method: HTTP method
        url: Absolute URL
        timeout: Hard timeout in seconds for each attempt
        retries: Number of retries after the first attempt
        backoff: Initial backoff in seconds, doubled after every failed attempt

    Returns:
        The first response received, whatever its status code

    Raises:
        The last connection error once retries are exhausted
    """
    headers = {**default_headers(), **kwargs.pop("headers", {})}
    last_error: Optional[BaseException] = None

    for attempt in range(retries + 1):
        try:
            return await asyncio.wait_for(
                client.request(method, url, headers=headers, timeout=timeout, **kwargs),
                timeout=timeout,
            )
        except RETRYABLE_EXCEPTIONS as e:
            last_error = e
            if attempt >= retries:
                break
            delay = backoff * (2 ** attempt)
            logger.warning(
                f"{method} {url} failed ({type(e).__name__}), retry {attempt + 1}/{retries} in {delay:.1f}s"
            )
            await asyncio.sleep(delay)

    raise last_error


async def fetch_with_status_backoff(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    delays: Iterable[float] = config.STATUS_RETRY_DELAYS_S,
    **kwargs: Any
) -> httpx.Response:
    """
    Like fetch_with_retry, but also waits out HTTP 502/503 (cold-starting
    upstreams) on a fixed delay schedule. 429 is raised immediately.
    """
    delays = list(delays)
    for attempt in range(len(delays) + 1):
        response = await fetch_with_retry(client, method, url, **kwargs)
        if response.status_code == 429:
            raise RateLimitedError()
        if response.status_code in (502, 503) and attempt < len(delays):
            logger.warning(f"{url} answered {response.status_code}, waiting {delays[attempt]}s")
            await asyncio.sleep(delays[attempt])
            continue
        return response
    return response


async def post_graphql(
    client: httpx.AsyncClient,
    url: str,
    query: str,
    variables: Optional[Dict[str, Any]] = None,
    *,
    timeout: float = config.GRAPHQL_TIMEOUT_S,
    retries: int = config.DEFAULT_RETRIES,
    backoff: float = config.INITIAL_BACKOFF_S,
    status_delays: Iterable[float] = ()
) -> Dict[str, Any]:
    """
    POST a GraphQL query and return its ``data`` object.

    Partial errors next to data are logged and the data is returned;
    individual missing entries are the caller's to drop.
    ``status_delays`` waits out 502/503 as in fetch_with_status_backoff;
    by default a single attempt is made.
    """
    body: Dict[str, Any] = {"query": query}
    if variables:
        body["variables"] = variables

    response = await fetch_with_status_backoff(
        client, "POST", url, json=body, delays=status_delays,
        timeout=timeout, retries=retries, backoff=backoff,
    )
    if response.status_code >= 400:
        raise UpstreamError(f"GraphQL {response.status_code}", status_code=response.status_code)

    try:
        payload = response.json()
    except ValueError as e:
        raise UpstreamError(f"GraphQL returned invalid JSON: {e}") from e

    errors = payload.get("errors") if isinstance(payload, dict) else None
    data = payload.get("data") if isinstance(payload, dict) else None
    if errors:
        message = (errors[0] or {}).get("message", "GraphQL error") if isinstance(errors, list) else str(errors)
        if not data:
            raise GraphQLError(message)
        logger.debug(f"GraphQL partial errors: {message}")
    if not isinstance(data, dict):
        raise GraphQLError("GraphQL response without data")
    return data
