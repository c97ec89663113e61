"""Plugin API client -- generation and fix requests to the remote code service.

Both endpoints take a JSON body, a bearer token, and answer with
``{"status": "success", "data": {<path>: <content>, ...}}`` or
``{"status": "error", "message": "..."}``.  Anything else is an
``UpstreamError``.
"""

import asyncio
import json as _json
import logging
from typing import Any

import httpx

from app.config import settings
from app.errors import UpstreamError, UpstreamTimeout
from buildkit.contracts import DiagnosticPayload, FileSet, validate_fileset
from buildkit.errors import SandboxViolation

logger = logging.getLogger(__name__)

CREATE_PATH = "/api/create"
FIX_PATH = "/api/fix"

# ── Shared HTTP client (connection pooling) ─────────────────────────────────

_client: httpx.AsyncClient | None = None


def _get_client() -> httpx.AsyncClient:
    """Return (or create) the shared httpx client for plugin API calls."""
    global _client
    if _client is None:
        _client = httpx.AsyncClient(
            timeout=httpx.Timeout(
                settings.UPSTREAM_TIMEOUT_SECONDS,
                connect=settings.UPSTREAM_CONNECT_TIMEOUT_SECONDS,
            ),
        )
    return _client


async def close_client() -> None:
    """Close the shared plugin API client.  Called during app shutdown."""
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None

# ---------------------------------------------------------------------------
# Retry configuration
# ---------------------------------------------------------------------------

RETRY_BACKOFF_BASE = 2.0  # seconds -- exponential: 2, 4, 8, ...
_RETRYABLE_STATUS_CODES = frozenset({429, 502, 503})
# Read/write timeouts are not retried: the service may still be working.
_RETRYABLE_TRANSPORT_ERRORS = (
    httpx.ConnectError,
    httpx.ConnectTimeout,
    httpx.ReadError,
    httpx.RemoteProtocolError,
)


def _compute_wait(exc: httpx.HTTPStatusError | None, attempt: int, backoff_base: float) -> float:
    """Return seconds to wait before retrying.

    Prefers the ``retry-after`` header for 429s. Falls back to exponential
    backoff capped at 60 seconds.
    """
    if exc is not None and exc.response is not None:
        retry_after = exc.response.headers.get("retry-after")
        if retry_after:
            try:
                return min(float(retry_after), 60.0)
            except (ValueError, TypeError):
                pass
    return min(backoff_base ** (attempt + 1), 60.0)


async def _retry_on_transient(
    coro_factory,
    *,
    max_retries: int | None = None,
    backoff_base: float = RETRY_BACKOFF_BASE,
):
    """Retry a coroutine factory on connection errors and 429/502/503.

    ``coro_factory`` is a zero-arg callable that returns a new awaitable each
    time (so we can retry fresh).
    """
    if max_retries is None:
        max_retries = settings.UPSTREAM_MAX_RETRIES
    for attempt in range(max_retries + 1):
        try:
            return await coro_factory()
        except _RETRYABLE_TRANSPORT_ERRORS as exc:
            if attempt >= max_retries:
                raise
            wait = _compute_wait(None, attempt, backoff_base)
            logger.warning(
                "Plugin API request %s (attempt %d/%d), retrying in %.1fs",
                type(exc).__name__, attempt + 1, max_retries + 1, wait,
            )
            await asyncio.sleep(wait)
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code not in _RETRYABLE_STATUS_CODES or attempt >= max_retries:
                raise
            wait = _compute_wait(exc, attempt, backoff_base)
            logger.warning(
                "Plugin API request %d (attempt %d/%d), retrying in %.1fs",
                exc.response.status_code, attempt + 1, max_retries + 1, wait,
            )
            await asyncio.sleep(wait)
    raise AssertionError("unreachable")  # pragma: no cover

# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------


def _headers(token: str) -> dict:
    return {
        "Authorization": f"Bearer {token}",
        "Content-Type": "application/json",
    }


def _url(host: str, path: str) -> str:
    return host.rstrip("/") + path


async def _post_json(host: str, path: str, token: str, body: dict) -> dict:
    """POST *body* and return the decoded JSON object.

    Raises
    ------
    UpstreamTimeout
        If the request timed out (after retries, where retried).
    UpstreamError
        On any other transport failure, an HTTP error status, an empty
        body, or a body that is not a JSON object.
    """
    url = _url(host, path)

    async def _call() -> httpx.Response:
        client = _get_client()
        response = await client.post(url, headers=_headers(token), json=body)
        if response.status_code in _RETRYABLE_STATUS_CODES:
            response.raise_for_status()
        return response

    try:
        response = await _retry_on_transient(_call)
    except httpx.TimeoutException as exc:
        raise UpstreamTimeout(f"Request to {url} timed out ({type(exc).__name__})") from exc
    except httpx.HTTPStatusError as exc:
        raise UpstreamError(
            f"{url} answered HTTP {exc.response.status_code}",
        ) from exc
    except httpx.HTTPError as exc:
        raise UpstreamError(f"Request to {url} failed: {exc!r}") from exc

    if response.status_code >= 400:
        raise UpstreamError(f"{url} answered HTTP {response.status_code}: {response.text[:500]}")

    if not response.content.strip():
        raise UpstreamError(f"Empty response from {url}")

    try:
        data = response.json()
    except (_json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise UpstreamError(f"Invalid JSON response from {url}: {exc}") from exc

    if not isinstance(data, dict):
        raise UpstreamError(f"Unexpected response from {url}: expected a JSON object")
    return data


def _extract_files(data: dict[str, Any], what: str) -> FileSet:
    """Pull the FileSet out of a ``{status, data, message}`` envelope."""
    if data.get("status") != "success":
        message = data.get("message") or "Unknown error"
        raise UpstreamError(f"{what} failed: {message}")

    try:
        return validate_fileset(data.get("data"))
    except TypeError as exc:
        raise UpstreamError(
            f"{what} returned malformed data: expected a path -> content mapping ({exc})",
        ) from exc
    except SandboxViolation as exc:
        raise UpstreamError(f"{what} returned an unsafe file path: {exc}") from exc

# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def request_generation(host: str, token: str, prompt: str) -> FileSet:
    """Ask the generation service for a project source tree.

    Raises ``UpstreamError`` (or ``UpstreamTimeout``) on any failure.
    """
    logger.info("Requesting plugin generation from %s", host)
    data = await _post_json(host, CREATE_PATH, token, {"prompt": prompt})
    files = _extract_files(data, "Generation")
    logger.info("Generation service returned %d file(s)", len(files))
    return files


async def request_fix(host: str, token: str, payload: DiagnosticPayload) -> FileSet:
    """Send build errors plus the current tree; return replacement files."""
    data = await _post_json(host, FIX_PATH, token, payload.to_request_body())
    files = _extract_files(data, "Fix")
    logger.info("Fix service returned %d file(s)", len(files))
    return files
