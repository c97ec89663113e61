"""Request-ID middleware -- assigns a unique ID to every HTTP request.

Implemented as a pure ASGI middleware (not BaseHTTPMiddleware) so a
long-running generate request is never buffered or wrapped in a task.
"""

import re
import uuid

from starlette.types import ASGIApp, Receive, Scope, Send

# Client IDs end up in access-log METRIC lines; keep them to one safe token.
_CLIENT_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def _pick_request_id(raw: bytes) -> str:
    candidate = raw.decode("latin-1").strip()
    if _CLIENT_ID_RE.match(candidate):
        return candidate
    return str(uuid.uuid4())


class RequestIDMiddleware:
    """Injects ``X-Request-ID`` into every HTTP request/response cycle.

    A well-formed client-supplied ID is reused (useful for tracing a
    generation across services); anything else is replaced by a random
    UUID-4.  Non-HTTP scopes pass through untouched.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        request_id = _pick_request_id(headers.get(b"x-request-id", b""))
        scope.setdefault("state", {})["request_id"] = request_id

        async def send_with_id(message: dict) -> None:
            if message["type"] == "http.response.start":
                raw_headers: list = list(message.get("headers", []))
                raw_headers.append((b"x-request-id", request_id.encode()))
                message = {**message, "headers": raw_headers}
            await send(message)

        await self.app(scope, receive, send_with_id)
