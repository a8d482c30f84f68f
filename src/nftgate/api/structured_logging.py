from __future__ import annotations

import logging
import os
import time
import uuid
from typing import Any, Dict, List, Optional

from nftgate.metrics import inc_counter
from nftgate.util.event_log import log_event

Json = Dict[str, Any]

# Path parameters that name an entity or blob; logged as `ref`.
_REF_PARAMS = ("reference", "cid")


def configure_structured_logging(level: Optional[str] = None) -> None:
    """Route every logger to one stdout handler printing the JSONL message as-is.

    Level comes from `level`, else NFTGATE_LOG_LEVEL (default INFO). Calling it
    again only adjusts the level.
    """
    level_name = (level or os.environ.get("NFTGATE_LOG_LEVEL") or "INFO").strip().upper()
    lvl = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    root.setLevel(lvl)
    if any(getattr(h, "_nftgate", False) for h in root.handlers):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    setattr(handler, "_nftgate", True)
    root.handlers = [handler]


def _header(scope: Json, name: bytes) -> Optional[str]:
    for key, value in scope.get("headers") or ():
        if key == name:
            return value.decode("latin-1")
    return None


def _route_template(scope: Json) -> str:
    # Set by the router once matched; unmatched paths fall back to the raw path.
    route = scope.get("route")
    return str(getattr(route, "path", "") or scope.get("path") or "")


def _ref(scope: Json) -> Optional[str]:
    params = scope.get("path_params") or {}
    for name in _REF_PARAMS:
        if params.get(name):
            return str(params[name])[:128]
    return None


class RequestLogMiddleware:
    """One `http_request` JSONL event per request, plus status-class counters.

    Routes are logged by template (`/v1/entity/{reference}/metadata`) with the
    identifier in `ref`, so log aggregation groups by endpoint. Every response
    carries `x-request-id` (the caller's, or a fresh one).

    NFTGATE_LOG_REQUESTS=0 turns the event off; the header is still set.
    """

    def __init__(self, app) -> None:
        self.app = app
        raw = (os.environ.get("NFTGATE_LOG_REQUESTS") or "1").strip().lower()
        self._enabled = raw not in {"0", "false", "no", "n", "off"}
        self._logger = logging.getLogger("nftgate.http")

    async def __call__(self, scope, receive, send) -> None:
        if scope.get("type") != "http":
            return await self.app(scope, receive, send)

        started = time.monotonic()
        request_id = _header(scope, b"x-request-id") or uuid.uuid4().hex
        scope.setdefault("state", {})["request_id"] = request_id

        status = 500
        bytes_in = 0

        async def counting_receive():
            nonlocal bytes_in
            message = await receive()
            if message.get("type") == "http.request":
                bytes_in += len(message.get("body") or b"")
            return message

        async def stamping_send(message) -> None:
            nonlocal status
            if message.get("type") == "http.response.start":
                status = int(message.get("status") or 500)
                headers: List = list(message.get("headers") or [])
                if not any(k == b"x-request-id" for k, _ in headers):
                    headers.append((b"x-request-id", request_id.encode("latin-1")))
                message = {**message, "headers": headers}
            await send(message)

        error: Optional[str] = None
        try:
            await self.app(scope, counting_receive, stamping_send)
        except Exception as e:
            error = type(e).__name__
            raise
        finally:
            inc_counter(f"http_responses_{status // 100}xx")
            if self._enabled:
                log_event(
                    self._logger,
                    "http_request",
                    level=logging.WARNING if status >= 500 else logging.INFO,
                    request_id=request_id,
                    method=scope.get("method"),
                    route=_route_template(scope),
                    ref=_ref(scope),
                    status=status,
                    bytes_in=bytes_in,
                    duration_ms=int((time.monotonic() - started) * 1000),
                    error=error,
                )
