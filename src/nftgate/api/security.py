"""Request body limit for the upload surface.

An upload carries up to two slot files (content, preview) plus small form
fields, so the cap for a whole request is derived from the per-slot cap
(GatewayConfig.request_limit_bytes). The per-slot cap itself is enforced by
the upload route, which knows which part is which.

The body is never buffered here: a declared Content-Length over the cap is
refused up front, and otherwise the received bytes are counted as the
multipart parser pulls them. Once the count passes the cap the app sees a
disconnect, its response is dropped and a 413 is sent instead.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from starlette.responses import JSONResponse

from nftgate.api.errors import ApiError
from nftgate.config import GatewayConfig
from nftgate.metrics import inc_counter
from nftgate.util.event_log import log_event


log = logging.getLogger("nftgate.api.security")

Message = Dict[str, Any]
ASGIApp = Callable[..., Awaitable[None]]

_DISCONNECT: Message = {"type": "http.disconnect"}


def _declared_length(scope: Dict[str, Any]) -> Optional[int]:
    for key, value in scope.get("headers") or ():
        if key == b"content-length":
            try:
                return int(value.decode("latin-1").strip())
            except ValueError:
                # Malformed header; the streamed byte count still applies.
                return None
    return None


class RequestSizeLimitMiddleware:
    """ASGI middleware capping request bodies at `max_bytes` (0 disables)."""

    def __init__(self, app: ASGIApp, *, max_bytes: int, max_slot_bytes: Optional[int] = None) -> None:
        self.app = app
        self._max_bytes = int(max_bytes)
        self._max_slot_bytes = max_slot_bytes

    @classmethod
    def options_for(cls, cfg: GatewayConfig) -> Dict[str, int]:
        """Keyword arguments for app.add_middleware() from the gateway config."""
        return {"max_bytes": cfg.request_limit_bytes, "max_slot_bytes": cfg.max_upload_bytes}

    def _rejection(self) -> JSONResponse:
        details: Dict[str, Any] = {"max_bytes": self._max_bytes}
        if self._max_slot_bytes is not None:
            details["max_slot_bytes"] = int(self._max_slot_bytes)
        err = ApiError.too_large("request_too_large", f"request body exceeds {self._max_bytes} bytes", details)
        return JSONResponse(status_code=err.status_code, content=err.to_json())

    def _log_rejected(self, scope: Dict[str, Any], received: int, *, declared: bool) -> None:
        inc_counter("requests_too_large")
        log_event(
            log,
            "request_too_large",
            level=logging.WARNING,
            path=str(scope.get("path") or ""),
            received_bytes=received,
            declared=declared,
            max_bytes=self._max_bytes,
        )

    async def __call__(self, scope, receive, send) -> None:
        if scope.get("type") != "http" or self._max_bytes <= 0:
            return await self.app(scope, receive, send)

        declared = _declared_length(scope)
        if declared is not None and declared > self._max_bytes:
            self._log_rejected(scope, declared, declared=True)
            return await self._rejection()(scope, receive, send)

        received = 0
        exceeded = False
        started = False

        async def limited_receive() -> Message:
            nonlocal received, exceeded
            if exceeded:
                return _DISCONNECT
            message = await receive()
            if message.get("type") == "http.request":
                received += len(message.get("body") or b"")
                if received > self._max_bytes:
                    exceeded = True
                    return _DISCONNECT
            return message

        async def guarded_send(message: Message) -> None:
            nonlocal started
            if exceeded and not started:
                return
            if message.get("type") == "http.response.start":
                started = True
            await send(message)

        try:
            await self.app(scope, limited_receive, guarded_send)
        except Exception:
            # The app only fails here because its body was cut off.
            if not exceeded or started:
                raise

        if exceeded and not started:
            self._log_rejected(scope, received, declared=False)
            await self._rejection()(scope, receive, send)
