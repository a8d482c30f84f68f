from __future__ import annotations

import logging
import random
import time
from typing import Callable, TypeVar

from nftgate.errors import StorageUnavailable
from nftgate.metrics import inc_counter
from nftgate.storage.base import BlobStore
from nftgate.util.event_log import log_event


log = logging.getLogger("nftgate.storage.retry")

T = TypeVar("T")


def compute_backoff_ms(attempts: int, *, base_ms: int, cap_ms: int) -> int:
    """Exponential backoff, capped. `attempts` starts at 1 for the first failure."""
    a = max(1, int(attempts))
    base = max(1, int(base_ms))
    cap = max(base, int(cap_ms))
    # base * 2^(a-1), capped
    delay = base * (2 ** min(a - 1, 30))
    if delay > cap:
        delay = cap
    return int(delay)


class RetryingBlobStore:
    """Bounded-retry boundary around a blob store backend.

    Policy:
      - only StorageUnavailable is retried; NotFound/CorruptBlob/etc. pass through
      - exponential backoff with jitter in [0.5x, 1.5x], capped
      - after max_attempts the last StorageUnavailable is re-raised with the
        attempt count attached (fail closed)
    """

    def __init__(
        self,
        inner: BlobStore,
        *,
        max_attempts: int = 5,
        backoff_base_ms: int = 100,
        backoff_cap_ms: int = 5_000,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._inner = inner
        self._max_attempts = max(1, int(max_attempts))
        self._base_ms = max(1, int(backoff_base_ms))
        self._cap_ms = max(self._base_ms, int(backoff_cap_ms))
        self._sleep = sleep

    @property
    def backend(self) -> str:
        return self._inner.backend

    @property
    def inner(self) -> BlobStore:
        return self._inner

    def _run(self, op: str, fn: Callable[[], T]) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return fn()
            except StorageUnavailable as e:
                if attempt >= self._max_attempts:
                    inc_counter("storage_retry_exhausted")
                    log_event(
                        log,
                        "storage_retry_exhausted",
                        level=logging.ERROR,
                        backend=self.backend,
                        op=op,
                        attempts=attempt,
                        reason=e.reason,
                    )
                    details = dict(e.details) if isinstance(e.details, dict) else {"error": e.details}
                    details["attempts"] = attempt
                    raise StorageUnavailable(e.reason, details) from e

                delay_ms = compute_backoff_ms(attempt, base_ms=self._base_ms, cap_ms=self._cap_ms)
                delay_ms = int(delay_ms * (0.5 + random.random()))
                inc_counter("storage_retries")
                log_event(
                    log,
                    "storage_retry",
                    level=logging.WARNING,
                    backend=self.backend,
                    op=op,
                    attempt=attempt,
                    delay_ms=delay_ms,
                    reason=e.reason,
                )
                self._sleep(delay_ms / 1000.0)

    def put(self, data: bytes) -> str:
        return self._run("put", lambda: self._inner.put(data))

    def get(self, cid: str) -> bytes:
        return self._run("get", lambda: self._inner.get(cid))

    def exists(self, cid: str) -> bool:
        return self._run("exists", lambda: self._inner.exists(cid))
