from __future__ import annotations

import json
from typing import Any


def canon_json(obj: Any) -> str:
    """Canonical JSON encoding.

    Sorted keys, compact separators, UTF-8 preserved. Identical documents always
    encode to identical bytes, which is what content addressing relies on.
    """
    # Do not coerce unknown types (no default=str): non-JSON values must fail fast.
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def canon_json_bytes(obj: Any) -> bytes:
    return canon_json(obj).encode("utf-8")
