"""Content identifiers.

Every blob is addressed by a CIDv1 string:
  - multibase: base32 lowercase, no padding ("b" prefix)
  - codec: raw (0x55)
  - multihash: sha2-256 (0x12), 32-byte digest

This matches what an IPFS node reports for a single raw block, so the same
identifier is valid on every storage backend.

Validation stays lightweight and dependency-free:
  - CIDv0 (base58btc) commonly starts with "Qm" and is length 46.
  - CIDv1 (base32 lowercase) starts with "b" and uses the RFC4648
    base32 alphabet in lowercase: a-z2-7.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import re
from dataclasses import dataclass
from typing import Optional, Union


CID_VERSION_1 = 0x01
CODEC_RAW = 0x55
MULTIHASH_SHA2_256 = 0x12
SHA2_256_LEN = 32

_RAW_SHA256_PREFIX = bytes([CID_VERSION_1, CODEC_RAW, MULTIHASH_SHA2_256, SHA2_256_LEN])

IPFS_SCHEME = "ipfs://"

_CIDV0_RE = re.compile(r"^Qm[1-9A-HJ-NP-Za-km-z]{44}$")  # base58btc (no 0,O,I,l)
_CIDV1_BASE32_RE = re.compile(r"^b[a-z2-7]{10,}$")  # base32 lowercase (bafy..., bafk...)

BytesLike = Union[bytes, bytearray, memoryview]


@dataclass(frozen=True)
class CidValidation:
    ok: bool
    reason: str
    cid: str


def content_id(data: BytesLike) -> str:
    """Return the raw/sha2-256 CIDv1 of `data`."""
    digest = hashlib.sha256(bytes(data)).digest()
    raw = _RAW_SHA256_PREFIX + digest
    return "b" + base64.b32encode(raw).decode("ascii").lower().rstrip("=")


def normalize_cid(cid: str) -> str:
    c = (cid or "").strip()
    if c.startswith(IPFS_SCHEME):
        c = c[len(IPFS_SCHEME):].split("/", 1)[0]
    return c


def validate_ipfs_cid(cid: str, *, max_len: int = 128) -> CidValidation:
    c = normalize_cid(cid)
    if not c:
        return CidValidation(False, "missing_cid", "")
    if len(c) > int(max_len):
        return CidValidation(False, "cid_too_long", c)

    if _CIDV0_RE.match(c):
        return CidValidation(True, "ok", c)
    if _CIDV1_BASE32_RE.match(c):
        return CidValidation(True, "ok", c)
    return CidValidation(False, "invalid_cid_format", c)


def raw_digest(cid: str) -> Optional[bytes]:
    """Decode a raw/sha2-256 CIDv1 and return its digest, else None."""
    c = normalize_cid(cid)
    if not _CIDV1_BASE32_RE.match(c):
        return None
    body = c[1:].upper()
    body += "=" * (-len(body) % 8)
    try:
        raw = base64.b32decode(body)
    except (binascii.Error, ValueError):
        return None
    if len(raw) != len(_RAW_SHA256_PREFIX) + SHA2_256_LEN:
        return None
    if not raw.startswith(_RAW_SHA256_PREFIX):
        return None
    return raw[len(_RAW_SHA256_PREFIX):]


def is_raw_cid(cid: str) -> bool:
    return raw_digest(cid) is not None


def to_ipfs_uri(cid: str) -> str:
    return f"{IPFS_SCHEME}{normalize_cid(cid)}"
