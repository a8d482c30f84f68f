"""
Content-addressed blob storage.

Backends are small and explicit:
- every blob is addressed by the raw/sha2-256 CIDv1 of its bytes,
- writes are once-only (an existing identifier is a dedup no-op),
- a blob becomes visible only after its bytes are fully stored.
"""
