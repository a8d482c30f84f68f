from __future__ import annotations

from typing import Any

from nftgate.config import normalize_gateway_base_url
from nftgate.entity.metadata import NFTMetadata
from nftgate.errors import InvalidArgument
from nftgate.util.cid import IPFS_SCHEME, validate_ipfs_cid


class GatewayResolver:
    """Turns content identifiers into dereferenceable gateway URLs.

    resolve() and embed() are pure functions of the configured base address, so
    changing the base re-points every embed view without re-uploading anything.
    """

    def __init__(self, base_url: str) -> None:
        self._base_url = normalize_gateway_base_url(base_url)

    @property
    def base_url(self) -> str:
        return self._base_url

    def resolve(self, cid: str) -> str:
        v = validate_ipfs_cid(cid)
        if not v.ok:
            raise InvalidArgument("invalid_cid", {"cid": str(cid or "")[:128], "why": v.reason})
        return f"{self._base_url}/ipfs/{v.cid}"

    def resolve_uri(self, value: str) -> str:
        """Rewrite one `ipfs://<cid>[/path]` reference; anything else is returned as-is."""
        if not isinstance(value, str) or not value.startswith(IPFS_SCHEME):
            return value
        rest = value[len(IPFS_SCHEME):]
        cid, sep, path = rest.partition("/")
        v = validate_ipfs_cid(cid)
        if not v.ok:
            return value
        return f"{self._base_url}/ipfs/{v.cid}{sep}{path}"

    def _rewrite(self, node: Any) -> Any:
        if isinstance(node, str):
            return self.resolve_uri(node)
        if isinstance(node, dict):
            return {k: self._rewrite(v) for k, v in node.items()}
        if isinstance(node, list):
            return [self._rewrite(v) for v in node]
        return node

    def embed(self, doc: NFTMetadata) -> NFTMetadata:
        """Deep copy of `doc` with every internal reference rewritten to a URL."""
        return NFTMetadata.model_validate(self._rewrite(doc.to_json()))
