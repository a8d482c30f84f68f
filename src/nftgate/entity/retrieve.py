from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from nftgate.entity.gateway import GatewayResolver
from nftgate.entity.grouping import EntityManifest
from nftgate.entity.metadata import NFTMetadata, decode_metadata
from nftgate.errors import CorruptMetadata, NotFound
from nftgate.metrics import inc_counter
from nftgate.storage.base import BlobStore
from nftgate.util.cid import validate_ipfs_cid
from nftgate.util.event_log import log_event


log = logging.getLogger("nftgate.entity.retrieve")

Json = Dict[str, Any]

# decode_metadata reasons for bytes that are not a JSON object at all.
_NOT_METADATA = frozenset({"metadata_not_json", "metadata_not_object"})


@dataclass(frozen=True)
class MetadataView:
    reference: str
    hash_id: Optional[str]
    metadata_cid: str
    metadata: NFTMetadata
    embed: Optional[NFTMetadata] = None

    def to_json(self) -> Json:
        out: Json = {
            "reference": self.reference,
            "hashId": self.hash_id,
            "metadataCid": self.metadata_cid,
            "metadata": self.metadata.to_json(),
        }
        if self.embed is not None:
            out["embed"] = self.embed.to_json()
        return out


class MetadataRetriever:
    """Read-only metadata lookup.

    A reference is either an entity hashId (the manifest blob, whose
    metadata.json link is followed) or the metadata blob's own identifier.
    Both are accepted with or without an `ipfs://` prefix.
    """

    def __init__(self, store: BlobStore, resolver: GatewayResolver) -> None:
        self._store = store
        self._resolver = resolver

    def _corrupt(self, reference: str, cid: str, err: CorruptMetadata) -> CorruptMetadata:
        inc_counter("metadata_corrupt")
        log_event(
            log,
            "metadata_corrupt",
            level=logging.ERROR,
            reference=reference,
            cid=cid,
            reason=err.reason,
        )
        return err

    def get_metadata(self, reference: str, *, embed: bool = True) -> MetadataView:
        v = validate_ipfs_cid(reference)
        if not v.ok:
            raise NotFound("reference_not_found", {"reference": str(reference or "")[:128], "why": v.reason})

        ref = v.cid
        data = self._store.get(ref)

        hash_id: Optional[str] = None
        metadata_cid = ref
        manifest = EntityManifest.decode(data)
        if manifest is not None:
            hash_id = ref
            link = manifest.metadata_cid
            if link is None:
                raise self._corrupt(ref, ref, CorruptMetadata("manifest_missing_metadata", {"hash_id": ref}))
            metadata_cid = link
            try:
                data = self._store.get(link)
            except NotFound:
                raise self._corrupt(
                    ref, link, CorruptMetadata("metadata_blob_missing", {"hash_id": ref, "metadata_cid": link})
                ) from None

        try:
            metadata = decode_metadata(data)
        except CorruptMetadata as e:
            if manifest is None and e.reason in _NOT_METADATA:
                # A content or preview blob looked up directly: a wrong
                # reference, not a damaged entity.
                raise NotFound("not_metadata", {"reference": ref}) from None
            raise self._corrupt(ref, metadata_cid, e) from None

        return MetadataView(
            reference=ref,
            hash_id=hash_id,
            metadata_cid=metadata_cid,
            metadata=metadata,
            embed=self._resolver.embed(metadata) if embed else None,
        )
