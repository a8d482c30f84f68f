"""Entity grouping.

An entity binds its slot blobs (content, preview, metadata.json) under one
parent hashId. The hashId is the content identifier of a canonical manifest:

    {"entity": "nft", "links": {"content": "<cid>", "metadata.json": "<cid>", ...}, "version": 1}

Canonical JSON sorts keys, so the hashId never depends on the order in which
slots were supplied, and it changes iff any child identifier changes.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Optional, Tuple, Union

from nftgate.errors import InvalidArgument
from nftgate.entity.metadata import METADATA_FILENAME
from nftgate.util.canon_json import canon_json_bytes
from nftgate.util.cid import content_id, validate_ipfs_cid


MANIFEST_KIND = "nft"
MANIFEST_VERSION = 1

SLOT_CONTENT = "content"
SLOT_PREVIEW = "preview"
SLOT_METADATA = METADATA_FILENAME

UPLOADING_FIELDS = (SLOT_CONTENT, SLOT_PREVIEW)

Children = Union[Mapping[str, str], Iterable[Tuple[str, str]]]


@dataclass(frozen=True)
class EntityManifest:
    links: Tuple[Tuple[str, str], ...]

    def as_dict(self) -> Dict[str, str]:
        return dict(self.links)

    def to_json(self) -> dict:
        return {"entity": MANIFEST_KIND, "version": MANIFEST_VERSION, "links": self.as_dict()}

    def encode(self) -> bytes:
        return canon_json_bytes(self.to_json())

    @property
    def hash_id(self) -> str:
        return content_id(self.encode())

    def get(self, slot: str) -> Optional[str]:
        return self.as_dict().get(slot)

    @property
    def metadata_cid(self) -> Optional[str]:
        return self.get(SLOT_METADATA)

    @staticmethod
    def decode(data: bytes) -> Optional["EntityManifest"]:
        """Return the manifest encoded in `data`, or None if it is not one."""
        try:
            obj = json.loads(bytes(data).decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            return None
        if not isinstance(obj, dict) or obj.get("entity") != MANIFEST_KIND:
            return None
        links = obj.get("links")
        if not isinstance(links, dict):
            return None
        try:
            return group(links)
        except InvalidArgument:
            return None


def _pairs(children: Children) -> Iterable[Tuple[str, str]]:
    if isinstance(children, Mapping):
        return list(children.items())
    return list(children)


def group(children: Children) -> EntityManifest:
    """Canonicalize child identifiers into an EntityManifest.

    Slots are sorted by name; duplicate slot names, empty names and malformed
    identifiers raise InvalidArgument.
    """
    seen: Dict[str, str] = {}
    for slot, cid in _pairs(children):
        name = str(slot or "").strip()
        if not name:
            raise InvalidArgument("empty_slot_name")
        if name in seen:
            raise InvalidArgument("duplicate_slot", {"slot": name})
        v = validate_ipfs_cid(str(cid or ""))
        if not v.ok:
            raise InvalidArgument("invalid_slot_cid", {"slot": name, "why": v.reason})
        seen[name] = v.cid

    if not seen:
        raise InvalidArgument("empty_entity")

    return EntityManifest(links=tuple(sorted(seen.items())))
