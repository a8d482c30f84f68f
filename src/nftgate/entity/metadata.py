"""NFT metadata documents (metadata.json).

Documents follow the OpenSea metadata convention (name, description, image,
attributes, ...). Content is referenced through the internal `ipfs://<cid>`
scheme; gateway URLs are a presentation concern (see entity.gateway) and are
never stored.

Everything in this module is pure: no storage or network I/O.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from nftgate.errors import CorruptMetadata, InvalidArgument, InvalidAttributes, InvalidProperties
from nftgate.util.canon_json import canon_json_bytes
from nftgate.util.cid import to_ipfs_uri, validate_ipfs_cid


Json = Dict[str, Any]

METADATA_FILENAME = "metadata.json"

MAX_NAME_LEN = 256
MAX_DESCRIPTION_LEN = 16_384


class NFTMetadata(BaseModel):
    """Stored metadata document. Unknown keys are preserved on read."""

    name: str = Field(..., min_length=1)
    description: str = ""
    image: str = Field(..., min_length=1)
    preview: Optional[str] = None
    external_url: Optional[str] = None
    background_color: Optional[str] = None
    youtube_url: Optional[str] = None
    attributes: Optional[List[Dict[str, Any]]] = None
    properties: Optional[Dict[str, Any]] = None

    model_config = {"extra": "allow"}

    def to_json(self) -> Json:
        return self.model_dump(mode="json", exclude_none=True)


@dataclass(frozen=True)
class UploadRequest:
    """Entity upload arguments: metadata basics plus the slot files."""

    name: str
    content: bytes
    description: str = ""
    preview: Optional[bytes] = None
    external_url: Optional[str] = None
    background_color: Optional[str] = None
    youtube_url: Optional[str] = None
    # JSON strings supplied by the caller
    attributes: Optional[str] = None
    properties: Optional[str] = None


@dataclass(frozen=True)
class ValidatedUpload:
    request: UploadRequest
    name: str
    description: str
    attributes: Optional[List[Json]] = None
    properties: Optional[Json] = None
    extras: Json = field(default_factory=dict)


def parse_properties(raw: Optional[str]) -> Optional[Json]:
    """Parse the `properties` JSON string. Must be a JSON object if present."""
    if raw is None or not str(raw).strip():
        return None
    try:
        obj = json.loads(raw)
    except ValueError as e:
        raise InvalidProperties("properties_not_json", {"error": str(e)[:200]}) from None
    if not isinstance(obj, dict):
        raise InvalidProperties("properties_not_object", {"type": type(obj).__name__})
    return obj


def parse_attributes(raw: Optional[str]) -> Optional[List[Json]]:
    """Parse the `attributes` JSON string. Must be a list of objects if present."""
    if raw is None or not str(raw).strip():
        return None
    try:
        obj = json.loads(raw)
    except ValueError as e:
        raise InvalidAttributes("attributes_not_json", {"error": str(e)[:200]}) from None
    if not isinstance(obj, list):
        raise InvalidAttributes("attributes_not_list", {"type": type(obj).__name__})
    for i, item in enumerate(obj):
        if not isinstance(item, dict):
            raise InvalidAttributes("attribute_not_object", {"index": i})
    return obj


def _opt_str(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    s = str(v)
    return s if s.strip() else None


def validate_upload_request(req: UploadRequest) -> ValidatedUpload:
    """Reject malformed uploads before any blob is written.

    Raises InvalidArgument (or its InvalidProperties / InvalidAttributes
    subclasses); never partially validates.
    """
    # Text is stored exactly as supplied; only blankness is judged stripped.
    name = req.name or ""
    if not name.strip():
        raise InvalidArgument("name_required")
    if len(name) > MAX_NAME_LEN:
        raise InvalidArgument("name_too_long", {"max": MAX_NAME_LEN})

    description = req.description or ""
    if len(description) > MAX_DESCRIPTION_LEN:
        raise InvalidArgument("description_too_long", {"max": MAX_DESCRIPTION_LEN})

    if not isinstance(req.content, (bytes, bytearray, memoryview)) or len(req.content) == 0:
        raise InvalidArgument("content_required")
    if req.preview is not None and not isinstance(req.preview, (bytes, bytearray, memoryview)):
        raise InvalidArgument("preview_not_bytes")

    properties = parse_properties(req.properties)
    attributes = parse_attributes(req.attributes)

    extras: Json = {}
    for key in ("external_url", "background_color", "youtube_url"):
        v = _opt_str(getattr(req, key))
        if v is not None:
            extras[key] = v

    return ValidatedUpload(
        request=req,
        name=name,
        description=description,
        attributes=attributes,
        properties=properties,
        extras=extras,
    )


def assemble_metadata(upload: ValidatedUpload, *, content_cid: str, preview_cid: Optional[str] = None) -> NFTMetadata:
    """Build the metadata document from validated fields and resolved identifiers."""
    for slot, cid in (("content", content_cid), ("preview", preview_cid)):
        if cid is None:
            continue
        v = validate_ipfs_cid(cid)
        if not v.ok:
            raise InvalidArgument("invalid_slot_cid", {"slot": slot, "why": v.reason})

    doc: Json = {
        "name": upload.name,
        "description": upload.description,
        "image": to_ipfs_uri(content_cid),
    }
    if preview_cid is not None:
        doc["preview"] = to_ipfs_uri(preview_cid)
    doc.update(upload.extras)
    if upload.attributes is not None:
        doc["attributes"] = upload.attributes
    if upload.properties is not None:
        doc["properties"] = upload.properties

    return NFTMetadata.model_validate(doc)


def encode_metadata(doc: NFTMetadata) -> bytes:
    return canon_json_bytes(doc.to_json())


def decode_metadata(data: bytes) -> NFTMetadata:
    """Parse stored metadata.json bytes. Raises CorruptMetadata when malformed."""
    try:
        obj = json.loads(bytes(data).decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise CorruptMetadata("metadata_not_json", {"error": str(e)[:200]}) from None
    if not isinstance(obj, dict):
        raise CorruptMetadata("metadata_not_object", {"type": type(obj).__name__})
    try:
        return NFTMetadata.model_validate(obj)
    except ValidationError as e:
        errors = [{"loc": [str(p) for p in err.get("loc", ())], "msg": str(err.get("msg", ""))} for err in e.errors()[:5]]
        raise CorruptMetadata("metadata_invalid", {"errors": errors}) from None
