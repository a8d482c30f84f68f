from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, File, Form, Request, UploadFile
from fastapi.responses import RedirectResponse

from nftgate.api.errors import ApiError
from nftgate.entity.metadata import UploadRequest
from nftgate.entity.service import EntityGateway
from nftgate.util.cid import validate_ipfs_cid


router = APIRouter()


def _gateway(request: Request) -> EntityGateway:
    gw = getattr(request.app.state, "gateway", None)
    if gw is None:
        raise ApiError.internal("not_ready", "gateway not attached to app.state", {})
    return gw


def _max_upload_bytes(request: Request) -> int:
    cfg = getattr(request.app.state, "cfg", None)
    return int(getattr(cfg, "max_upload_bytes", 32 * 1024 * 1024))


async def _read_slot(upload: Optional[UploadFile], *, slot: str, max_bytes: int) -> Optional[bytes]:
    if upload is None:
        return None
    data = await upload.read(max_bytes + 1)
    if len(data) > max_bytes:
        raise ApiError.too_large("upload_too_large", f"{slot} exceeds {max_bytes} bytes", {"slot": slot})
    return data or None


@router.post("/entity/upload")
async def v1_entity_upload(
    request: Request,
    content: UploadFile = File(...),
    preview: Optional[UploadFile] = File(None),
    name: str = Form(""),
    description: str = Form(""),
    external_url: Optional[str] = Form(None),
    background_color: Optional[str] = Form(None),
    youtube_url: Optional[str] = Form(None),
    attributes: Optional[str] = Form(None),
    properties: Optional[str] = Form(None),
):
    """Upload an NFT entity (content, optional preview) and its generated metadata.json.

    Returns:
      { ok, hashId, url, metadata, embed, metadataCid, links }
    """
    gw = _gateway(request)
    max_bytes = _max_upload_bytes(request)

    req = UploadRequest(
        name=name,
        description=description,
        content=await _read_slot(content, slot="content", max_bytes=max_bytes) or b"",
        preview=await _read_slot(preview, slot="preview", max_bytes=max_bytes),
        external_url=external_url,
        background_color=background_color,
        youtube_url=youtube_url,
        attributes=attributes,
        properties=properties,
    )

    result = await gw.upload_entity(req)
    return {"ok": True, **result.to_json()}


@router.get("/entity/gateway/{cid}")
async def v1_entity_gateway(request: Request, cid: str):
    """Redirect to the configured public gateway for a content identifier."""
    v = validate_ipfs_cid(cid)
    if not v.ok:
        raise ApiError.bad_request("invalid_argument", v.reason, {"cid": cid[:128]})
    return RedirectResponse(_gateway(request).resolver.resolve(v.cid))


@router.get("/entity/{reference}/metadata")
async def v1_entity_metadata(request: Request, reference: str, embed: bool = True):
    """Stored metadata for an entity hashId or a metadata identifier, plus its embed view."""
    view = await _gateway(request).get_metadata(reference, embed=embed)
    return {"ok": True, **view.to_json()}
