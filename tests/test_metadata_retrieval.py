from __future__ import annotations

import asyncio
import logging
import time

import pytest

from nftgate.entity.gateway import GatewayResolver
from nftgate.entity.grouping import group
from nftgate.entity.metadata import UploadRequest
from nftgate.entity.retrieve import MetadataRetriever
from nftgate.entity.service import EntityGateway
from nftgate.errors import CorruptMetadata, NotFound, StorageUnavailable
from nftgate.storage.memory import MemoryBlobStore
from nftgate.util.cid import content_id


GW = "https://gw.example.org"


def _uploaded():
    store = MemoryBlobStore()
    gw = EntityGateway(store, GatewayResolver(GW))
    res = asyncio.run(gw.upload_entity(UploadRequest(name="Artwork1", content=b"A", preview=b"B")))
    return store, gw, res


def test_get_metadata_by_hash_id() -> None:
    _, gw, res = _uploaded()
    view = asyncio.run(gw.get_metadata(res.hash_id))

    assert view.hash_id == res.hash_id
    assert view.metadata_cid == res.metadata_cid
    assert view.metadata == res.metadata
    assert view.embed == res.embed


def test_get_metadata_by_metadata_identifier() -> None:
    _, gw, res = _uploaded()
    view = asyncio.run(gw.get_metadata(f"ipfs://{res.metadata_cid}"))

    assert view.hash_id is None
    assert view.metadata == res.metadata
    assert view.embed.image == f"{GW}/ipfs/{content_id(b'A')}"


def test_get_metadata_without_embed() -> None:
    _, gw, res = _uploaded()
    view = asyncio.run(gw.get_metadata(res.hash_id, embed=False))
    assert view.embed is None
    assert "embed" not in view.to_json()
    assert view.to_json()["hashId"] == res.hash_id


def test_lookup_is_read_only() -> None:
    store, gw, res = _uploaded()
    writes = store.writes
    asyncio.run(gw.get_metadata(res.hash_id))
    assert store.writes == writes


def test_unknown_reference_is_not_found() -> None:
    gw = EntityGateway(MemoryBlobStore(), GatewayResolver(GW))
    with pytest.raises(NotFound) as e:
        asyncio.run(gw.get_metadata("unknown-id"))
    assert e.value.reason == "reference_not_found"

    with pytest.raises(NotFound):
        asyncio.run(gw.get_metadata(content_id(b"never stored")))


def test_content_blob_by_reference_is_not_found(caplog) -> None:
    store, _, _ = _uploaded()
    retriever = MetadataRetriever(store, GatewayResolver(GW))

    with caplog.at_level(logging.ERROR, logger="nftgate.entity.retrieve"):
        with pytest.raises(NotFound) as e:
            retriever.get_metadata(content_id(b"A"))
    assert e.value.reason == "not_metadata"
    assert "metadata_corrupt" not in caplog.text

    json_list = store.put(b"[1, 2]")
    with pytest.raises(NotFound) as e:
        retriever.get_metadata(json_list)
    assert e.value.reason == "not_metadata"


def test_json_object_failing_validation_is_corrupt(caplog) -> None:
    store = MemoryBlobStore()
    ref = store.put(b'{"name": "Artwork1"}')

    with caplog.at_level(logging.ERROR, logger="nftgate.entity.retrieve"):
        with pytest.raises(CorruptMetadata) as e:
            MetadataRetriever(store, GatewayResolver(GW)).get_metadata(ref)
    assert e.value.reason == "metadata_invalid"
    assert "metadata_corrupt" in caplog.text


def test_manifest_linking_non_json_blob_is_corrupt() -> None:
    store = MemoryBlobStore()
    junk = store.put(b"\x89PNG")
    hash_id = store.put(group({"metadata.json": junk}).encode())

    with pytest.raises(CorruptMetadata) as e:
        MetadataRetriever(store, GatewayResolver(GW)).get_metadata(hash_id)
    assert e.value.reason == "metadata_not_json"


def test_name_round_trips_exactly() -> None:
    store = MemoryBlobStore()
    gw = EntityGateway(store, GatewayResolver(GW))
    res = asyncio.run(gw.upload_entity(UploadRequest(name=" Artwork1 ", content=b"A", description="\tline\n")))

    view = asyncio.run(gw.get_metadata(res.hash_id))
    assert view.metadata.name == " Artwork1 "
    assert view.metadata.description == "\tline\n"
    assert view.metadata == res.metadata


def test_manifest_without_metadata_link_is_corrupt() -> None:
    store = MemoryBlobStore()
    hash_id = store.put(group({"content": content_id(b"A")}).encode())

    with pytest.raises(CorruptMetadata) as e:
        MetadataRetriever(store, GatewayResolver(GW)).get_metadata(hash_id)
    assert e.value.reason == "manifest_missing_metadata"


def test_manifest_with_dangling_metadata_link_is_corrupt() -> None:
    store = MemoryBlobStore()
    hash_id = store.put(group({"content": content_id(b"A"), "metadata.json": content_id(b"gone")}).encode())

    with pytest.raises(CorruptMetadata) as e:
        MetadataRetriever(store, GatewayResolver(GW)).get_metadata(hash_id)
    assert e.value.reason == "metadata_blob_missing"


class StuckStore(MemoryBlobStore):
    def get(self, cid: str) -> bytes:
        time.sleep(0.3)
        return super().get(cid)


def test_lookup_timeout_is_storage_unavailable() -> None:
    gw = EntityGateway(StuckStore(), GatewayResolver(GW), op_timeout_s=0.05)
    with pytest.raises(StorageUnavailable) as e:
        asyncio.run(gw.get_metadata(content_id(b"A")))
    assert e.value.reason == "metadata_lookup_timeout"
