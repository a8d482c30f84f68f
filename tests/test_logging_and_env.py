from __future__ import annotations

import json
import logging
import os

from fastapi.testclient import TestClient

from nftgate import env as env_mod
from nftgate import metrics
from nftgate.api.app import create_app
from nftgate.api.structured_logging import configure_structured_logging
from nftgate.config import BACKEND_MEMORY, GatewayConfig
from nftgate.entity.gateway import GatewayResolver
from nftgate.entity.service import EntityGateway
from nftgate.errors import CorruptBlob, GatewayError, InvalidProperties, StorageUnavailable
from nftgate.storage.memory import MemoryBlobStore
from nftgate.util.cid import content_id
from nftgate.util.event_log import log_event


GW = "https://gw.example.org"


def test_log_event_emits_jsonl(caplog) -> None:
    logger = logging.getLogger("nftgate.test")
    with caplog.at_level(logging.INFO, logger="nftgate.test"):
        log_event(logger, "entity_uploaded", hash_id="bafk", slots=["content"])

    payload = json.loads(caplog.records[-1].getMessage())
    assert payload["event"] == "entity_uploaded"
    assert payload["hash_id"] == "bafk"
    assert isinstance(payload["ts_ms"], int)


def test_log_event_falls_back_for_unserializable_fields(caplog) -> None:
    logger = logging.getLogger("nftgate.test")
    with caplog.at_level(logging.INFO, logger="nftgate.test"):
        log_event(logger, "odd", value=object())
    assert caplog.records[-1].getMessage().startswith("event=odd ")


def test_configure_structured_logging_is_idempotent(monkeypatch) -> None:
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        root.handlers = []
        monkeypatch.setenv("NFTGATE_LOG_LEVEL", "debug")
        configure_structured_logging()
        configure_structured_logging()
        assert len(root.handlers) == 1
        assert root.level == logging.DEBUG

        configure_structured_logging("warning")
        assert len(root.handlers) == 1
        assert root.level == logging.WARNING
    finally:
        root.handlers = saved_handlers
        root.setLevel(saved_level)


def test_request_log_names_route_template_and_ref(caplog) -> None:
    gw = GatewayResolver(GW)
    cfg = GatewayConfig(mode="test", gateway_base_url=GW, storage_backend=BACKEND_MEMORY)
    c = TestClient(create_app(gateway=EntityGateway(MemoryBlobStore(), gw), cfg=cfg))
    ref = content_id(b"missing")

    with caplog.at_level(logging.INFO, logger="nftgate.http"):
        r = c.get(f"/v1/entity/{ref}/metadata", headers={"x-request-id": "req-7"})
    assert r.status_code == 404
    assert r.headers["x-request-id"] == "req-7"

    events = [json.loads(rec.getMessage()) for rec in caplog.records if rec.name == "nftgate.http"]
    assert events[-1]["event"] == "http_request"
    assert events[-1]["route"] == "/v1/entity/{reference}/metadata"
    assert events[-1]["ref"] == ref
    assert events[-1]["status"] == 404
    assert events[-1]["request_id"] == "req-7"
    assert metrics.snapshot()["counters"]["http_responses_4xx"] == 1


def test_request_log_counts_upload_bytes(caplog) -> None:
    cfg = GatewayConfig(mode="test", gateway_base_url=GW, storage_backend=BACKEND_MEMORY)
    c = TestClient(create_app(gateway=EntityGateway(MemoryBlobStore(), GatewayResolver(GW)), cfg=cfg))

    with caplog.at_level(logging.INFO, logger="nftgate.http"):
        r = c.post(
            "/v1/entity/upload",
            data={"name": "Artwork1"},
            files={"content": ("a.bin", b"A" * 500, "application/octet-stream")},
        )
    assert r.status_code == 200
    assert r.headers["x-request-id"]

    event = json.loads([rec for rec in caplog.records if rec.name == "nftgate.http"][-1].getMessage())
    assert event["route"] == "/v1/entity/upload"
    assert event["ref"] is None
    assert event["bytes_in"] > 500


def test_dotenv_loads_once_without_overriding(monkeypatch, tmp_path) -> None:
    dotenv = tmp_path / ".env"
    dotenv.write_text("NFTGATE_MODE=dev\nNFTGATE_LOG_LEVEL=WARNING\n", encoding="utf-8")
    monkeypatch.setenv("NFTGATE_LOG_LEVEL", "ERROR")
    # registered so teardown removes what the loader sets
    monkeypatch.setenv("NFTGATE_MODE", "unset")
    monkeypatch.delenv("NFTGATE_MODE")
    monkeypatch.setattr(env_mod, "_LOADED", False)

    assert env_mod.load_dotenv_if_present(str(dotenv)) is True
    assert os.environ["NFTGATE_MODE"] == "dev"
    assert os.environ["NFTGATE_LOG_LEVEL"] == "ERROR"
    assert env_mod.load_dotenv_if_present(str(dotenv)) is False


def test_dotenv_takes_only_gateway_and_aws_keys(monkeypatch, tmp_path) -> None:
    dotenv = tmp_path / ".env"
    dotenv.write_text(
        "NFTGATE_STORAGE_BACKEND=local\nAWS_REGION=eu-west-1\nDATABASE_URL=postgres://x\nNFTGATE_EMPTY\n",
        encoding="utf-8",
    )
    for key in ("NFTGATE_STORAGE_BACKEND", "AWS_REGION", "DATABASE_URL"):
        monkeypatch.setenv(key, "unset")
        monkeypatch.delenv(key)
    monkeypatch.setattr(env_mod, "_LOADED", False)

    assert env_mod.gateway_env_from_file(dotenv) == {
        "NFTGATE_STORAGE_BACKEND": "local",
        "AWS_REGION": "eu-west-1",
    }
    assert env_mod.load_dotenv_if_present(str(dotenv)) is True
    assert os.environ["NFTGATE_STORAGE_BACKEND"] == "local"
    assert os.environ["AWS_REGION"] == "eu-west-1"
    assert "DATABASE_URL" not in os.environ


def test_dotenv_missing_file_is_not_loaded(monkeypatch, tmp_path) -> None:
    monkeypatch.setattr(env_mod, "_LOADED", False)
    assert env_mod.load_dotenv_if_present(str(tmp_path / "absent.env")) is False


def test_error_taxonomy_codes() -> None:
    e = InvalidProperties("properties_not_json")
    assert isinstance(e, GatewayError)
    assert e.code == "invalid_argument"
    assert StorageUnavailable("x").code == "storage_unavailable"
    assert CorruptBlob("x", {"cid": "b"}).details == {"cid": "b"}
