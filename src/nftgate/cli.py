from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import sys
from pathlib import Path
from typing import List, Optional

from nftgate.config import GatewayConfig, load_gateway_config, normalize_gateway_base_url, normalize_storage_backend
from nftgate.entity.metadata import UploadRequest
from nftgate.entity.service import EntityGateway
from nftgate.env import load_dotenv_if_present
from nftgate.errors import GatewayError


def _read_file(path: Optional[str]) -> Optional[bytes]:
    if not path:
        return None
    return Path(path).expanduser().read_bytes()


def _parse_args(argv: List[str]) -> argparse.Namespace:
    ap = argparse.ArgumentParser(prog="nftgate", description="NFT entity upload and metadata gateway")
    ap.add_argument("--backend", dest="storage_backend", default=None, help="local | object-store | distributed-content-network | memory")
    ap.add_argument("--gateway-base-url", dest="gateway_base_url", default=None)
    ap.add_argument("--local-root", dest="local_root", default=None)

    sub = ap.add_subparsers(dest="command", required=True)

    up = sub.add_parser("upload", help="upload an entity and print the result JSON")
    up.add_argument("--name", required=True)
    up.add_argument("--description", default="")
    up.add_argument("--content", required=True, help="path of the content file")
    up.add_argument("--preview", default=None, help="path of the preview file")
    up.add_argument("--external-url", dest="external_url", default=None)
    up.add_argument("--background-color", dest="background_color", default=None)
    up.add_argument("--youtube-url", dest="youtube_url", default=None)
    up.add_argument("--attributes", default=None, help="JSON list of attribute objects")
    up.add_argument("--properties", default=None, help="JSON object")

    gm = sub.add_parser("get-metadata", help="print stored metadata for a hashId or metadata identifier")
    gm.add_argument("reference")
    gm.add_argument("--no-embed", dest="embed", action="store_false")

    sub.add_parser("serve", help="run the HTTP API (uvicorn)")

    return ap.parse_args(argv)


def _config(args: argparse.Namespace) -> GatewayConfig:
    cfg = load_gateway_config()
    overrides = {}
    if args.storage_backend:
        overrides["storage_backend"] = normalize_storage_backend(args.storage_backend)
    if args.gateway_base_url:
        overrides["gateway_base_url"] = normalize_gateway_base_url(args.gateway_base_url)
    if args.local_root:
        overrides["local_root"] = str(args.local_root)
    return dataclasses.replace(cfg, **overrides) if overrides else cfg


def _print_error(err: GatewayError) -> None:
    payload = {"ok": False, "error": {"code": err.code, "message": err.reason, "details": err.details}}
    print(json.dumps(payload, indent=2, default=str), file=sys.stderr)


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv_if_present()
    args = _parse_args(list(sys.argv[1:] if argv is None else argv))

    if args.command == "serve":
        from nftgate.api.__main__ import main as serve

        serve()
        return 0

    try:
        gateway = EntityGateway.from_config(_config(args))
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    except GatewayError as e:
        _print_error(e)
        return 1

    try:
        if args.command == "upload":
            try:
                content = _read_file(args.content) or b""
                preview = _read_file(args.preview)
            except OSError as e:
                print(f"ERROR: cannot read input file: {e}", file=sys.stderr)
                return 2
            req = UploadRequest(
                name=args.name,
                description=args.description,
                content=content,
                preview=preview,
                external_url=args.external_url,
                background_color=args.background_color,
                youtube_url=args.youtube_url,
                attributes=args.attributes,
                properties=args.properties,
            )
            result = asyncio.run(gateway.upload_entity(req))
            print(json.dumps({"ok": True, **result.to_json()}, indent=2, ensure_ascii=False))
            return 0

        view = asyncio.run(gateway.get_metadata(args.reference, embed=bool(args.embed)))
        print(json.dumps({"ok": True, **view.to_json()}, indent=2, ensure_ascii=False))
        return 0
    except GatewayError as e:
        _print_error(e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
