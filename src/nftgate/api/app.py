from __future__ import annotations

import os
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from nftgate.api.errors import ApiError
from nftgate.api.routes_entity import router as entity_router
from nftgate.api.routes_ops import router as ops_router
from nftgate.api.security import RequestSizeLimitMiddleware
from nftgate.api.structured_logging import RequestLogMiddleware
from nftgate.config import GatewayConfig, load_gateway_config
from nftgate.entity.service import EntityGateway
from nftgate.errors import GatewayError


def build_gateway(cfg: GatewayConfig) -> EntityGateway:
    """Build the EntityGateway for API runtime.

    This wrapper exists so tests can monkeypatch `nftgate.api.app.build_gateway`
    without reaching into storage modules.
    """
    return EntityGateway.from_config(cfg)


def _parse_cors_origins(mode: str) -> List[str]:
    """Parse CORS origins with production-safe defaults.

    Policy:
      - If NFTGATE_CORS_ORIGINS is unset/empty -> CORS disabled (fail-closed)
      - Wildcard "*" is rejected in NFTGATE_MODE=prod
    """
    raw = os.environ.get("NFTGATE_CORS_ORIGINS", "").strip()
    if not raw:
        return []

    origins = [o.strip() for o in raw.split(",") if o.strip()]

    if "*" in origins:
        if mode == "prod":
            raise RuntimeError(
                "Unsafe CORS configuration: wildcard '*' not allowed in production. "
                "Set explicit origins in NFTGATE_CORS_ORIGINS."
            )
        return ["*"]

    return origins


async def _api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_json())


async def _gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    api_err = ApiError.from_gateway_error(exc)
    return JSONResponse(status_code=api_err.status_code, content=api_err.to_json())


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [{"loc": [str(p) for p in err.get("loc", ())], "msg": str(err.get("msg", ""))} for err in exc.errors()[:10]]
    api_err = ApiError.bad_request("invalid_argument", "request_validation_failed", {"errors": errors})
    return JSONResponse(status_code=api_err.status_code, content=api_err.to_json())


def create_app(*, gateway: Optional[EntityGateway] = None, cfg: Optional[GatewayConfig] = None) -> FastAPI:
    """Create the FastAPI application.

    gateway:
      - None (default): build from configuration via build_gateway()
      - an EntityGateway: attach as-is (tests inject in-memory stores)
    """
    cfg = cfg or load_gateway_config()

    # Disable docs in production.
    if cfg.mode == "prod":
        app = FastAPI(title="nftgate", docs_url=None, redoc_url=None, openapi_url=None)
    else:
        app = FastAPI(title="nftgate")

    app.state.cfg = cfg
    app.state.gateway = gateway if gateway is not None else build_gateway(cfg)

    app.add_exception_handler(ApiError, _api_error_handler)
    app.add_exception_handler(GatewayError, _gateway_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)

    # --- Middleware ---
    # Request size limiter sits inside the logger so refusals are logged too.
    app.add_middleware(RequestSizeLimitMiddleware, **RequestSizeLimitMiddleware.options_for(cfg))
    app.add_middleware(RequestLogMiddleware)

    # CORS (explicit allowlist only by default).
    cors_origins = _parse_cors_origins(cfg.mode)
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=cors_origins != ["*"],
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type"],
        )

    # --- Routers ---
    app.include_router(entity_router, prefix="/v1", tags=["entity"])
    app.include_router(ops_router, prefix="/v1", tags=["ops"])

    return app
