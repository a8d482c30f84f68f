from __future__ import annotations

from fastapi import APIRouter, Request, Response

from nftgate.metrics import format_prometheus, metrics_enabled


router = APIRouter()


@router.get("/health")
def health(request: Request) -> dict:
    # health must never crash: best-effort telemetry only
    gw = getattr(request.app.state, "gateway", None)
    cfg = getattr(request.app.state, "cfg", None)
    return {
        "ok": gw is not None,
        "storage_backend": getattr(getattr(gw, "store", None), "backend", None),
        "gateway_base_url": getattr(getattr(gw, "resolver", None), "base_url", None),
        "mode": getattr(cfg, "mode", None),
    }


@router.get("/metrics")
def metrics() -> Response:
    """Prometheus-style metrics.

    Disabled by default. Enable with:
      NFTGATE_METRICS_ENABLED=1
    """
    if not metrics_enabled():
        return Response(status_code=404, content="not_found\n", media_type="text/plain")
    return Response(content=format_prometheus(), media_type="text/plain")
