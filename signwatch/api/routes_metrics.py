from fastapi import APIRouter, Response, Request
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from signwatch.metrics import METRICS_REGISTRY

router = APIRouter()


@router.get("/metrics")
async def metrics(request: Request):
    # app.state'e sabitlenen registry'yi eksport et
    sm = getattr(request.app.state, "signwatch_metrics", None)
    reg = sm["registry"] if isinstance(sm, dict) and "registry" in sm else METRICS_REGISTRY
    return Response(content=generate_latest(reg), media_type=CONTENT_TYPE_LATEST)
