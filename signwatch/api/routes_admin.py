from fastapi import APIRouter, Depends, Header, HTTPException, Request

from signwatch.api.deps import get_runtime
from signwatch.core.errors import ReplayAbortedError
from signwatch.services.runtime import Runtime

router = APIRouter()


@router.get("/_debug/alerts")
async def list_recent_alerts(request: Request, limit: int = 50):
    notifier = getattr(request.app.state, "notifier", None)
    if notifier is None:
        return []
    return notifier.recent(limit=limit)


@router.post("/_admin/replay")
async def trigger_replay(
    x_debug_admin: str = Header(None, alias="X-Debug-Admin"),
    runtime: Runtime = Depends(get_runtime),
):
    if x_debug_admin != "1":
        raise HTTPException(status_code=403, detail="admin header required")
    try:
        report = await runtime.replay().run()
    except ReplayAbortedError as e:
        raise HTTPException(status_code=409, detail=e.to_dict())
    return {"ok": True, "report": report.__dict__}
