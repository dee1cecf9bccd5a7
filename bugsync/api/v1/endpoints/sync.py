from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from bugsync.api import deps
from bugsync.models.sync import SyncStrategy, WebHookRequest
from bugsync.sync.sync_manager import SyncManager
from bugsync.utils.logger import debugLog, errorLog, infoLog

MODULE_NAME = "SyncAPI"

router = APIRouter()


class StrategySwitchRequest(BaseModel):
    strategy: str


def error_response(message: str, error: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "message": message, "error": str(error)},
    )


@router.get("/status")
async def get_sync_status(manager: SyncManager = Depends(deps.get_sync_manager)):
    """Status aller Sync-Strategien."""
    try:
        return {"success": True, "data": manager.get_sync_status()}
    except Exception as e:
        errorLog(MODULE_NAME, "Error getting sync status", details={"error": str(e)})
        return error_response("Failed to get sync status", e)


@router.get("/history")
async def get_sync_history(
    table_name: Optional[str] = None,
    limit: int = 100,
    manager: SyncManager = Depends(deps.get_sync_manager),
):
    try:
        records = manager.get_sync_history(table_name=table_name, limit=limit)
        return {"success": True, "data": [record.model_dump(mode="json") for record in records]}
    except Exception as e:
        errorLog(MODULE_NAME, "Error getting sync history", details={"error": str(e), "table_name": table_name})
        return error_response("Failed to get sync history", e)


@router.post("/trigger")
async def trigger_sync(manager: SyncManager = Depends(deps.get_sync_manager)):
    try:
        result = await manager.trigger_sync()
        infoLog(MODULE_NAME, "Manual sync triggered", details={"strategy": manager.current_strategy})
        return {"success": True, "message": "Sync triggered", "data": result}
    except Exception as e:
        errorLog(MODULE_NAME, "Error triggering sync", details={"error": str(e)})
        return error_response("Failed to trigger sync", e)


@router.post("/strategy")
async def switch_strategy(
    payload: StrategySwitchRequest,
    manager: SyncManager = Depends(deps.get_sync_manager),
):
    try:
        strategy = SyncStrategy(payload.strategy)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid strategy: {payload.strategy}",
        )

    try:
        switched = manager.switch_strategy(strategy)
        message = f"Switched to {strategy.value} strategy" if switched else f"Strategy {strategy.value} already active"
        return {"success": True, "message": message, "data": {"currentStrategy": manager.current_strategy.value}}
    except Exception as e:
        errorLog(MODULE_NAME, f"Error switching strategy to {strategy.value}", details={"error": str(e)})
        return error_response("Failed to switch strategy", e)


@router.post("/webhook")
async def handle_webhook(
    webhook_request: WebHookRequest = Depends(deps.read_webhook_request),
    manager: SyncManager = Depends(deps.get_sync_manager),
):
    debugLog(MODULE_NAME, "WebHook received", details={"path": webhook_request.path})
    response = await manager.handle_webhook(webhook_request)
    return JSONResponse(status_code=response.statusCode, content=response.body)


@router.get("/metrics")
async def get_performance_metrics(manager: SyncManager = Depends(deps.get_sync_manager)):
    try:
        return {"success": True, "data": manager.get_performance_metrics()}
    except Exception as e:
        errorLog(MODULE_NAME, "Error getting performance metrics", details={"error": str(e)})
        return error_response("Failed to get performance metrics", e)


@router.get("/health")
async def health_check(manager: SyncManager = Depends(deps.get_sync_manager)):
    try:
        health = manager.get_health()
        status_code = status.HTTP_200_OK if health["isHealthy"] else status.HTTP_503_SERVICE_UNAVAILABLE
        return JSONResponse(status_code=status_code, content={"success": health["isHealthy"], "data": health})
    except Exception as e:
        errorLog(MODULE_NAME, "Error during sync health check", details={"error": str(e)})
        return error_response("Health check failed", e)


@router.post("/stop")
async def stop_sync(manager: SyncManager = Depends(deps.get_sync_manager)):
    try:
        manager.stop()
        return {"success": True, "message": "Sync stopped"}
    except Exception as e:
        errorLog(MODULE_NAME, "Error stopping sync", details={"error": str(e)})
        return error_response("Failed to stop sync", e)


@router.post("/restart")
async def restart_sync(manager: SyncManager = Depends(deps.get_sync_manager)):
    try:
        await manager.restart()
        return {"success": True, "message": "Sync restarted"}
    except Exception as e:
        errorLog(MODULE_NAME, "Error restarting sync", details={"error": str(e)})
        return error_response("Failed to restart sync", e)
