from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from bugsync.api import deps
from bugsync.api.v1.endpoints.sync import error_response
from bugsync.models.sync import WebHookRequest
from bugsync.sync.bug_sync_manager import BugSyncManager
from bugsync.utils.logger import debugLog, errorLog, infoLog

MODULE_NAME = "BugSyncAPI"

router = APIRouter()


@router.get("/status")
async def get_bug_sync_status(manager: BugSyncManager = Depends(deps.get_bug_sync_manager)):
    try:
        return {"success": True, "data": manager.get_status()}
    except Exception as e:
        errorLog(MODULE_NAME, "Error getting bug sync status", details={"error": str(e)})
        return error_response("Failed to get sync status", e)


@router.post("/trigger")
async def trigger_bug_sync(manager: BugSyncManager = Depends(deps.get_bug_sync_manager)):
    """Führt sofort einen Polling-Zyklus für Bugs aus."""
    try:
        result = await manager.trigger_sync()
        infoLog(MODULE_NAME, "Manual bug sync finished", details={"syncedCount": result.syncedCount})
        return {"success": True, "message": "Bug sync triggered", "data": result.model_dump(mode="json")}
    except Exception as e:
        errorLog(MODULE_NAME, "Error triggering bug sync", details={"error": str(e)})
        return error_response("Failed to trigger sync", e)


@router.post("/webhook")
async def handle_bug_webhook(
    webhook_request: WebHookRequest = Depends(deps.read_webhook_request),
    manager: BugSyncManager = Depends(deps.get_bug_sync_manager),
):
    debugLog(MODULE_NAME, "Bug webhook received", details={"path": webhook_request.path})
    response = await manager.handle_webhook(webhook_request)
    return JSONResponse(status_code=response.statusCode, content=response.body)


@router.post("/stop")
async def stop_bug_sync(manager: BugSyncManager = Depends(deps.get_bug_sync_manager)):
    try:
        manager.stop()
        return {"success": True, "message": "Bug sync stopped"}
    except Exception as e:
        errorLog(MODULE_NAME, "Error stopping bug sync", details={"error": str(e)})
        return error_response("Failed to stop sync", e)


@router.post("/restart")
async def restart_bug_sync(manager: BugSyncManager = Depends(deps.get_bug_sync_manager)):
    try:
        await manager.restart()
        return {"success": True, "message": "Bug sync restarted"}
    except Exception as e:
        errorLog(MODULE_NAME, "Error restarting bug sync", details={"error": str(e)})
        return error_response("Failed to restart sync", e)


@router.get("/health")
async def bug_sync_health(manager: BugSyncManager = Depends(deps.get_bug_sync_manager)):
    try:
        health = manager.get_health()
        status_code = status.HTTP_200_OK if health["isHealthy"] else status.HTTP_503_SERVICE_UNAVAILABLE
        return JSONResponse(status_code=status_code, content={"success": health["isHealthy"], "data": health})
    except Exception as e:
        errorLog(MODULE_NAME, "Error during bug sync health check", details={"error": str(e)})
        return error_response("Health check failed", e)
