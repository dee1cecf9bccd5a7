from fastapi import HTTPException, Request, status

from bugsync.models.sync import WebHookRequest
from bugsync.sync.bug_sync_manager import BugSyncManager
from bugsync.sync.sync_manager import SyncManager
from bugsync.utils.logger import errorLog

MODULE_NAME = "deps"


def _container(request: Request):
    container = getattr(request.app.state, "sync_container", None)
    if container is None:
        errorLog(MODULE_NAME, "Sync services requested before they were initialised")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sync services are not initialised",
        )
    return container


def get_sync_manager(request: Request) -> SyncManager:
    """Dependency für den allgemeinen SyncManager aus ``app.state``."""
    return _container(request).sync_manager


def get_bug_sync_manager(request: Request) -> BugSyncManager:
    return _container(request).bug_sync_manager


async def read_webhook_request(request: Request) -> WebHookRequest:
    """
    Übersetzt den eingehenden Starlette-Request in einen framework-neutralen WebHookRequest.
    Ein nicht parsebarer Body wird als None weitergereicht; der Empfänger lehnt ihn ab.
    """
    raw = await request.body()
    body = None
    if raw:
        try:
            body = await request.json()
        except ValueError:
            body = None
    return WebHookRequest(
        method=request.method,
        path=request.url.path,
        headers=dict(request.headers),
        body=body,
    )
