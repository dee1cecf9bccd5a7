from datetime import datetime
from typing import Any, Dict, List, Optional

from bugsync.models.sync import BugResolution
from bugsync.services.upstream_client import UpstreamClient


class BugService:
    """Bug-Endpunkte des Primärsystems."""

    def __init__(self, client: UpstreamClient):
        self.client = client

    async def get_bugs(
        self,
        page: int = 1,
        page_size: int = 10,
        modified_since: Optional[datetime] = None,
        timestamp_field: Optional[str] = None,
    ) -> Dict[str, Any]:
        query: Dict[str, Any] = {"page": page, "pageSize": page_size}
        if modified_since is not None:
            query["lastModified"] = modified_since.isoformat()
            if timestamp_field:
                query["timestampField"] = timestamp_field
        return await self.client.post("/bugs/getbugs", query)

    async def get_bug_detail(self, bug_id: str) -> Any:
        return await self.client.get(f"/bugs/{bug_id}")

    async def resolve_bug(self, bug_id: str, resolution: BugResolution) -> Any:
        return await self.client.post(f"/bugs/{bug_id}/resolve", resolution.model_dump(mode="json", exclude_none=True))

    async def batch_resolve_bugs(self, bug_ids: List[str], resolution: BugResolution) -> Any:
        return await self.client.post("/bugs/batch/resolve", {
            "bugIds": bug_ids,
            "resolutionData": resolution.model_dump(mode="json", exclude_none=True),
        })


def page_items(page: Any) -> List[Any]:
    """Extrahiert die Items aus einer Seitenantwort; unbekannte Formen ergeben eine leere Seite."""
    if isinstance(page, dict):
        items = page.get("items")
        if items is None and isinstance(page.get("data"), dict):
            items = page["data"].get("items")
        return list(items) if isinstance(items, list) else []
    if isinstance(page, list):
        return page
    return []
