import time
from datetime import datetime, timezone
from typing import Callable, Optional

# Uhr-Signatur: liefert die aktuelle Zeit in Millisekunden seit Epoch
Clock = Callable[[], int]


def now_ms() -> int:
    return int(time.time() * 1000)


def ms_to_datetime(value_ms: Optional[int]) -> Optional[datetime]:
    """Wandelt Millisekunden seit Epoch in ein UTC-Datetime um (None bleibt None)."""
    if value_ms is None:
        return None
    return datetime.fromtimestamp(value_ms / 1000, tz=timezone.utc)
