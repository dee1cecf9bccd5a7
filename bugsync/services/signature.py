"""
HMAC-Signaturen für ausgehende Requests an das Primärsystem und eingehende WebHooks.

Der signierte String lautet ``METHOD:PATH:TIMESTAMP:JSON(body)``. Signierer und
Prüfer müssen identisch kanonisieren, deshalb wird der Body hier (und nur hier)
serialisiert: kompaktes JSON in Einfügereihenfolge der Schlüssel, fehlender Body
wird zu ``{}``.
"""

import hashlib
import hmac
import json
import re
from typing import Any, Optional, Union

from bugsync import config
from bugsync.models.sync import SignatureContext
from bugsync.utils.time_utils import Clock, now_ms

DEFAULT_WINDOW_MS = 5 * 60 * 1000
_TIMESTAMP_PATTERN = re.compile(r"-?[0-9]+")


def canonical_json(body: Any) -> str:
    """Serialisiert den Body so, wie er signiert und übertragen wird."""
    if body is None or body == "":
        body = {}
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False)


def build_payload(ctx: SignatureContext) -> str:
    return f"{ctx.method.upper()}:{ctx.path}:{ctx.timestamp}:{canonical_json(ctx.body)}"


class SignatureCodec:
    def __init__(self, secret: str, window_ms: int = config.SIGNATURE_WINDOW_MS, clock: Clock = now_ms):
        self.secret = secret
        self.window_ms = window_ms
        self._clock = clock

    def context(self, method: str, path: str, timestamp: Union[str, int, None], body: Any = None) -> SignatureContext:
        return SignatureContext(method=method, path=path, timestamp=timestamp, body=body, secret=self.secret)

    def sign(self, ctx: SignatureContext) -> str:
        payload = build_payload(ctx)
        return hmac.new(ctx.secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()

    def verify(self, received: Optional[str], ctx: SignatureContext) -> bool:
        if not received:
            return False
        expected = self.sign(ctx)
        return hmac.compare_digest(received.encode("utf-8"), expected.encode("utf-8"))

    def is_expired(self, timestamp: Union[str, int, None]) -> bool:
        """True, wenn der Zeitstempel fehlt, nicht numerisch ist oder außerhalb des Fensters liegt."""
        ts = _parse_timestamp(timestamp)
        if ts is None:
            return True
        return abs(self._clock() - ts) > self.window_ms


def _parse_timestamp(timestamp: Union[str, int, None]) -> Optional[int]:
    if timestamp is None or isinstance(timestamp, bool):
        return None
    if isinstance(timestamp, int):
        return timestamp
    # Nur reine Unix-Millisekunden, keine Leerzeichen oder Unterstriche
    if not isinstance(timestamp, str) or not _TIMESTAMP_PATTERN.fullmatch(timestamp):
        return None
    return int(timestamp)


def generate_signature(method: str, path: str, timestamp: Union[str, int], body: Any, secret: str) -> str:
    return SignatureCodec(secret).sign(
        SignatureContext(method=method, path=path, timestamp=timestamp, body=body, secret=secret)
    )


def check_expired(timestamp: Union[str, int, None], window_ms: int = DEFAULT_WINDOW_MS) -> bool:
    return SignatureCodec("", window_ms=window_ms).is_expired(timestamp)
