import asyncio
import itertools
from typing import Awaitable, Callable, Dict, Optional, Set

from bugsync.utils.logger import debugLog, errorLog

MODULE_NAME = "TaskScheduler"

TimerCallback = Callable[[], Awaitable[None]]


class TaskScheduler:
    """
    Verwaltet Timer als abbrechbare asyncio-Tasks, adressiert über Tokens.

    ``cancel(token)`` garantiert synchron, dass der Callback nicht mehr startet.
    Ein Callback, der bereits läuft, wird nicht abgebrochen (laufende Netzwerk-
    aufrufe dürfen zu Ende laufen); wiederkehrende Timer enden danach.
    """

    def __init__(self):
        self._tasks: Dict[int, asyncio.Task] = {}
        self._in_callback: Set[int] = set()
        self._tokens = itertools.count(1)

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    def is_active(self, token: Optional[int]) -> bool:
        return token is not None and token in self._tasks

    def call_later(self, delay_ms: int, callback: TimerCallback, name: str = "timer") -> int:
        token = next(self._tokens)
        self._tasks[token] = asyncio.create_task(self._run_later(token, delay_ms, callback, name), name=f"{name}-{token}")
        debugLog(MODULE_NAME, f"Scheduled one-shot timer '{name}'", details={"token": token, "delay_ms": delay_ms})
        return token

    def call_every(
        self,
        interval_ms: int,
        callback: TimerCallback,
        run_immediately: bool = False,
        name: str = "interval",
    ) -> int:
        token = next(self._tokens)
        self._tasks[token] = asyncio.create_task(
            self._run_every(token, interval_ms, callback, run_immediately, name), name=f"{name}-{token}"
        )
        debugLog(MODULE_NAME, f"Scheduled interval timer '{name}'", details={
            "token": token, "interval_ms": interval_ms, "run_immediately": run_immediately
        })
        return token

    def cancel(self, token: Optional[int]) -> bool:
        if token is None:
            return False
        task = self._tasks.pop(token, None)
        if task is None:
            return False
        if token not in self._in_callback:
            task.cancel()
        return True

    def cancel_all(self) -> None:
        for token in list(self._tasks):
            self.cancel(token)

    async def _invoke(self, token: int, callback: TimerCallback, name: str) -> None:
        self._in_callback.add(token)
        try:
            await callback()
        except Exception as e:
            errorLog(MODULE_NAME, f"Timer callback '{name}' raised", details={
                "token": token, "error": str(e), "error_type": type(e).__name__
            })
        finally:
            self._in_callback.discard(token)

    async def _run_later(self, token: int, delay_ms: int, callback: TimerCallback, name: str) -> None:
        await asyncio.sleep(delay_ms / 1000)
        if self._tasks.pop(token, None) is None:
            return
        await self._invoke(token, callback, name)

    async def _run_every(
        self, token: int, interval_ms: int, callback: TimerCallback, run_immediately: bool, name: str
    ) -> None:
        if run_immediately and token in self._tasks:
            await self._invoke(token, callback, name)
        while token in self._tasks:
            await asyncio.sleep(interval_ms / 1000)
            if token not in self._tasks:
                break
            await self._invoke(token, callback, name)
