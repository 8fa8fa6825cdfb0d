# src/tickerwatch/alerts/notifiers.py
from __future__ import annotations
import asyncio
import structlog
from typing import Iterable, Protocol

log = structlog.get_logger("notifier")

class Notifier(Protocol):
    async def send(self, message: str) -> bool: ...

class ConsoleNotifier:
    async def send(self, message: str) -> bool:
        print(message, flush=True)
        return True

class NotifierRouter:
    """
    Fan one message out to several notifiers. Best effort: each failure is
    logged and reported as False, nothing is raised or retried here.
    """
    def __init__(self, notifiers: Iterable[Notifier] = ()):
        self.notifiers = list(notifiers)

    def add(self, notifier: Notifier) -> None:
        self.notifiers.append(notifier)

    async def send(self, message: str) -> bool:
        if not self.notifiers:
            return False
        results = await asyncio.gather(
            *(n.send(message) for n in self.notifiers), return_exceptions=True
        )
        ok = True
        for n, r in zip(self.notifiers, results):
            if isinstance(r, BaseException) or r is not True:
                ok = False
                log.warning("notifier_send_failed", notifier=type(n).__name__,
                            err=str(r) if isinstance(r, BaseException) else None)
        return ok
