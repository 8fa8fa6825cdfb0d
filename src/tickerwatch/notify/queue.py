from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from tickerwatch.utils.time import utc_now_s


@dataclass(frozen=True, slots=True)
class OutgoingAlert:
    instrument: str
    text: str
    queued_at: float = field(default_factory=utc_now_s)


@dataclass(slots=True)
class QueueStats:
    queued: int = 0
    dropped: int = 0
    taken: int = 0        # handed to a sender, whatever the sender then reports


class NotifyQueue:
    """
    Bounded hand-off between the evaluation path and the notifier worker.
    offer() never blocks: when full the alert is dropped and counted, so a
    stuck sender can't back up tick processing.
    """
    def __init__(self, maxsize: int = 200):
        self._q: asyncio.Queue[OutgoingAlert] = asyncio.Queue(maxsize=maxsize)
        self.stats = QueueStats()

    def offer(self, alert: OutgoingAlert) -> bool:
        if self._q.full():
            self.stats.dropped += 1
            return False
        self._q.put_nowait(alert)
        self.stats.queued += 1
        return True

    async def take(self) -> OutgoingAlert:
        alert = await self._q.get()
        self.stats.taken += 1
        return alert

    def __len__(self) -> int:
        return self._q.qsize()
