import asyncio
import logging
import weakref
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from api.metrics import metrics


logger = logging.getLogger(__name__)

INITIAL_SNAPSHOT = 'initialSnapshot'
PRICE_UPDATE = 'priceUpdate'
STATUS_UPDATE = 'statusUpdate'
NEW_TRANSACTION = 'newTransaction'

SnapshotProvider = Callable[[], Dict[str, Any]]


def build_message(event: str, data: Any) -> Dict[str, Any]:
    return {
        'type': event,
        'data': data,
        'timestamp': datetime.now(timezone.utc).isoformat(),
    }


class Broadcaster:
    """Fan out state messages to every connected subscriber.

    Subscribers are any handle exposing ``async send_json(message)``. The
    registry holds handles weakly and owns only a per-handle outbox queue; the
    transport keeps the connection alive and drains the outbox with ``pump``.

    A full outbox is flushed and restarted from a new ``initialSnapshot``, so
    the head of every outbox is always a snapshot or an update that follows
    one.
    """

    def __init__(self, snapshot_provider: SnapshotProvider, queue_size: int = 256):
        self._snapshot_provider = snapshot_provider
        self.queue_size = max(1, int(queue_size))
        self._outboxes: 'weakref.WeakKeyDictionary[Any, asyncio.Queue]' = weakref.WeakKeyDictionary()

    @property
    def subscriber_count(self) -> int:
        return len(self._outboxes)

    def subscribe(self, handle: Any) -> asyncio.Queue:
        # Snapshot capture and registration happen in one synchronous step, so
        # nothing published afterwards can overtake the initial snapshot.
        outbox: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        outbox.put_nowait(build_message(INITIAL_SNAPSHOT, self._snapshot_provider()))
        self._outboxes[handle] = outbox
        metrics.update_subscribers(self.subscriber_count)
        logger.info("Subscriber connected (%s active)", self.subscriber_count)
        return outbox

    def unsubscribe(self, handle: Any) -> None:
        if self._outboxes.pop(handle, None) is not None:
            metrics.update_subscribers(self.subscriber_count)
            logger.info("Subscriber disconnected (%s active)", self.subscriber_count)

    def is_subscribed(self, handle: Any) -> bool:
        return handle in self._outboxes

    def publish(self, event: str, data: Any) -> int:
        message = build_message(event, data)
        outboxes = list(self._outboxes.values())
        for outbox in outboxes:
            self._enqueue(outbox, message)
        metrics.record_broadcast(event, len(outboxes))
        return len(outboxes)

    def _enqueue(self, outbox: asyncio.Queue, message: Dict[str, Any]) -> None:
        if not outbox.full():
            outbox.put_nowait(message)
            return

        # Backlog is replaced by a fresh snapshot, which must stay at the head
        dropped = 0
        while not outbox.empty():
            outbox.get_nowait()
            dropped += 1
        metrics.record_dropped_message(dropped)
        logger.warning("Subscriber outbox full; dropped %s queued messages and resent snapshot", dropped)
        outbox.put_nowait(build_message(INITIAL_SNAPSHOT, self._snapshot_provider()))
        if not outbox.full():
            outbox.put_nowait(message)

    async def pump(self, handle: Any, outbox: Optional[asyncio.Queue] = None) -> None:
        """Forward queued messages to ``handle`` until it disconnects."""
        if outbox is None:
            outbox = self._outboxes.get(handle)
            if outbox is None:
                outbox = self.subscribe(handle)
        try:
            while self.is_subscribed(handle):
                message = await outbox.get()
                await handle.send_json(message)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.info("Stopped pushing to subscriber: %s", exc)
        finally:
            self.unsubscribe(handle)

    def close(self) -> None:
        self._outboxes.clear()
        metrics.update_subscribers(0)
