import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from .errors import LiveQuizError
from .feed import ChangeEvent, ChangeFeed, Collection, Subscription, current_task

logger = logging.getLogger(__name__)

Reload = Callable[[Optional[Collection]], Awaitable[None]]

# What a session view listens to, and which column ties the row to the session
WATCHED = (
    (Collection.SESSIONS, "id"),
    (Collection.PARTICIPANTS, "session_id"),
    (Collection.RESPONSES, "session_id"),
)


class SessionWatch:
    """Feed subscriptions plus a slow reconciliation poll for one session.

    Events only say *which* aggregate changed; ``reload`` re-reads it from the
    store, so a dropped or reordered event is repaired by the next event or
    the next poll.
    """

    def __init__(self, feed: ChangeFeed, session_id: int, reload: Reload, poll_interval: Optional[float] = None):
        self.feed = feed
        self.session_id = session_id
        self.reload = reload
        self.poll_interval = poll_interval
        self._subscriptions: List[Subscription] = []
        self._poll_task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> "SessionWatch":
        for collection, key in WATCHED:
            self._subscriptions.append(
                self.feed.subscribe(collection, {key: self.session_id}, self._on_event)
            )
        if self.poll_interval:
            self._poll_task = asyncio.get_running_loop().create_task(self._poll())
        logger.debug("Watching session %s", self.session_id)
        return self

    async def _on_event(self, event: ChangeEvent) -> None:
        if self._closed:
            return
        await self.reload(event.collection)

    async def _poll(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.poll_interval)
            if self._closed:
                break
            try:
                await self.reload(None)
            except LiveQuizError as e:
                logger.warning("Periodic refresh of session %s failed: %s", self.session_id, e.message)
            except Exception:
                logger.exception("Periodic refresh of session %s failed", self.session_id)

    def close(self) -> None:
        """Stop delivery. Safe to call from inside ``reload``."""
        if self._closed:
            return
        self._closed = True
        for subscription in self._subscriptions:
            subscription.close()
        self._subscriptions.clear()
        if self._poll_task is not None and self._poll_task is not current_task():
            self._poll_task.cancel()
        logger.debug("Stopped watching session %s", self.session_id)

    async def __aenter__(self) -> "SessionWatch":
        return self.start()

    async def __aexit__(self, *exc) -> None:
        self.close()


class FanOut:
    def __init__(self, feed: ChangeFeed):
        self.feed = feed

    def watch(self, session_id: int, reload: Reload, poll_interval: Optional[float] = None) -> SessionWatch:
        return SessionWatch(self.feed, session_id, reload, poll_interval)
