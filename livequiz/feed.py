"""In-process change feed over the session store's collections.

Every committed write in the store publishes one ``ChangeEvent`` per affected
row. Subscribers register an equality filter and a callback; each
subscription drains its own queue from its own task, so a slow view never
holds up the writer or the other views.
"""

from __future__ import annotations

import asyncio
import enum
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Union

logger = logging.getLogger(__name__)


class Collection(str, enum.Enum):
    QUIZZES = "quizzes"
    QUESTIONS = "questions"
    ANSWERS = "answers"
    SESSIONS = "sessions"
    PARTICIPANTS = "session_participants"
    RESPONSES = "responses"


class EventType(str, enum.Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class ChangeEvent:
    collection: Collection
    event_type: EventType
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None

    @property
    def row(self) -> Dict[str, Any]:
        return self.after if self.after is not None else (self.before or {})


EventHandler = Callable[[ChangeEvent], Union[None, Awaitable[None]]]


def current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


def matches(filters: Dict[str, Any], event: ChangeEvent) -> bool:
    for row in (event.after, event.before):
        if row is not None and all(row.get(key) == value for key, value in filters.items()):
            return True
    return False


class Subscription:
    """Handle for one subscriber; closing it stops delivery and frees its task."""

    def __init__(self, feed: "ChangeFeed", collection: Collection, filters: Dict[str, Any], on_event: EventHandler):
        self.feed = feed
        self.collection = collection
        self.filters = dict(filters)
        self.on_event = on_event
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._pending = 0
        self._task = asyncio.get_running_loop().create_task(self._pump())

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._pending

    def offer(self, event: ChangeEvent) -> None:
        if not self._closed and event.collection == self.collection and matches(self.filters, event):
            self._pending += 1
            self._queue.put_nowait(event)

    async def _pump(self) -> None:
        while not self._closed:
            event = await self._queue.get()
            try:
                if not self._closed:
                    result = self.on_event(event)
                    if inspect.isawaitable(result):
                        await result
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Subscriber on %s failed to handle %s event", self.collection.value, event.event_type.value)
            finally:
                self._pending -= 1
                self._queue.task_done()

    async def drain(self) -> None:
        """Wait until every event queued so far has been handled."""
        if not self._closed:
            await self._queue.join()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.feed._discard(self)
        # A handler closing its own subscription lets the pump loop end on its own
        if self._task is not current_task():
            self._task.cancel()
        # Release anyone waiting in drain()
        while not self._queue.empty():
            self._queue.get_nowait()
            self._pending -= 1
            self._queue.task_done()

    async def aclose(self) -> None:
        self.close()
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()


class ChangeFeed:
    def __init__(self):
        self._subscriptions: list[Subscription] = []

    def subscribe(self, collection: Collection, filters: Dict[str, Any], on_event: EventHandler) -> Subscription:
        subscription = Subscription(self, collection, filters, on_event)
        self._subscriptions.append(subscription)
        logger.debug("Subscribed to %s %s", collection.value, filters)
        return subscription

    def publish(self, event: ChangeEvent) -> None:
        for subscription in list(self._subscriptions):
            subscription.offer(event)

    def _discard(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def wait_idle(self, rounds: int = 5) -> None:
        """Drain all subscribers; handlers that publish again are followed for a few rounds.

        Test hook: lets a test step past the fan-out deterministically. Live
        code never waits on the feed.
        """
        for _ in range(rounds):
            pending = [s for s in self._subscriptions if s.pending]
            if not pending:
                return
            await asyncio.gather(*(s.drain() for s in pending))

    def close_all(self) -> None:
        for subscription in list(self._subscriptions):
            subscription.close()
