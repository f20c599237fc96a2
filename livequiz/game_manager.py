import asyncio
import logging
from collections import defaultdict
from datetime import timedelta
from typing import Any, Callable, Dict, Optional, Set, Tuple

from fastapi import WebSocket

from .blobs import BlobStore, LocalBlobStore
from .database import SessionLocal
from .fanout import FanOut
from .feed import ChangeFeed
from .ledger import ScoringLedger
from .quizzes import QuizService
from .responses import ResponsesService
from .sessions import SessionService
from .store import SessionStore
from .views import HostControlView, ParticipantPlayView

logger = logging.getLogger(__name__)


class GameManager:
    """Wires the session engine together and keeps the live views per session."""

    def __init__(self, session_factory=None, blobs: Optional[BlobStore] = None, tick_seconds: float = 1.0):
        self.feed = ChangeFeed()
        self.store = SessionStore(session_factory or SessionLocal, self.feed)
        self.quizzes = QuizService(self.store, blobs or LocalBlobStore())
        self.sessions = SessionService(self.store, self.quizzes)
        self.ledger = ScoringLedger(self.store)
        self.responses = ResponsesService(self.store, self.quizzes, self.ledger)
        self.fanout = FanOut(self.feed)
        self.tick_seconds = tick_seconds

        self.host_views: Dict[int, HostControlView] = {}
        self.player_views: Dict[Tuple[int, int], ParticipantPlayView] = {}
        self.connections: Dict[int, Set[WebSocket]] = defaultdict(set)
        self._janitor: Optional[asyncio.Task] = None

    # --- views ---

    async def open_host(self, session_id: int, on_update: Callable[[Any], Any] = None) -> HostControlView:
        # One writer per session: a new host connection takes over from the old one
        previous = self.host_views.pop(session_id, None)
        if previous is not None:
            logger.info("Host reconnected to session %s, replacing previous view", session_id)
            previous.close()

        view = HostControlView(
            self.sessions,
            self.quizzes,
            self.responses,
            self.fanout,
            session_id,
            tick_seconds=self.tick_seconds,
            on_update=on_update,
        )
        await view.open()
        self.host_views[session_id] = view
        return view

    def get_host(self, session_id: int) -> Optional[HostControlView]:
        return self.host_views.get(session_id)

    def release_host(self, session_id: int, view: HostControlView) -> None:
        view.close()
        if self.host_views.get(session_id) is view:
            del self.host_views[session_id]

    async def open_player(
        self, session_id: int, participant_id: int, on_update: Callable[[Any], Any] = None
    ) -> ParticipantPlayView:
        key = (session_id, participant_id)
        previous = self.player_views.pop(key, None)
        if previous is not None:
            previous.close()

        view = ParticipantPlayView(
            self.sessions,
            self.quizzes,
            self.responses,
            self.fanout,
            session_id,
            participant_id,
            tick_seconds=self.tick_seconds,
            on_update=on_update,
        )
        await view.open()
        self.player_views[key] = view
        return view

    def release_player(self, session_id: int, participant_id: int, view: ParticipantPlayView) -> None:
        view.close()
        key = (session_id, participant_id)
        if self.player_views.get(key) is view:
            del self.player_views[key]

    # --- connections ---

    def connect(self, session_id: int, websocket: WebSocket) -> None:
        self.connections[session_id].add(websocket)

    def disconnect(self, session_id: int, websocket: WebSocket) -> None:
        sockets = self.connections.get(session_id)
        if sockets is None:
            return
        sockets.discard(websocket)
        if not sockets:
            del self.connections[session_id]

    async def broadcast(self, session_id: int, message: dict) -> None:
        for websocket in list(self.connections.get(session_id, ())):
            try:
                await websocket.send_json(message)
            except Exception as e:
                # Receive loop of that socket cleans up after itself
                logger.debug("Dropping message to a closed socket in session %s: %s", session_id, e)

    # --- background work ---

    def start_janitor(self, interval: float = None, stale_after: timedelta = None) -> asyncio.Task:
        if self._janitor is None or self._janitor.done():
            self._janitor = asyncio.get_running_loop().create_task(self.sessions.run_janitor(interval, stale_after))
        return self._janitor

    async def shutdown(self) -> None:
        if self._janitor is not None:
            self._janitor.cancel()
            try:
                await self._janitor
            except asyncio.CancelledError:
                pass
            self._janitor = None
        for view in list(self.host_views.values()) + list(self.player_views.values()):
            view.close()
        self.host_views.clear()
        self.player_views.clear()
        self.feed.close_all()


game_manager = GameManager()


def get_manager() -> GameManager:
    return game_manager
