"""Lifecycle of one live session, owned by the host.

    lobby -> question_active(0) -> question_results(0) -> question_active(1)
          -> ... -> question_results(last) -> completed

``finish()`` completes from any open phase and ``close()`` hard-deletes the
session from any phase. The machine is the only writer of
``current_question_id`` and only moves its own phase after the store write
went through, so a failed write leaves every client where it was.
"""

import asyncio
import enum
import inspect
import logging
from typing import Any, Awaitable, Callable, List, Optional

from .errors import InvalidTransitionError, ValidationError
from .feed import current_task
from .models import SessionStatus
from .schemas import QuestionRecord, SessionRecord

logger = logging.getLogger(__name__)


class Phase(str, enum.Enum):
    LOBBY = "lobby"
    QUESTION_ACTIVE = "question_active"
    QUESTION_RESULTS = "question_results"
    COMPLETED = "completed"
    CLOSED = "closed"


TERMINAL_PHASES = (Phase.COMPLETED, Phase.CLOSED)


async def invoke(callback: Optional[Callable[..., Any]], *args) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class QuestionTimer:
    """Local per-question countdown, one tick per ``tick_seconds``."""

    def __init__(
        self,
        duration: int,
        on_tick: Optional[Callable[[int], Any]] = None,
        on_expire: Optional[Callable[[], Any]] = None,
        tick_seconds: float = 1.0,
    ):
        self.duration = duration
        self.remaining = duration
        self.on_tick = on_tick
        self.on_expire = on_expire
        self.tick_seconds = tick_seconds
        self._task: Optional[asyncio.Task] = None
        self._cancelled = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def expired(self) -> bool:
        return self.remaining <= 0 and not self._cancelled

    def start(self) -> "QuestionTimer":
        self._task = asyncio.get_running_loop().create_task(self._countdown())
        return self

    async def _countdown(self) -> None:
        try:
            while self.remaining > 0 and not self._cancelled:
                await invoke(self.on_tick, self.remaining)
                await asyncio.sleep(self.tick_seconds)
                self.remaining -= 1
            if not self._cancelled:
                await invoke(self.on_tick, 0)
                await invoke(self.on_expire)
        except asyncio.CancelledError:
            self._cancelled = True
            raise
        except Exception:
            logger.exception("Question timer callback failed")

    def cancel(self) -> None:
        self._cancelled = True
        # Never cancel the task we are running in (expiry handlers stop their own timer)
        if self._task is not None and not self._task.done() and self._task is not current_task():
            self._task.cancel()


class SessionStateMachine:
    def __init__(self, sessions, session: SessionRecord, questions: List[QuestionRecord]):
        self.sessions = sessions
        self.session = session
        self.questions = list(questions)
        self.phase = Phase.LOBBY
        self.current_index: Optional[int] = None
        self._lock = asyncio.Lock()
        self._listeners: List[Callable[["SessionStateMachine"], Awaitable[None]]] = []

    @classmethod
    async def load(cls, sessions, quizzes, session_id: int) -> "SessionStateMachine":
        """Rebuild the machine from the session row, e.g. after a host reconnect."""
        session = await sessions.require_session(session_id)
        questions = await quizzes.get_questions(session.quiz_id)
        machine = cls(sessions, session, questions)

        if session.status == SessionStatus.COMPLETED:
            machine.phase = Phase.COMPLETED
        elif session.current_question_id is not None:
            index = machine.index_of(session.current_question_id)
            if index is not None:
                # The countdown is local and cannot be resumed; show the reveal instead
                machine.current_index = index
                machine.phase = Phase.QUESTION_RESULTS
        return machine

    # --- observers ---

    def add_listener(self, listener: Callable[["SessionStateMachine"], Awaitable[None]]) -> None:
        self._listeners.append(listener)

    async def _notify(self) -> None:
        for listener in list(self._listeners):
            await invoke(listener, self)

    def _enter(self, phase: Phase, index: Optional[int] = None) -> None:
        logger.info(
            "Session %s: %s -> %s%s",
            self.session.id,
            self.phase.value,
            phase.value,
            f" (question {index + 1}/{self.question_count})" if index is not None else "",
        )
        self.phase = phase
        if index is not None:
            self.current_index = index

    # --- derived state ---

    @property
    def question_count(self) -> int:
        return len(self.questions)

    @property
    def current_question(self) -> Optional[QuestionRecord]:
        if self.current_index is None:
            return None
        return self.questions[self.current_index]

    @property
    def is_last_question(self) -> bool:
        return self.current_index is not None and self.current_index >= self.question_count - 1

    @property
    def has_next(self) -> bool:
        return self.current_index is not None and self.current_index + 1 < self.question_count

    @property
    def can_start(self) -> bool:
        return self.phase == Phase.LOBBY and self.question_count > 0

    @property
    def can_reveal(self) -> bool:
        return self.phase == Phase.QUESTION_ACTIVE

    @property
    def can_advance(self) -> bool:
        return self.phase == Phase.QUESTION_RESULTS

    @property
    def can_finish(self) -> bool:
        return self.phase not in TERMINAL_PHASES

    def index_of(self, question_id: int) -> Optional[int]:
        for index, question in enumerate(self.questions):
            if question.id == question_id:
                return index
        return None

    # --- transitions ---

    async def _ask(self, index: int) -> None:
        question = self.questions[index]
        # Single write every participant watches for
        self.session = await self.sessions.set_current_question(self.session.id, question.id)
        self._enter(Phase.QUESTION_ACTIVE, index)

    async def start(self) -> QuestionRecord:
        async with self._lock:
            if self.phase != Phase.LOBBY:
                raise InvalidTransitionError("The quiz has already started")
            if not self.questions:
                raise InvalidTransitionError("No questions available")
            await self._ask(0)
        await self._notify()
        return self.current_question

    async def reveal(self) -> None:
        async with self._lock:
            if self.phase != Phase.QUESTION_ACTIVE:
                raise InvalidTransitionError("No question is currently active")
            self._enter(Phase.QUESTION_RESULTS)
        await self._notify()

    async def next_question(self) -> Optional[QuestionRecord]:
        async with self._lock:
            if self.phase != Phase.QUESTION_RESULTS:
                raise InvalidTransitionError("Reveal the results before moving on")
            if self.has_next:
                await self._ask(self.current_index + 1)
                finished = False
            else:
                await self._complete()
                finished = True
        await self._notify()
        return None if finished else self.current_question

    async def _complete(self) -> None:
        self.session = await self.sessions.complete_session(self.session.id)
        self._enter(Phase.COMPLETED)

    async def finish(self) -> None:
        async with self._lock:
            if self.phase in TERMINAL_PHASES:
                raise InvalidTransitionError("The quiz has already ended")
            await self._complete()
        await self._notify()

    async def close(self, confirm: bool = False) -> None:
        if not confirm:
            raise ValidationError(
                "Ending the session removes all participants and responses permanently. Please confirm."
            )
        async with self._lock:
            if self.phase == Phase.CLOSED:
                raise InvalidTransitionError("The session is already closed")
            await self.sessions.close_session(self.session.id)
            self._enter(Phase.CLOSED)
        await self._notify()

    def mark_closed(self) -> None:
        """The session row disappeared from under us (janitor or another host tab)."""
        if self.phase != Phase.CLOSED:
            self._enter(Phase.CLOSED)
