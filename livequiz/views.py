"""Headless host and participant views of a live session.

Both views are read models kept fresh by the fan-out (feed events plus a slow
poll) and expose ``snapshot()`` dicts for the websocket layer. The host view
is the only one that drives the state machine; participant views follow
``current_question_id`` and ``status`` on the session row.
"""

import abc
import asyncio
import enum
import logging
from typing import Any, Callable, Dict, List, Optional

from .core import config
from .errors import InvalidTransitionError, LiveQuizError, StaleReferenceError
from .fanout import FanOut, SessionWatch
from .feed import Collection
from .models import QuestionType, SessionStatus
from .quizzes import QuizService
from .responses import ResponsesService
from .schemas import (
    LeaderboardEntry,
    ParticipantRecord,
    QuestionRecord,
    ResponseRecord,
    SessionRecord,
)
from .sessions import SessionService, build_leaderboard, is_active_participant
from .state_machine import Phase, QuestionTimer, SessionStateMachine, invoke

logger = logging.getLogger(__name__)

SESSION_ENDED_NOTICE = "Session ended by host."
REMOVED_NOTICE = "You are no longer part of this session."


class PlayPhase(str, enum.Enum):
    LOBBY = "lobby"
    QUESTION_ACTIVE = "question_active"
    QUESTION_RESULTS = "question_results"
    COMPLETED = "completed"
    ENDED = "ended"


def _dump(record) -> Optional[Dict[str, Any]]:
    return record.model_dump(mode="json") if record is not None else None


class _SessionView(abc.ABC):
    poll_interval: float

    def __init__(
        self,
        sessions: SessionService,
        quizzes: QuizService,
        responses: ResponsesService,
        fanout: FanOut,
        session_id: int,
        poll_interval: Optional[float] = None,
        tick_seconds: float = 1.0,
        on_update: Optional[Callable[["_SessionView"], Any]] = None,
    ):
        self.sessions = sessions
        self.quizzes = quizzes
        self.responses = responses
        self.fanout = fanout
        self.session_id = session_id
        self.poll_interval = poll_interval if poll_interval is not None else self.poll_interval
        self.tick_seconds = tick_seconds
        self.on_update = on_update

        self.participants: List[ParticipantRecord] = []
        self.timer: Optional[QuestionTimer] = None
        self.time_left: Optional[int] = None
        self._watch: Optional[SessionWatch] = None
        self._reload_lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._watch is not None and not self._watch.closed

    @property
    def active_participants(self) -> List[ParticipantRecord]:
        return [p for p in self.participants if is_active_participant(p)]

    @property
    def leaderboard(self) -> List[LeaderboardEntry]:
        return build_leaderboard(self.participants)

    def _start_watch(self) -> None:
        self._watch = self.fanout.watch(self.session_id, self.reload, self.poll_interval).start()

    def _start_timer(self, duration: int, on_expire: Callable[[], Any]) -> None:
        self._stop_timer()
        self.time_left = duration
        self.timer = QuestionTimer(duration, self._on_tick, on_expire, tick_seconds=self.tick_seconds).start()

    def _stop_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None

    async def _on_tick(self, remaining: int) -> None:
        self.time_left = remaining
        await self._emit()

    async def _emit(self) -> None:
        try:
            await invoke(self.on_update, self)
        except Exception:
            logger.exception("Update callback for session %s failed", self.session_id)

    @abc.abstractmethod
    async def open(self) -> "_SessionView":
        """Load the initial state and start following the session."""

    @abc.abstractmethod
    async def reload(self, collection: Optional[Collection] = None) -> None:
        """Refresh after a feed event on ``collection``, or everything on a poll."""

    @abc.abstractmethod
    def snapshot(self) -> Dict[str, Any]:
        """JSON-ready state pushed to the client."""

    def close(self) -> None:
        """Stop listening; synchronous so it can be called from an update handler."""
        self._stop_timer()
        if self._watch is not None:
            self._watch.close()

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, *exc) -> None:
        self.close()


class HostControlView(_SessionView):
    """The host's control surface: the state machine plus live tallies."""

    poll_interval = config.HOST_POLL_SECONDS

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.machine: Optional[SessionStateMachine] = None
        self.current_responses: List[ResponseRecord] = []

    async def open(self) -> "HostControlView":
        self.machine = await SessionStateMachine.load(self.sessions, self.quizzes, self.session_id)
        self.machine.add_listener(self._on_transition)
        self.participants = await self.sessions.get_participants(self.session_id)
        await self._load_responses()
        self._start_watch()
        logger.info("Host view opened for session %s in phase %s", self.session_id, self.machine.phase.value)
        await self._emit()
        return self

    # --- state ---

    @property
    def phase(self) -> Phase:
        return self.machine.phase

    @property
    def session(self) -> SessionRecord:
        return self.machine.session

    @property
    def current_question(self) -> Optional[QuestionRecord]:
        return self.machine.current_question

    @property
    def answered_count(self) -> int:
        active = {p.id for p in self.active_participants}
        return len({r.participant_id for r in self.current_responses if r.participant_id in active})

    @property
    def all_answered(self) -> bool:
        # Advisory only; the host still decides when to reveal
        active = self.active_participants
        return bool(active) and self.answered_count >= len(active)

    def actions(self) -> Dict[str, bool]:
        machine = self.machine
        return {
            "start": machine.can_start and bool(self.active_participants),
            "reveal": machine.can_reveal,
            "next_question": machine.can_advance,
            "finish": machine.can_finish,
            "end_session": machine.phase != Phase.CLOSED,
        }

    # --- refresh ---

    async def _load_responses(self) -> None:
        question = self.current_question
        if question is None:
            self.current_responses = []
        else:
            self.current_responses = await self.responses.get_question_responses(self.session_id, question.id)

    async def reload(self, collection: Optional[Collection] = None) -> None:
        if self.machine is None or self.machine.phase == Phase.CLOSED:
            return
        async with self._reload_lock:
            if collection in (None, Collection.SESSIONS):
                session = await self.sessions.get_session(self.session_id)
                if session is None:
                    logger.info("Session %s disappeared, closing host view", self.session_id)
                    self.machine.mark_closed()
                    self.close()
                    await self._emit()
                    return
                self.machine.session = session
            if collection in (None, Collection.PARTICIPANTS):
                self.participants = await self.sessions.get_participants(self.session_id)
            if collection in (None, Collection.RESPONSES):
                await self._load_responses()
        await self._emit()

    async def _on_transition(self, machine: SessionStateMachine) -> None:
        self._stop_timer()
        self.time_left = None
        if machine.phase == Phase.CLOSED:
            self.close()
        else:
            await self._load_responses()
            if machine.phase == Phase.QUESTION_ACTIVE:
                self._start_timer(machine.current_question.time_limit_seconds, self._on_expire)
        await self._emit()

    async def _on_expire(self) -> None:
        if self.machine.can_reveal:
            logger.info("Time is up on question %s in session %s", self.current_question.id, self.session_id)
            await self.machine.reveal()

    # --- host intents ---

    async def start(self) -> QuestionRecord:
        return await self.machine.start()

    async def reveal(self) -> None:
        """Show results now instead of waiting for the countdown."""
        await self.machine.reveal()

    async def next_question(self) -> Optional[QuestionRecord]:
        return await self.machine.next_question()

    async def finish(self) -> None:
        await self.machine.finish()

    async def end_session(self, confirm: bool = False) -> None:
        await self.machine.close(confirm)

    def snapshot(self) -> Dict[str, Any]:
        machine = self.machine
        return {
            "role": "host",
            "phase": machine.phase.value,
            "session": _dump(machine.session),
            "question": _dump(machine.current_question),
            "question_index": machine.current_index,
            "question_count": machine.question_count,
            "is_last_question": machine.is_last_question,
            "time_left": self.time_left,
            "participants": [_dump(p) for p in self.participants],
            "active_participants": len(self.active_participants),
            "answered_count": self.answered_count,
            "all_answered": self.all_answered,
            "leaderboard": [e.model_dump() for e in self.leaderboard],
            "actions": self.actions(),
        }


class ParticipantPlayView(_SessionView):
    """One participant's game screen."""

    poll_interval = config.PARTICIPANT_POLL_SECONDS

    def __init__(self, sessions, quizzes, responses, fanout, session_id: int, participant_id: int, **kwargs):
        super().__init__(sessions, quizzes, responses, fanout, session_id, **kwargs)
        self.participant_id = participant_id
        self.phase = PlayPhase.LOBBY
        self.session: Optional[SessionRecord] = None
        self.participant: Optional[ParticipantRecord] = None
        self.questions: List[QuestionRecord] = []
        self.current_question: Optional[QuestionRecord] = None
        self.selected: Optional[Any] = None
        self.submitted = False
        self.result: Optional[ResponseRecord] = None
        self.notice: Optional[str] = None

    @property
    def ended(self) -> bool:
        return self.phase == PlayPhase.ENDED

    async def open(self) -> "ParticipantPlayView":
        self.session = await self.sessions.get_session(self.session_id)
        if self.session is None:
            await self._end()
            return self
        self.questions = await self.quizzes.get_questions(self.session.quiz_id)
        self.participant = await self.sessions.get_participant(self.session_id, self.participant_id)
        if self.participant is None:
            await self._participant_gone()
            return self
        self.participants = await self.sessions.get_participants(self.session_id)

        await self._follow(self.session)
        if self.current_question is not None:
            self.result = await self._own_response(self.current_question.id)
            if self.result is not None:
                # Rejoining a question already answered
                self._stop_timer()
                self.submitted = True
                self.phase = PlayPhase.QUESTION_RESULTS

        self._start_watch()
        await self._emit()
        return self

    def _question(self, question_id: int) -> Optional[QuestionRecord]:
        for question in self.questions:
            if question.id == question_id:
                return question
        return None

    async def _own_response(self, question_id: int) -> Optional[ResponseRecord]:
        for response in await self.responses.get_participant_responses(self.session_id, self.participant_id):
            if response.question_id == question_id:
                return response
        return None

    async def _end(self, notice: str = SESSION_ENDED_NOTICE) -> None:
        if self.ended:
            return
        logger.info("Participant %s view of session %s ended: %s", self.participant_id, self.session_id, notice)
        self.phase = PlayPhase.ENDED
        self.notice = notice
        self.close()
        await self._emit()

    async def _participant_gone(self) -> None:
        # Rows are deleted participants first, so check whether the whole session went
        session = await self.sessions.get_session(self.session_id)
        await self._end(SESSION_ENDED_NOTICE if session is None else REMOVED_NOTICE)

    async def _follow(self, session: SessionRecord) -> None:
        """Map the session row onto this participant's phase."""
        self.session = session
        if session.status == SessionStatus.COMPLETED:
            if self.phase != PlayPhase.COMPLETED:
                self._stop_timer()
                self.time_left = None
                await self._abandon_current()
                self.phase = PlayPhase.COMPLETED
            return

        question_id = session.current_question_id
        if question_id is None or (self.current_question is not None and self.current_question.id == question_id):
            return

        question = self._question(question_id)
        if question is None:
            # The quiz changed under the session
            self.questions = await self.quizzes.get_questions(session.quiz_id)
            question = self._question(question_id)
            if question is None:
                logger.warning("Session %s points at unknown question %s", self.session_id, question_id)
                return

        await self._abandon_current()
        logger.debug("Participant %s moving to question %s", self.participant_id, question_id)
        self.current_question = question
        self.selected = None
        self.submitted = False
        self.result = None
        self.phase = PlayPhase.QUESTION_ACTIVE
        self._start_timer(question.time_limit_seconds, self._on_expire)

    async def _abandon_current(self) -> None:
        # Host moved on or finished before our countdown ran out; still record that we did not answer
        if self.current_question is None or self.submitted:
            return
        self.submitted = True
        try:
            await self.responses.submit_no_answer(self.session_id, self.participant_id, self.current_question.id)
        except LiveQuizError as e:
            logger.warning("Could not record missed question %s: %s", self.current_question.id, e.message)

    async def reload(self, collection: Optional[Collection] = None) -> None:
        if self.ended:
            return
        async with self._reload_lock:
            if collection in (None, Collection.SESSIONS):
                session = await self.sessions.get_session(self.session_id)
                if session is None:
                    await self._end()
                    return
                await self._follow(session)
            if collection in (None, Collection.PARTICIPANTS):
                self.participants = await self.sessions.get_participants(self.session_id)
                me = next((p for p in self.participants if p.id == self.participant_id), None)
                if me is None:
                    await self._participant_gone()
                    return
                self.participant = me
            if collection in (None, Collection.RESPONSES) and self.current_question is not None and self.submitted:
                self.result = await self._own_response(self.current_question.id) or self.result
        await self._emit()

    # --- participant intents ---

    async def submit(self, answer_id: Optional[int] = None, answer_text: Optional[str] = None) -> ResponseRecord:
        if self.phase != PlayPhase.QUESTION_ACTIVE or self.current_question is None:
            raise InvalidTransitionError("No question is currently active")
        if self.submitted:
            raise InvalidTransitionError("You have already answered this question")

        question = self.current_question
        self.submitted = True
        self.selected = answer_id if answer_id is not None else answer_text
        try:
            self.result = await self.responses.submit_answer(
                self.session_id, self.participant_id, question.id, answer_id=answer_id, answer_text=answer_text
            )
        except StaleReferenceError as e:
            await self._end(e.message)
            raise
        except LiveQuizError:
            # Let the participant try again
            self.submitted = False
            self.selected = None
            raise
        await self._emit()
        return self.result

    async def _on_expire(self) -> None:
        question = self.current_question
        if question is None or self.phase != PlayPhase.QUESTION_ACTIVE:
            return
        if not self.submitted:
            self.submitted = True
            try:
                self.result = await self.responses.submit_no_answer(self.session_id, self.participant_id, question.id)
            except StaleReferenceError as e:
                await self._end(e.message)
                return
            except LiveQuizError as e:
                logger.warning("Could not record no-answer for question %s: %s", question.id, e.message)
        # Skip if the host advanced while we were writing
        if self.current_question is question and self.phase == PlayPhase.QUESTION_ACTIVE:
            self.phase = PlayPhase.QUESTION_RESULTS
            self.timer = None
        await self._emit()

    async def leave(self) -> ParticipantRecord:
        participant = await self.sessions.leave_session(self.session_id, self.participant_id)
        self.participant = participant
        self.close()
        return participant

    def _question_payload(self) -> Optional[Dict[str, Any]]:
        question = self.current_question
        if question is None:
            return None
        payload = question.model_dump(mode="json", exclude={"answers"})
        if question.question_type != QuestionType.SHORT_ANSWER:
            payload["answers"] = [{"id": a.id, "text": a.text} for a in question.answers]
        else:
            payload["answers"] = []
        if self.phase in (PlayPhase.QUESTION_RESULTS, PlayPhase.COMPLETED):
            payload["correct_answers"] = [a.text for a in question.answers if a.is_correct]
        return payload

    def snapshot(self) -> Dict[str, Any]:
        phase = self.phase.value
        return {
            "role": "participant",
            "phase": phase,
            "notice": self.notice,
            "session": _dump(self.session),
            "participant": _dump(self.participant),
            "question": self._question_payload(),
            "time_left": self.time_left,
            "selected": self.selected,
            "submitted": self.submitted,
            "result": _dump(self.result) if phase != PlayPhase.QUESTION_ACTIVE.value else None,
            "leaderboard": [e.model_dump() for e in self.leaderboard],
        }
