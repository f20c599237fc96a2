import asyncio
import logging
import weakref
from typing import List, Optional

from .errors import NotFoundError, StaleReferenceError, ValidationError
from .feed import Collection
from .ledger import ScoringLedger
from .matcher import MatchResult, match_answer, no_answer
from .models import QuestionType, ResponseOutcome, SessionStatus, utcnow
from .quizzes import QuizService
from .schemas import QuestionRecord, QuestionStats, ResponseRecord
from .store import SessionStore

logger = logging.getLogger(__name__)


class ResponsesService:
    def __init__(self, store: SessionStore, quizzes: QuizService, ledger: ScoringLedger):
        self.store = store
        self.quizzes = quizzes
        self.ledger = ledger
        # Entries vanish once no submit holds or waits on the lock
        self._locks: "weakref.WeakValueDictionary[tuple, asyncio.Lock]" = weakref.WeakValueDictionary()

    async def _resolve(self, session_id: int, participant_id: int, question_id: int) -> QuestionRecord:
        session = await self.store.get(Collection.SESSIONS, {"id": session_id})
        if session is None:
            raise StaleReferenceError("Session ended by host.")
        participant = await self.store.get(
            Collection.PARTICIPANTS, {"session_id": session_id, "id": participant_id}
        )
        if participant is None:
            raise StaleReferenceError("You are no longer part of this session.")

        try:
            question = await self.quizzes.get_question(question_id)
        except NotFoundError:
            raise StaleReferenceError("This question is no longer available.")
        if question.quiz_id != session.quiz_id:
            raise ValidationError("Question does not belong to this session's quiz")
        if session.status == SessionStatus.COMPLETED:
            logger.info("Late answer for completed session %s from participant %s", session_id, participant_id)
        return question

    def _lock_for(self, session_id: int, participant_id: int) -> asyncio.Lock:
        key = (session_id, participant_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def _record(
        self,
        session_id: int,
        participant_id: int,
        question_id: int,
        result: MatchResult,
        answer_text: Optional[str],
    ) -> ResponseRecord:
        key = {"session_id": session_id, "participant_id": participant_id, "question_id": question_id}
        values = {
            "answer_id": result.answer_id,
            "is_correct": result.is_correct,
            "answer_text": answer_text,
            "outcome": result.outcome.value,
        }

        # One writer per participant so duplicate submits update instead of racing to insert
        async with self._lock_for(session_id, participant_id):
            previous = await self.store.get(Collection.RESPONSES, key)
            if previous is not None:
                logger.debug("Participant %s already answered question %s, updating response", participant_id, question_id)
                updated = await self.store.update(
                    Collection.RESPONSES, {"id": previous.id}, {**values, "updated_at": utcnow()}
                )
                if not updated:
                    raise StaleReferenceError("Session ended by host.")
                current = updated[0]
            else:
                current = await self.store.insert(Collection.RESPONSES, {**key, **values})

            try:
                await self.ledger.settle(session_id, participant_id, previous, current)
            except NotFoundError:
                raise StaleReferenceError("You are no longer part of this session.")
        return current

    async def submit_answer(
        self,
        session_id: int,
        participant_id: int,
        question_id: int,
        answer_id: Optional[int] = None,
        answer_text: Optional[str] = None,
    ) -> ResponseRecord:
        question = await self._resolve(session_id, participant_id, question_id)

        if question.question_type == QuestionType.SHORT_ANSWER:
            result = match_answer(question, answer_text)
        elif answer_id is not None:
            result = match_answer(question, answer_id)
        else:
            result = match_answer(question, answer_text)

        response = await self._record(session_id, participant_id, question_id, result, answer_text)
        logger.info(
            "Participant %s answered question %s in session %s: %s (%s)",
            participant_id,
            question_id,
            session_id,
            "correct" if response.is_correct else "incorrect",
            response.outcome.value,
        )
        return response

    async def submit_no_answer(self, session_id: int, participant_id: int, question_id: int) -> ResponseRecord:
        await self._resolve(session_id, participant_id, question_id)
        response = await self._record(session_id, participant_id, question_id, no_answer(), None)
        logger.info("Participant %s ran out of time on question %s", participant_id, question_id)
        return response

    async def get_question_responses(self, session_id: int, question_id: int) -> List[ResponseRecord]:
        return await self.store.list(
            Collection.RESPONSES, {"session_id": session_id, "question_id": question_id}, order_by="created_at"
        )

    async def get_session_responses(self, session_id: int) -> List[ResponseRecord]:
        return await self.store.list(Collection.RESPONSES, {"session_id": session_id}, order_by="created_at")

    async def get_participant_responses(self, session_id: int, participant_id: int) -> List[ResponseRecord]:
        return await self.store.list(
            Collection.RESPONSES, {"session_id": session_id, "participant_id": participant_id}, order_by="created_at"
        )

    async def get_question_stats(self, session_id: int, question_id: int) -> QuestionStats:
        responses = await self.get_question_responses(session_id, question_id)
        total = len(responses)
        correct = sum(1 for r in responses if r.is_correct)
        return QuestionStats(
            total_responses=total,
            correct_responses=correct,
            incorrect_responses=total - correct,
            unmatched_responses=sum(1 for r in responses if r.outcome == ResponseOutcome.UNMATCHED),
            no_answer_responses=sum(1 for r in responses if r.outcome == ResponseOutcome.NO_ANSWER),
            accuracy=(correct / total) * 100 if total else 0.0,
        )
