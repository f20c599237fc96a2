"""Scoring ledger: keeps participant scores in step with their responses."""

import logging
from typing import Optional

from .errors import NotFoundError
from .feed import Collection
from .schemas import ParticipantRecord, ResponseRecord
from .store import SessionStore

logger = logging.getLogger(__name__)

POINTS_PER_CORRECT = 1


def score_delta(previous: Optional[ResponseRecord], current: ResponseRecord, points: int = POINTS_PER_CORRECT) -> int:
    """Points to apply when ``current`` replaces ``previous`` for the same question.

    Only a change in correctness moves the score, so re-submitting an answer
    (or the same submission arriving twice) never awards twice.
    """
    was_correct = bool(previous and previous.is_correct)
    if current.is_correct and not was_correct:
        return points
    if was_correct and not current.is_correct:
        return -points
    return 0


class ScoringLedger:
    def __init__(self, store: SessionStore, points: int = POINTS_PER_CORRECT):
        self.store = store
        self.points = points

    async def award(self, session_id: int, participant_id: int, delta: int = POINTS_PER_CORRECT) -> ParticipantRecord:
        updated = await self.store.increment(
            Collection.PARTICIPANTS,
            {"session_id": session_id, "id": participant_id},
            "score",
            delta,
        )
        if not updated:
            raise NotFoundError(f"Participant {participant_id} not found in session {session_id}")
        logger.debug("Participant %s score %+d -> %s", participant_id, delta, updated[0].score)
        return updated[0]

    async def settle(
        self,
        session_id: int,
        participant_id: int,
        previous: Optional[ResponseRecord],
        current: ResponseRecord,
    ) -> int:
        delta = score_delta(previous, current, self.points)
        if delta:
            await self.award(session_id, participant_id, delta)
        return delta

    async def recompute(self, session_id: int, participant_id: int) -> ParticipantRecord:
        """Rebuild a score from the participant's responses."""
        responses = await self.store.list(
            Collection.RESPONSES,
            {"session_id": session_id, "participant_id": participant_id},
        )
        score = sum(self.points for response in responses if response.is_correct)
        updated = await self.store.update(
            Collection.PARTICIPANTS,
            {"session_id": session_id, "id": participant_id},
            {"score": score},
        )
        if not updated:
            raise NotFoundError(f"Participant {participant_id} not found in session {session_id}")
        return updated[0]
