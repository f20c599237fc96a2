import asyncio
import logging
import random
import string
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from .core import config
from .errors import ConflictError, NotFoundError, StoreError, ValidationError
from .feed import Collection
from .identity import Identity
from .models import SessionStatus, utcnow
from .quizzes import QuizService
from .schemas import JoinResult, LeaderboardEntry, ParticipantRecord, SessionRecord
from .store import SessionStore

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive timestamps
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def is_active_participant(participant: ParticipantRecord) -> bool:
    return participant.is_active and participant.left_at is None


def build_leaderboard(participants: List[ParticipantRecord]) -> List[LeaderboardEntry]:
    ordered = sorted(participants, key=lambda p: (-p.score, p.id))
    return [
        LeaderboardEntry(
            participant_id=p.id,
            nickname=p.nickname,
            avatar=p.avatar,
            score=p.score,
            is_active=is_active_participant(p),
            rank=rank,
        )
        for rank, p in enumerate(ordered, start=1)
    ]


class SessionService:
    def __init__(self, store: SessionStore, quizzes: QuizService):
        self.store = store
        self.quizzes = quizzes

    def generate_session_code(self, length: int = None) -> str:
        return "".join(random.choices(CODE_ALPHABET, k=length or config.SESSION_CODE_LENGTH))

    async def _code_in_use(self, code: str) -> bool:
        existing = await self.store.get(
            Collection.SESSIONS, {"code": code, "status": SessionStatus.ACTIVE}
        )
        return existing is not None

    # --- lifecycle ---

    async def create_session(self, quiz_id: int, host: Identity) -> SessionRecord:
        if host.is_guest:
            raise ValidationError("Guests cannot host sessions. Please sign up to create quizzes.")
        await self.quizzes.get_quiz(quiz_id)

        for attempt in range(1, config.MAX_CODE_ATTEMPTS + 1):
            code = self.generate_session_code()
            if await self._code_in_use(code):
                logger.info("Session code %s already active, retrying (attempt %d)", code, attempt)
                continue
            try:
                session = await self.store.insert(
                    Collection.SESSIONS,
                    {
                        "quiz_id": quiz_id,
                        "host_id": host.id,
                        "code": code,
                        "status": SessionStatus.ACTIVE.value,
                    },
                )
            except ConflictError:
                # Another host grabbed the same code between the check and the insert
                logger.info("Session code %s taken on insert, retrying (attempt %d)", code, attempt)
                continue
            logger.info("Session %s created for quiz %s with code %s", session.id, quiz_id, code)
            return session

        raise StoreError("Could not allocate a unique session code, please try again")

    async def join_session(
        self,
        code: str,
        identity: Identity,
        nickname: Optional[str] = None,
        avatar: Optional[str] = None,
    ) -> JoinResult:
        session = await self.store.get(
            Collection.SESSIONS,
            {"code": normalize_code(code), "status": SessionStatus.ACTIVE},
        )
        if session is None:
            raise NotFoundError("Session not found or not active. Please check the code.")

        nickname = (nickname or identity.display_name or "").strip()
        if not nickname:
            raise ValidationError("Please enter a nickname")

        values = {
            "session_id": session.id,
            "nickname": nickname,
            "avatar": avatar,
            "score": 0,
            "is_active": True,
            "left_at": None,
            "user_id": None if identity.is_guest else identity.id,
            "guest_id": identity.id if identity.is_guest else None,
        }
        participant = await self.store.insert(Collection.PARTICIPANTS, values)
        logger.info("%s joined session %s as participant %s", nickname, session.id, participant.id)
        return JoinResult(session=session, participant=participant)

    async def leave_session(self, session_id: int, participant_id: int) -> ParticipantRecord:
        if not session_id or not participant_id:
            raise ValidationError("Missing session or participant information")

        updated = await self.store.update(
            Collection.PARTICIPANTS,
            {"session_id": session_id, "id": participant_id},
            {"is_active": False, "left_at": utcnow()},
        )
        if not updated:
            raise NotFoundError("Participant not found in session")
        logger.info("Participant %s left session %s", participant_id, session_id)
        return updated[0]

    async def update_participant(
        self,
        session_id: int,
        participant_id: int,
        nickname: Optional[str] = None,
        avatar: Optional[str] = None,
    ) -> ParticipantRecord:
        patch = {}
        if nickname is not None:
            if not nickname.strip():
                raise ValidationError("Please enter a nickname")
            patch["nickname"] = nickname.strip()
        if avatar is not None:
            patch["avatar"] = avatar
        if not patch:
            raise ValidationError("Nothing to update")

        updated = await self.store.update(
            Collection.PARTICIPANTS, {"session_id": session_id, "id": participant_id}, patch
        )
        if not updated:
            raise NotFoundError("Participant not found in session")
        return updated[0]

    async def set_current_question(self, session_id: int, question_id: int) -> SessionRecord:
        session = await self.require_session(session_id)
        question = await self.quizzes.get_question(question_id)
        if question.quiz_id != session.quiz_id:
            raise ValidationError("Question does not belong to this session's quiz")

        updated = await self.store.update(
            Collection.SESSIONS, {"id": session_id}, {"current_question_id": question_id}
        )
        if not updated:
            raise NotFoundError("Session not found")
        return updated[0]

    async def complete_session(self, session_id: int) -> SessionRecord:
        updated = await self.store.update(
            Collection.SESSIONS, {"id": session_id}, {"status": SessionStatus.COMPLETED.value}
        )
        if not updated:
            raise NotFoundError("Session not found")
        logger.info("Session %s completed", session_id)
        return updated[0]

    async def close_session(self, session_id: int) -> None:
        """Hard delete: responses, then participants, then the session row."""
        await self.store.delete(Collection.RESPONSES, {"session_id": session_id})
        await self.store.delete(Collection.PARTICIPANTS, {"session_id": session_id})
        deleted = await self.store.delete(Collection.SESSIONS, {"id": session_id})
        if not deleted:
            raise NotFoundError("Session not found")
        logger.info("Session %s closed and deleted", session_id)

    # --- reads ---

    async def get_session(self, session_id: int) -> Optional[SessionRecord]:
        return await self.store.get(Collection.SESSIONS, {"id": session_id})

    async def require_session(self, session_id: int) -> SessionRecord:
        session = await self.get_session(session_id)
        if session is None:
            raise NotFoundError("Session not found")
        return session

    async def get_participant(self, session_id: int, participant_id: int) -> Optional[ParticipantRecord]:
        return await self.store.get(Collection.PARTICIPANTS, {"session_id": session_id, "id": participant_id})

    async def get_participants(self, session_id: int) -> List[ParticipantRecord]:
        return await self.store.list(Collection.PARTICIPANTS, {"session_id": session_id}, order_by="joined_at")

    async def get_active_participants(self, session_id: int) -> List[ParticipantRecord]:
        return [p for p in await self.get_participants(session_id) if is_active_participant(p)]

    async def get_leaderboard(self, session_id: int) -> List[LeaderboardEntry]:
        return build_leaderboard(await self.get_participants(session_id))

    # --- maintenance ---

    async def cleanup_guest(self, guest_id: str) -> int:
        participants = await self.store.list(Collection.PARTICIPANTS, {"guest_id": guest_id})
        for participant in participants:
            await self.store.delete(Collection.RESPONSES, {"participant_id": participant.id})
            await self.store.delete(Collection.PARTICIPANTS, {"id": participant.id})
        logger.info("Removed %d participant rows for guest %s", len(participants), guest_id)
        return len(participants)

    async def cleanup_abandoned_sessions(self, stale_after: timedelta = None) -> int:
        """Delete active sessions past the staleness window that nobody is in."""
        stale_after = stale_after or timedelta(minutes=config.SESSION_STALE_MINUTES)
        cutoff = utcnow() - stale_after

        removed = 0
        for session in await self.store.list(Collection.SESSIONS, {"status": SessionStatus.ACTIVE}):
            if session.created_at is None or as_utc(session.created_at) >= cutoff:
                continue
            if await self.get_active_participants(session.id):
                continue
            logger.info("Cleaning up abandoned session %s (code %s)", session.id, session.code)
            try:
                await self.close_session(session.id)
            except NotFoundError:
                continue
            removed += 1
        return removed

    async def run_janitor(self, interval: float = None, stale_after: timedelta = None) -> None:
        interval = interval or config.JANITOR_INTERVAL_SECONDS
        while True:
            try:
                removed = await self.cleanup_abandoned_sessions(stale_after)
                if removed:
                    logger.info("Janitor removed %d abandoned sessions", removed)
            except StoreError as e:
                logger.warning("Janitor sweep failed, retrying next cycle: %s", e)
            await asyncio.sleep(interval)
