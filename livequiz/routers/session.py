import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from .. import schemas
from ..errors import NotFoundError, ValidationError
from ..game_manager import GameManager, get_manager
from ..identity import Identity, mint_guest_identity
from ..views import SESSION_ENDED_NOTICE
from .deps import get_identity

logger = logging.getLogger(__name__)

router = APIRouter()


def check_owner(participant: schemas.ParticipantRecord, identity: Identity):
    owner = participant.guest_id if participant.is_guest else participant.user_id
    if owner != identity.id:
        raise HTTPException(status_code=403, detail="This participant belongs to someone else")


async def load_participant(manager: GameManager, session_id: int, participant_id: int, identity: Identity):
    participant = await manager.sessions.get_participant(session_id, participant_id)
    if participant is None:
        raise NotFoundError("Participant not found in session")
    check_owner(participant, identity)
    return participant


@router.post("/guests", response_model=schemas.IdentityPayload)
async def create_guest(payload: schemas.GuestCreate):
    guest = mint_guest_identity(payload.nickname)
    return schemas.IdentityPayload(id=guest.id, display_name=guest.display_name, is_guest=True)


@router.delete("/guests/{guest_id}")
async def delete_guest(
    guest_id: str,
    identity: Identity = Depends(get_identity),
    manager: GameManager = Depends(get_manager),
):
    if not identity.is_guest or identity.id != guest_id:
        raise HTTPException(status_code=403, detail="Only the guest can remove their own data")
    removed = await manager.sessions.cleanup_guest(guest_id)
    return {"status": "deleted", "participants": removed}


@router.post("/sessions/", response_model=schemas.SessionRecord)
async def create_session(
    payload: schemas.SessionCreate,
    identity: Identity = Depends(get_identity),
    manager: GameManager = Depends(get_manager),
):
    return await manager.sessions.create_session(payload.quiz_id, identity)


@router.post("/sessions/join", response_model=schemas.JoinResult)
async def join_session(
    payload: schemas.JoinRequest,
    identity: Identity = Depends(get_identity),
    manager: GameManager = Depends(get_manager),
):
    return await manager.sessions.join_session(payload.code, identity, payload.nickname, payload.avatar)


@router.post("/sessions/{session_id}/leave", response_model=schemas.ParticipantRecord)
async def leave_session(
    session_id: int,
    payload: schemas.LeaveRequest,
    identity: Identity = Depends(get_identity),
    manager: GameManager = Depends(get_manager),
):
    await load_participant(manager, session_id, payload.participant_id, identity)
    return await manager.sessions.leave_session(session_id, payload.participant_id)


@router.patch("/sessions/{session_id}/participants/{participant_id}", response_model=schemas.ParticipantRecord)
async def update_participant(
    session_id: int,
    participant_id: int,
    payload: schemas.ParticipantUpdate,
    identity: Identity = Depends(get_identity),
    manager: GameManager = Depends(get_manager),
):
    await load_participant(manager, session_id, participant_id, identity)
    return await manager.sessions.update_participant(session_id, participant_id, payload.nickname, payload.avatar)


@router.get("/sessions/{session_id}", response_model=schemas.SessionRecord)
async def read_session(session_id: int, manager: GameManager = Depends(get_manager)):
    return await manager.sessions.require_session(session_id)


@router.get("/sessions/{session_id}/leaderboard", response_model=List[schemas.LeaderboardEntry])
async def read_leaderboard(session_id: int, manager: GameManager = Depends(get_manager)):
    await manager.sessions.require_session(session_id)
    return await manager.sessions.get_leaderboard(session_id)


@router.get("/sessions/{session_id}/participants", response_model=List[schemas.ParticipantRecord])
async def read_participants(session_id: int, manager: GameManager = Depends(get_manager)):
    await manager.sessions.require_session(session_id)
    return await manager.sessions.get_participants(session_id)


@router.post("/sessions/{session_id}/responses", response_model=schemas.ResponseRecord)
async def submit_response(
    session_id: int,
    payload: schemas.SubmitRequest,
    identity: Identity = Depends(get_identity),
    manager: GameManager = Depends(get_manager),
):
    """Polling fallback for clients without a websocket."""
    await load_participant(manager, session_id, payload.participant_id, identity)
    return await manager.responses.submit_answer(
        session_id,
        payload.participant_id,
        payload.question_id,
        answer_id=payload.answer_id,
        answer_text=payload.answer_text,
    )


@router.get("/sessions/{session_id}/responses", response_model=List[schemas.ResponseRecord])
async def read_responses(
    session_id: int,
    identity: Identity = Depends(get_identity),
    manager: GameManager = Depends(get_manager),
):
    session = await manager.sessions.require_session(session_id)
    if session.host_id != identity.id:
        raise HTTPException(status_code=403, detail="Only the host can list responses")
    return await manager.responses.get_session_responses(session_id)


@router.get("/sessions/{session_id}/questions/{question_id}/stats", response_model=schemas.QuestionStats)
async def read_question_stats(session_id: int, question_id: int, manager: GameManager = Depends(get_manager)):
    await manager.sessions.require_session(session_id)
    return await manager.responses.get_question_stats(session_id, question_id)


@router.delete("/sessions/{session_id}")
async def close_session(
    session_id: int,
    confirm: bool = False,
    identity: Identity = Depends(get_identity),
    manager: GameManager = Depends(get_manager),
):
    session = await manager.sessions.require_session(session_id)
    if session.host_id != identity.id:
        raise HTTPException(status_code=403, detail="Only the host can end this session")
    if not confirm:
        raise ValidationError(
            "Ending the session removes all participants and responses permanently. Please confirm."
        )

    view = manager.get_host(session_id)
    if view is not None:
        await view.end_session(confirm=True)
        manager.release_host(session_id, view)
    else:
        await manager.sessions.close_session(session_id)
    await manager.broadcast(session_id, {"type": "SESSION_ENDED", "message": SESSION_ENDED_NOTICE})
    return {"status": "deleted", "id": session_id}
