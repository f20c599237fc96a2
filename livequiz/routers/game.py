import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from ..errors import LiveQuizError
from ..game_manager import GameManager, get_manager
from ..views import SESSION_ENDED_NOTICE

logger = logging.getLogger(__name__)

router = APIRouter()


async def send_error(websocket: WebSocket, message: str, status: int = 400):
    await websocket.send_json({"type": "ERROR", "message": message, "status": status})


def state_pusher(websocket: WebSocket):
    async def push(view):
        await websocket.send_json({"type": "STATE", "state": view.snapshot()})

    return push


@router.websocket("/ws/host/{session_id}")
async def websocket_host(websocket: WebSocket, session_id: int, manager: GameManager = Depends(get_manager)):
    await websocket.accept()
    logger.info("Host connection accepted for session %s", session_id)

    session = await manager.sessions.get_session(session_id)
    if session is None:
        await send_error(websocket, "Session not found", 404)
        await websocket.close(code=4004)
        return
    if websocket.headers.get("x-user-id") != session.host_id:
        await send_error(websocket, "Only the host can control this session", 403)
        await websocket.close(code=4003)
        return

    view = None
    try:
        view = await manager.open_host(session_id, state_pusher(websocket))
        manager.connect(session_id, websocket)

        while True:
            cmd = await websocket.receive_json()
            if manager.get_host(session_id) is not view:
                await send_error(websocket, "Another host connection has taken over this session", 409)
                await websocket.close(code=4009)
                break

            try:
                if cmd.get("type") == "START_GAME":
                    await view.start()
                elif cmd.get("type") == "SHOW_RESULTS":
                    await view.reveal()
                elif cmd.get("type") == "NEXT_QUESTION":
                    await view.next_question()
                elif cmd.get("type") == "FINISH_GAME":
                    await view.finish()
                elif cmd.get("type") == "END_SESSION":
                    await view.end_session(confirm=bool(cmd.get("confirm")))
                    manager.disconnect(session_id, websocket)
                    await manager.broadcast(session_id, {"type": "SESSION_ENDED", "message": SESSION_ENDED_NOTICE})
                    await websocket.close()
                    break
                else:
                    await send_error(websocket, f"Unknown command: {cmd.get('type')}")
            except LiveQuizError as e:
                logger.info("Host command %s rejected for session %s: %s", cmd.get("type"), session_id, e.message)
                await send_error(websocket, e.message, e.status_code)

    except WebSocketDisconnect:
        logger.info("Host disconnected from session %s", session_id)
    except LiveQuizError as e:
        await send_error(websocket, e.message, e.status_code)
        await websocket.close(code=1011)
    except Exception:
        logger.exception("Host connection for session %s failed", session_id)
        try:
            await websocket.close(code=1011)
        except RuntimeError:
            pass
    finally:
        manager.disconnect(session_id, websocket)
        if view is not None:
            manager.release_host(session_id, view)


@router.websocket("/ws/player/{session_id}/{participant_id}")
async def websocket_player(
    websocket: WebSocket, session_id: int, participant_id: int, manager: GameManager = Depends(get_manager)
):
    await websocket.accept()

    participant = await manager.sessions.get_participant(session_id, participant_id)
    if participant is None:
        await send_error(websocket, "Session not found or not active. Please check the code.", 404)
        await websocket.close(code=4004)
        return
    owner = participant.guest_id if participant.is_guest else participant.user_id
    if websocket.headers.get("x-user-id") != owner:
        await send_error(websocket, "This participant belongs to someone else", 403)
        await websocket.close(code=4003)
        return

    view = None
    try:
        view = await manager.open_player(session_id, participant_id, state_pusher(websocket))
        manager.connect(session_id, websocket)

        while True:
            cmd = await websocket.receive_json()
            try:
                if cmd.get("type") == "SUBMIT_ANSWER":
                    await view.submit(answer_id=cmd.get("answer_id"), answer_text=cmd.get("answer_text"))
                elif cmd.get("type") == "LEAVE":
                    await view.leave()
                    await websocket.send_json({"type": "LEFT"})
                    await websocket.close()
                    break
                else:
                    await send_error(websocket, f"Unknown command: {cmd.get('type')}")
            except LiveQuizError as e:
                await send_error(websocket, e.message, e.status_code)

    except WebSocketDisconnect:
        logger.info("Participant %s disconnected from session %s", participant_id, session_id)
    except Exception:
        logger.exception("Participant connection %s/%s failed", session_id, participant_id)
        try:
            await websocket.close(code=1011)
        except RuntimeError:
            pass
    finally:
        manager.disconnect(session_id, websocket)
        if view is not None:
            manager.release_player(session_id, participant_id, view)
