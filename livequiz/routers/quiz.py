from typing import List

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from .. import schemas
from ..game_manager import GameManager, get_manager
from ..identity import Identity
from .deps import get_identity

router = APIRouter()


async def check_quiz_owner(manager: GameManager, quiz_id: int, identity: Identity, action: str):
    quiz = await manager.quizzes.get_quiz(quiz_id)
    if quiz.owner_id != identity.id:
        raise HTTPException(status_code=403, detail=f"Not allowed to {action} this quiz")
    return quiz


@router.post("/quizzes/", response_model=schemas.QuizWithQuestions)
async def create_quiz(
    quiz: schemas.QuizCreate,
    identity: Identity = Depends(get_identity),
    manager: GameManager = Depends(get_manager),
):
    return await manager.quizzes.create_quiz(identity, quiz)


@router.get("/quizzes/", response_model=List[schemas.QuizRecord])
async def read_quizzes(identity: Identity = Depends(get_identity), manager: GameManager = Depends(get_manager)):
    return await manager.quizzes.list_user_quizzes(identity.id)


# Includes the correct answers, so only the author may read it
@router.get("/quizzes/{quiz_id}", response_model=schemas.QuizWithQuestions)
async def read_quiz(
    quiz_id: int,
    identity: Identity = Depends(get_identity),
    manager: GameManager = Depends(get_manager),
):
    await check_quiz_owner(manager, quiz_id, identity, "read")
    return await manager.quizzes.get_quiz_with_questions(quiz_id)


@router.put("/quizzes/{quiz_id}", response_model=schemas.QuizWithQuestions)
async def update_quiz(
    quiz_id: int,
    quiz: schemas.QuizCreate,
    identity: Identity = Depends(get_identity),
    manager: GameManager = Depends(get_manager),
):
    return await manager.quizzes.update_quiz(identity, quiz_id, quiz)


@router.delete("/quizzes/{quiz_id}")
async def delete_quiz(
    quiz_id: int,
    identity: Identity = Depends(get_identity),
    manager: GameManager = Depends(get_manager),
):
    await check_quiz_owner(manager, quiz_id, identity, "delete")
    await manager.quizzes.delete_quiz(quiz_id)
    return {"status": "deleted", "id": quiz_id}


@router.post("/questions/{question_id}/image")
async def upload_question_image(
    question_id: int,
    file: UploadFile = File(...),
    identity: Identity = Depends(get_identity),
    manager: GameManager = Depends(get_manager),
):
    question = await manager.quizzes.get_question(question_id)
    await check_quiz_owner(manager, question.quiz_id, identity, "edit")
    data = await file.read()
    url = await manager.quizzes.upload_question_image(question_id, data, file.filename or "")
    return {"url": url}
