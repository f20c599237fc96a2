import logging
import os
from typing import List, Optional

from .blobs import BlobStore
from .errors import ForbiddenError, NotFoundError, StoreError, ValidationError
from .feed import Collection
from .identity import Identity
from .models import QuestionType
from .schemas import QuestionCreate, QuestionRecord, QuizCreate, QuizRecord, QuizWithQuestions
from .store import SessionStore

logger = logging.getLogger(__name__)

MIN_TITLE_LENGTH = 3
MIN_QUESTIONS = 2
MAX_QUESTIONS = 50
MIN_TIME_LIMIT = 5
MAX_TIME_LIMIT = 300
TRUE_FALSE_ANSWERS = ("true", "false")


def _duplicates(texts: List[str]) -> bool:
    normalized = [t.strip().lower() for t in texts]
    return len(normalized) != len(set(normalized))


def validate_question(question: QuestionCreate, position: int) -> None:
    label = f"Question {position}"
    if not question.text.strip():
        raise ValidationError(f"{label}: question text is required")
    if not MIN_TIME_LIMIT <= question.time_limit_seconds <= MAX_TIME_LIMIT:
        raise ValidationError(
            f"{label}: time limit must be between {MIN_TIME_LIMIT} and {MAX_TIME_LIMIT} seconds"
        )

    answers = [a for a in question.answers if a.text.strip()]
    texts = [a.text for a in answers]

    if question.question_type == QuestionType.MULTIPLE_CHOICE:
        if len(answers) < 2:
            raise ValidationError(f"{label}: please provide at least 2 answer options")
        if not any(a.is_correct for a in answers):
            raise ValidationError(f"{label}: please mark one answer as correct")
        if _duplicates(texts):
            raise ValidationError(f"{label}: please remove duplicate answer options")

    elif question.question_type == QuestionType.TRUE_FALSE:
        if len(answers) != 2 or sorted(t.strip().lower() for t in texts) != sorted(TRUE_FALSE_ANSWERS):
            raise ValidationError(f"{label}: true/false questions need exactly the answers True and False")
        if sum(1 for a in answers if a.is_correct) != 1:
            raise ValidationError(f"{label}: mark either True or False as correct")

    elif question.question_type == QuestionType.SHORT_ANSWER:
        if not answers:
            raise ValidationError(f"{label}: please provide at least one acceptable answer")
        if not all(a.is_correct for a in answers):
            raise ValidationError(f"{label}: acceptable answers must all be marked correct")
        if _duplicates(texts):
            raise ValidationError(f"{label}: please remove duplicate acceptable answers")


def validate_quiz(payload: QuizCreate) -> None:
    """Reject a quiz before anything is written."""
    title = payload.title.strip()
    if not title:
        raise ValidationError("Please enter a quiz title")
    if len(title) < MIN_TITLE_LENGTH:
        raise ValidationError(f"Quiz title must be at least {MIN_TITLE_LENGTH} characters long")
    if len(payload.questions) < MIN_QUESTIONS:
        raise ValidationError(f"Please add at least {MIN_QUESTIONS} questions to create a meaningful quiz")
    if len(payload.questions) > MAX_QUESTIONS:
        raise ValidationError(f"Quiz cannot have more than {MAX_QUESTIONS} questions")
    for position, question in enumerate(payload.questions, start=1):
        validate_question(question, position)


class QuizService:
    def __init__(self, store: SessionStore, blobs: Optional[BlobStore] = None):
        self.store = store
        self.blobs = blobs

    async def create_quiz(self, owner: Identity, payload: QuizCreate) -> QuizWithQuestions:
        if owner.is_guest:
            raise ValidationError("Guests cannot create quizzes. Please sign up to create quizzes.")
        validate_quiz(payload)

        quiz = await self.store.insert(
            Collection.QUIZZES,
            {"title": payload.title.strip(), "description": payload.description, "owner_id": owner.id},
        )
        try:
            await self._write_questions(quiz.id, payload.questions)
        except StoreError:
            # Don't leave a half-written quiz behind
            await self.store.delete(Collection.QUIZZES, {"id": quiz.id})
            raise

        logger.info("Quiz %s created by %s with %d questions", quiz.id, owner.id, len(payload.questions))
        return await self.get_quiz_with_questions(quiz.id)

    async def _write_questions(self, quiz_id: int, questions: List[QuestionCreate]) -> None:
        for order_index, q in enumerate(questions):
            question = await self.store.insert(
                Collection.QUESTIONS,
                {
                    "quiz_id": quiz_id,
                    "text": q.text.strip(),
                    "image_url": q.image_url,
                    "time_limit_seconds": q.time_limit_seconds,
                    "question_type": q.question_type.value,
                    "order_index": order_index,
                },
            )
            for answer in q.answers:
                if not answer.text.strip():
                    continue
                await self.store.insert(
                    Collection.ANSWERS,
                    {
                        "question_id": question.id,
                        "text": answer.text.strip(),
                        "is_correct": answer.is_correct,
                    },
                )

    async def update_quiz(self, owner: Identity, quiz_id: int, payload: QuizCreate) -> QuizWithQuestions:
        """Replace a quiz's title, description and questions.

        Questions are rewritten wholesale, so question and answer ids change.
        A quiz stays frozen while any session row points at it.
        """
        quiz = await self.get_quiz(quiz_id)
        if quiz.owner_id != owner.id:
            raise ForbiddenError("Not allowed to edit this quiz")
        validate_quiz(payload)
        if await self.store.get(Collection.SESSIONS, {"quiz_id": quiz_id}) is not None:
            raise ValidationError("This quiz is used by a session. End the session before editing the quiz.")

        await self.store.update(
            Collection.QUIZZES,
            {"id": quiz_id},
            {"title": payload.title.strip(), "description": payload.description},
        )
        await self.store.delete(Collection.QUESTIONS, {"quiz_id": quiz_id})
        await self._write_questions(quiz_id, payload.questions)

        logger.info("Quiz %s updated by %s with %d questions", quiz_id, owner.id, len(payload.questions))
        return await self.get_quiz_with_questions(quiz_id)

    async def get_quiz(self, quiz_id: int) -> QuizRecord:
        quiz = await self.store.get(Collection.QUIZZES, {"id": quiz_id})
        if quiz is None:
            raise NotFoundError("Quiz not found")
        return quiz

    async def get_questions(self, quiz_id: int) -> List[QuestionRecord]:
        return await self.store.list(Collection.QUESTIONS, {"quiz_id": quiz_id}, order_by="order_index")

    async def get_quiz_with_questions(self, quiz_id: int) -> QuizWithQuestions:
        quiz = await self.get_quiz(quiz_id)
        questions = await self.get_questions(quiz_id)
        return QuizWithQuestions(**quiz.model_dump(), questions=questions)

    async def get_question(self, question_id: int) -> QuestionRecord:
        question = await self.store.get(Collection.QUESTIONS, {"id": question_id})
        if question is None:
            raise NotFoundError("Question not found")
        return question

    async def list_user_quizzes(self, owner_id: str) -> List[QuizRecord]:
        return await self.store.list(Collection.QUIZZES, {"owner_id": owner_id}, order_by="created_at", descending=True)

    async def delete_quiz(self, quiz_id: int) -> None:
        deleted = await self.store.delete(Collection.QUIZZES, {"id": quiz_id})
        if not deleted:
            raise NotFoundError("Quiz not found")

    async def upload_question_image(self, question_id: int, data: bytes, filename: str) -> str:
        if self.blobs is None:
            raise StoreError("Image uploads are not configured")
        if not data:
            raise ValidationError("Uploaded image is empty")

        question = await self.get_question(question_id)
        ext = os.path.splitext(filename)[1].lstrip(".").lower() or "png"
        url = self.blobs.upload(data, f"quiz_{question.quiz_id}/question_{question.id}.{ext}")
        await self.store.update(Collection.QUESTIONS, {"id": question.id}, {"image_url": url})
        return url
