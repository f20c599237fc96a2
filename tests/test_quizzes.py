import asyncio
import os

import pytest

from livequiz.errors import ForbiddenError, NotFoundError, ValidationError
from livequiz.feed import Collection
from livequiz.models import QuestionType
from livequiz.quizzes import validate_quiz
from livequiz.schemas import AnswerCreate, QuestionCreate


class TestQuizValidation:
    def test_title_too_short(self, quiz_payload):
        quiz_payload.title = "Hi"
        with pytest.raises(ValidationError, match="at least 3 characters"):
            validate_quiz(quiz_payload)

    def test_needs_two_questions(self, quiz_payload):
        quiz_payload.questions = quiz_payload.questions[:1]
        with pytest.raises(ValidationError, match="at least 2 questions"):
            validate_quiz(quiz_payload)

    def test_multiple_choice_needs_a_correct_answer(self, quiz_payload):
        for answer in quiz_payload.questions[0].answers:
            answer.is_correct = False
        with pytest.raises(ValidationError, match="Question 1"):
            validate_quiz(quiz_payload)

    def test_duplicate_options_are_rejected(self, quiz_payload):
        quiz_payload.questions[0].answers[2].text = " paris"
        with pytest.raises(ValidationError, match="duplicate"):
            validate_quiz(quiz_payload)

    def test_true_false_answers(self, quiz_payload):
        quiz_payload.questions.append(
            QuestionCreate(
                text="The Seine flows through Paris",
                question_type=QuestionType.TRUE_FALSE,
                answers=[AnswerCreate(text="Yes", is_correct=True), AnswerCreate(text="No")],
            )
        )
        with pytest.raises(ValidationError, match="Question 3"):
            validate_quiz(quiz_payload)

    def test_valid_quiz_passes(self, quiz_payload):
        validate_quiz(quiz_payload)


def test_create_quiz_keeps_question_order(manager, host, quiz_payload):
    quiz = asyncio.run(manager.quizzes.create_quiz(host, quiz_payload))

    assert quiz.owner_id == host.id
    assert [q.order_index for q in quiz.questions] == [0, 1]
    assert quiz.questions[0].question_type == QuestionType.MULTIPLE_CHOICE
    assert [a.text for a in quiz.questions[0].answers] == ["Paris", "London", "Berlin"]
    assert quiz.questions[1].answers[0].is_correct


def test_guests_cannot_create_quizzes(manager, guest, quiz_payload):
    with pytest.raises(ValidationError, match="Guests"):
        asyncio.run(manager.quizzes.create_quiz(guest, quiz_payload))


def test_list_and_delete(manager, host, quiz_payload):
    async def scenario():
        quiz = await manager.quizzes.create_quiz(host, quiz_payload)
        listed = await manager.quizzes.list_user_quizzes(host.id)
        await manager.quizzes.delete_quiz(quiz.id)
        remaining = await manager.quizzes.list_user_quizzes(host.id)
        return quiz, listed, remaining

    quiz, listed, remaining = asyncio.run(scenario())
    assert [q.id for q in listed] == [quiz.id]
    assert remaining == []

    with pytest.raises(NotFoundError):
        asyncio.run(manager.quizzes.get_quiz(quiz.id))


def test_upload_question_image(manager, host, quiz_payload, tmp_path):
    async def scenario():
        quiz = await manager.quizzes.create_quiz(host, quiz_payload)
        question = quiz.questions[0]
        url = await manager.quizzes.upload_question_image(question.id, b"\x89PNG fake", "eiffel.PNG")
        return quiz, question, url, await manager.quizzes.get_question(question.id)

    quiz, question, url, stored = asyncio.run(scenario())
    expected = f"quiz_{quiz.id}/question_{question.id}.png"
    assert url == f"/uploads/{expected}"
    assert stored.image_url == url
    assert os.path.exists(os.path.join(str(tmp_path), expected))


class TestUpdateQuiz:
    def test_rewrites_questions_and_answers(self, manager, host, quiz_payload):
        async def scenario():
            quiz = await manager.quizzes.create_quiz(host, quiz_payload)
            edited = quiz_payload.model_copy(deep=True)
            edited.title = "  Capitals of Europe "
            edited.questions.reverse()
            edited.questions[0].answers.append(AnswerCreate(text="Roma", is_correct=True))
            updated = await manager.quizzes.update_quiz(host, quiz.id, edited)
            return quiz, updated, await manager.store.list(Collection.ANSWERS)

        quiz, updated, answers = asyncio.run(scenario())
        assert updated.id == quiz.id
        assert updated.title == "Capitals of Europe"
        assert [q.text for q in updated.questions] == ["Name the capital of Italy", "What is the capital of France?"]
        assert [q.order_index for q in updated.questions] == [0, 1]
        assert [a.text for a in updated.questions[0].answers] == ["Rome", "Roma"]
        # Old answers went with their questions
        assert len(answers) == 5

    def test_only_the_owner_can_edit(self, manager, host, players, quiz_payload):
        async def scenario():
            quiz = await manager.quizzes.create_quiz(host, quiz_payload)
            await manager.quizzes.update_quiz(players[0], quiz.id, quiz_payload)

        with pytest.raises(ForbiddenError):
            asyncio.run(scenario())

    def test_invalid_edit_leaves_quiz_alone(self, manager, host, quiz_payload):
        async def scenario():
            quiz = await manager.quizzes.create_quiz(host, quiz_payload)
            edited = quiz_payload.model_copy(deep=True)
            edited.questions = edited.questions[:1]
            with pytest.raises(ValidationError, match="at least 2 questions"):
                await manager.quizzes.update_quiz(host, quiz.id, edited)
            return await manager.quizzes.get_quiz_with_questions(quiz.id)

        assert len(asyncio.run(scenario()).questions) == 2

    def test_frozen_while_a_session_uses_it(self, manager, host, quiz_payload):
        async def scenario():
            quiz = await manager.quizzes.create_quiz(host, quiz_payload)
            session = await manager.sessions.create_session(quiz.id, host)
            await manager.sessions.complete_session(session.id)
            with pytest.raises(ValidationError, match="End the session"):
                await manager.quizzes.update_quiz(host, quiz.id, quiz_payload)

            await manager.sessions.close_session(session.id)
            return await manager.quizzes.update_quiz(host, quiz.id, quiz_payload)

        assert asyncio.run(scenario()).title == "European Capitals"
