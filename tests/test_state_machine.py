import asyncio

import pytest

from livequiz.errors import InvalidTransitionError, StoreError, ValidationError
from livequiz.models import SessionStatus
from livequiz.state_machine import Phase, QuestionTimer, SessionStateMachine


async def new_machine(manager, host, quiz_payload):
    quiz = await manager.quizzes.create_quiz(host, quiz_payload)
    session = await manager.sessions.create_session(quiz.id, host)
    return quiz, await SessionStateMachine.load(manager.sessions, manager.quizzes, session.id)


def test_full_lifecycle(manager, host, quiz_payload):
    async def scenario():
        quiz, machine = await new_machine(manager, host, quiz_payload)
        seen = []
        machine.add_listener(lambda m: seen.append(m.phase))

        first = await machine.start()
        stored_first = await manager.sessions.get_session(machine.session.id)
        await machine.reveal()
        second = await machine.next_question()
        stored_second = await manager.sessions.get_session(machine.session.id)
        await machine.reveal()
        last = await machine.next_question()
        stored_done = await manager.sessions.get_session(machine.session.id)
        return quiz, first, second, last, stored_first, stored_second, stored_done, seen

    quiz, first, second, last, stored_first, stored_second, stored_done, seen = asyncio.run(scenario())
    assert first.id == quiz.questions[0].id == stored_first.current_question_id
    assert second.id == quiz.questions[1].id == stored_second.current_question_id
    assert last is None
    assert stored_done.status == SessionStatus.COMPLETED
    assert seen == [
        Phase.QUESTION_ACTIVE,
        Phase.QUESTION_RESULTS,
        Phase.QUESTION_ACTIVE,
        Phase.QUESTION_RESULTS,
        Phase.COMPLETED,
    ]


def test_guards_reject_out_of_order_actions(manager, host, quiz_payload):
    async def scenario():
        _, machine = await new_machine(manager, host, quiz_payload)
        assert machine.can_start and not machine.can_reveal
        with pytest.raises(InvalidTransitionError):
            await machine.reveal()
        with pytest.raises(InvalidTransitionError):
            await machine.next_question()

        await machine.start()
        with pytest.raises(InvalidTransitionError):
            await machine.start()
        with pytest.raises(InvalidTransitionError):
            await machine.next_question()

        await machine.finish()
        assert not machine.can_finish
        with pytest.raises(InvalidTransitionError):
            await machine.finish()

    asyncio.run(scenario())


def test_start_needs_questions(manager, host, quiz_payload):
    async def scenario():
        _, machine = await new_machine(manager, host, quiz_payload)
        empty = SessionStateMachine(manager.sessions, machine.session, [])
        assert not empty.can_start
        await empty.start()

    with pytest.raises(InvalidTransitionError, match="No questions"):
        asyncio.run(scenario())


def test_finish_straight_from_lobby(manager, host, quiz_payload):
    async def scenario():
        _, machine = await new_machine(manager, host, quiz_payload)
        await machine.finish()
        return machine, await manager.sessions.get_session(machine.session.id)

    machine, stored = asyncio.run(scenario())
    assert machine.phase == Phase.COMPLETED
    assert stored.status == SessionStatus.COMPLETED


def test_close_requires_confirmation(manager, host, quiz_payload):
    async def scenario():
        _, machine = await new_machine(manager, host, quiz_payload)
        with pytest.raises(ValidationError):
            await machine.close()
        assert await manager.sessions.get_session(machine.session.id) is not None

        await machine.close(confirm=True)
        return machine, await manager.sessions.get_session(machine.session.id)

    machine, stored = asyncio.run(scenario())
    assert machine.phase == Phase.CLOSED
    assert stored is None


def test_reload_recovers_phase(manager, host, quiz_payload):
    async def scenario():
        quiz, machine = await new_machine(manager, host, quiz_payload)
        await machine.start()
        await machine.reveal()
        await machine.next_question()

        resumed = await SessionStateMachine.load(manager.sessions, manager.quizzes, machine.session.id)
        await machine.finish()
        finished = await SessionStateMachine.load(manager.sessions, manager.quizzes, machine.session.id)
        return quiz, resumed, finished

    quiz, resumed, finished = asyncio.run(scenario())
    assert resumed.phase == Phase.QUESTION_RESULTS
    assert resumed.current_index == 1
    assert resumed.current_question.id == quiz.questions[1].id
    assert finished.phase == Phase.COMPLETED


class FailingSessions:
    """Stands in for the session service when the store is down."""

    def __init__(self, sessions):
        self.sessions = sessions

    async def set_current_question(self, session_id, question_id):
        raise StoreError("set_current_question failed")

    async def complete_session(self, session_id):
        raise StoreError("complete_session failed")


def test_failed_write_keeps_phase(manager, host, quiz_payload):
    async def scenario():
        _, machine = await new_machine(manager, host, quiz_payload)
        machine.sessions = FailingSessions(manager.sessions)
        with pytest.raises(StoreError):
            await machine.start()
        assert machine.phase == Phase.LOBBY
        assert machine.current_question is None
        with pytest.raises(StoreError):
            await machine.finish()
        assert machine.phase == Phase.LOBBY

    asyncio.run(scenario())


class TestQuestionTimer:
    def test_counts_down_then_expires(self):
        async def scenario():
            ticks = []
            expired = asyncio.Event()
            timer = QuestionTimer(3, ticks.append, expired.set, tick_seconds=0.001).start()
            await asyncio.wait_for(expired.wait(), timeout=2)
            return ticks, timer

        ticks, timer = asyncio.run(scenario())
        assert ticks == [3, 2, 1, 0]
        assert timer.expired

    def test_cancel_prevents_expiry(self):
        async def scenario():
            expired = []
            timer = QuestionTimer(5, None, lambda: expired.append(True), tick_seconds=0.05).start()
            await asyncio.sleep(0.01)
            timer.cancel()
            await asyncio.sleep(0.4)
            return expired, timer

        expired, timer = asyncio.run(scenario())
        assert expired == []
        assert not timer.running
        assert not timer.expired
