"""End-to-end runs of a live session through the host and participant views."""

import asyncio

from livequiz.models import ResponseOutcome, SessionStatus
from livequiz.views import SESSION_ENDED_NOTICE, ParticipantPlayView, PlayPhase

from support import correct_answer, eventually, wrong_answer


def open_player(manager, session_id, participant_id, **kwargs):
    view = ParticipantPlayView(
        manager.sessions, manager.quizzes, manager.responses, manager.fanout, session_id, participant_id, **kwargs
    )
    return view.open()


def test_full_game_with_three_players(manager, host, players, quiz_payload, monkeypatch):
    monkeypatch.setattr(manager.sessions, "generate_session_code", lambda length=None: "ABC123")

    async def scenario():
        quiz = await manager.quizzes.create_quiz(host, quiz_payload)
        session = await manager.sessions.create_session(quiz.id, host)
        joined = [await manager.sessions.join_session("abc123", p) for p in players]
        views = [await open_player(manager, session.id, j.participant.id) for j in joined]
        host_view = await manager.open_host(session.id)
        assert host_view.actions()["start"]

        first = await host_view.start()
        await manager.feed.wait_idle()
        assert all(v.current_question.id == first.id for v in views)

        await views[0].submit(answer_id=correct_answer(first).id)
        await views[1].submit(answer_id=wrong_answer(first).id)
        await views[2].submit(answer_id=correct_answer(first).id)
        await manager.feed.wait_idle()
        assert host_view.all_answered

        await host_view.reveal()
        second = await host_view.next_question()
        await manager.feed.wait_idle()
        assert all(v.current_question.id == second.id for v in views)
        assert all(v.phase == PlayPhase.QUESTION_ACTIVE and not v.submitted for v in views)

        await views[0].submit(answer_text="rome")
        await views[1].submit(answer_text=" Rome ")
        await views[2].submit(answer_text="Naples")
        await manager.feed.wait_idle()

        await host_view.reveal()
        assert await host_view.next_question() is None
        await manager.feed.wait_idle()

        stored = await manager.sessions.get_session(session.id)
        responses = await manager.responses.get_session_responses(session.id)
        for view in views:
            view.close()
        host_view.close()
        return session, stored, views, responses

    session, stored, views, responses = asyncio.run(scenario())
    assert session.code == "ABC123"
    assert stored.status == SessionStatus.COMPLETED
    assert len(responses) == 6

    for view in views:
        assert view.phase == PlayPhase.COMPLETED
        board = view.leaderboard
        assert [e.nickname for e in board] == ["Ada", "Grace", "Linus"]
        assert [e.score for e in board] == [2, 1, 1]

    # Scores always equal the number of correct responses
    for entry in views[0].leaderboard:
        correct = sum(1 for r in responses if r.participant_id == entry.participant_id and r.is_correct)
        assert entry.score == correct


def test_silent_player_gets_no_answer_and_no_points(manager, host, players, quiz_payload):
    async def scenario():
        quiz = await manager.quizzes.create_quiz(host, quiz_payload)
        session = await manager.sessions.create_session(quiz.id, host)
        joined = [await manager.sessions.join_session(session.code, p) for p in players[:2]]
        quick = await open_player(manager, session.id, joined[0].participant.id)
        silent = await open_player(manager, session.id, joined[1].participant.id, tick_seconds=0.001)
        host_view = await manager.open_host(session.id)

        question = await host_view.start()
        await manager.feed.wait_idle()
        await quick.submit(answer_id=correct_answer(question).id)
        await eventually(lambda: silent.phase == PlayPhase.QUESTION_RESULTS)
        await manager.feed.wait_idle()

        responses = await manager.responses.get_question_responses(session.id, question.id)
        board = await manager.sessions.get_leaderboard(session.id)
        for view in (quick, silent):
            view.close()
        host_view.close()
        return joined[1].participant.id, responses, board

    silent_id, responses, board = asyncio.run(scenario())
    silent_response = next(r for r in responses if r.participant_id == silent_id)
    assert silent_response.answer_id is None
    assert not silent_response.is_correct
    assert silent_response.outcome == ResponseOutcome.NO_ANSWER
    assert {e.participant_id: e.score for e in board}[silent_id] == 0


def test_host_closing_mid_question_sends_everyone_out(manager, host, players, quiz_payload):
    async def scenario():
        quiz = await manager.quizzes.create_quiz(host, quiz_payload)
        session = await manager.sessions.create_session(quiz.id, host)
        joined = [await manager.sessions.join_session(session.code, p) for p in players]
        views = [await open_player(manager, session.id, j.participant.id) for j in joined]
        host_view = await manager.open_host(session.id)

        question = await host_view.start()
        await manager.feed.wait_idle()
        await views[0].submit(answer_id=correct_answer(question).id)

        await host_view.end_session(confirm=True)
        await eventually(lambda: all(v.ended for v in views))
        return (
            views,
            await manager.sessions.get_session(session.id),
            await manager.sessions.get_participants(session.id),
            await manager.responses.get_session_responses(session.id),
        )

    views, stored, participants, responses = asyncio.run(scenario())
    assert all(v.notice == SESSION_ENDED_NOTICE for v in views)
    assert all(not v.is_open for v in views)
    assert stored is None
    assert participants == []
    assert responses == []
