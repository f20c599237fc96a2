import asyncio

from livequiz.errors import StoreError
from livequiz.fanout import FanOut
from livequiz.feed import ChangeEvent, ChangeFeed, Collection, EventType

from support import eventually


def participant_event(session_id):
    return ChangeEvent(
        Collection.PARTICIPANTS, EventType.INSERT, after={"id": 1, "session_id": session_id, "nickname": "Ada"}
    )


def test_events_for_the_session_trigger_reload():
    async def scenario():
        feed = ChangeFeed()
        reloads = []

        async def reload(collection):
            reloads.append(collection)

        async with FanOut(feed).watch(5, reload):
            feed.publish(ChangeEvent(Collection.SESSIONS, EventType.UPDATE, before={"id": 5}, after={"id": 5}))
            feed.publish(participant_event(5))
            feed.publish(participant_event(6))
            feed.publish(ChangeEvent(Collection.RESPONSES, EventType.INSERT, after={"id": 9, "session_id": 5}))
            await feed.wait_idle()
        return reloads, feed.subscriber_count

    reloads, remaining = asyncio.run(scenario())
    assert sorted(c.value for c in reloads) == ["responses", "session_participants", "sessions"]
    assert remaining == 0


def test_poll_reconciles_and_survives_failures():
    async def scenario():
        feed = ChangeFeed()
        calls = []

        async def reload(collection):
            calls.append(collection)
            if len(calls) == 1:
                raise StoreError("list failed")

        watch = FanOut(feed).watch(5, reload, poll_interval=0.01).start()
        await eventually(lambda: len(calls) >= 3)
        watch.close()
        seen = len(calls)
        await asyncio.sleep(0.05)
        return calls, seen

    calls, seen = asyncio.run(scenario())
    assert set(calls) == {None}
    assert len(calls) == seen


def test_closed_watch_ignores_events():
    async def scenario():
        feed = ChangeFeed()
        reloads = []

        async def reload(collection):
            reloads.append(collection)

        watch = FanOut(feed).watch(5, reload).start()
        watch.close()
        feed.publish(participant_event(5))
        await feed.wait_idle()
        return reloads, watch.closed

    reloads, closed = asyncio.run(scenario())
    assert reloads == []
    assert closed
