import asyncio


async def eventually(predicate, timeout: float = 3.0, interval: float = 0.01):
    """Wait until ``predicate()`` holds; timers and feed pumps run in the background."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(interval)


def correct_answer(question):
    return next(a for a in question.answers if a.is_correct)


def wrong_answer(question):
    return next(a for a in question.answers if not a.is_correct)
