import asyncio

import pytest

from engine_bridge.transport import EngineTerminatedError
from engine_bridge.worker import CommandQueue


def test_units_run_one_at_a_time_in_order():
    async def scenario():
        queue = CommandQueue()
        log = []

        def unit(name, delay):
            async def _run():
                log.append(f"start {name}")
                await asyncio.sleep(delay)
                log.append(f"end {name}")
                return name

            return _run

        results = await asyncio.gather(
            queue.submit(unit("a", 0.03)),
            queue.submit(unit("b", 0.0)),
            queue.submit(unit("c", 0.01)),
        )
        queue.close()
        await queue.wait_closed()
        return results, log

    results, log = asyncio.run(scenario())
    assert results == ["a", "b", "c"]
    assert log == ["start a", "end a", "start b", "end b", "start c", "end c"]


def test_failure_reaches_caller_and_queue_keeps_going():
    async def scenario():
        queue = CommandQueue()

        async def broken():
            raise ValueError("bad unit")

        async def fine():
            return 42

        with pytest.raises(ValueError):
            await queue.submit(broken)
        return await queue.submit(fine)

    assert asyncio.run(scenario()) == 42


def test_close_rejects_units_that_have_not_started():
    async def scenario():
        queue = CommandQueue()
        started = asyncio.Event()
        release = asyncio.Event()

        async def running():
            started.set()
            await release.wait()
            return "finished"

        async def waiting():
            return "never"

        first = asyncio.create_task(queue.submit(running))
        second = asyncio.create_task(queue.submit(waiting))
        await started.wait()
        queue.close()
        release.set()
        await queue.wait_closed()

        with pytest.raises(EngineTerminatedError):
            await second
        with pytest.raises(EngineTerminatedError):
            await queue.submit(waiting)
        return await first

    assert asyncio.run(scenario()) == "finished"
