from __future__ import annotations

import asyncio

import pytest

from personalization.core.errors import PoolSaturatedError
from personalization.services.workers import RejectionPolicy, WorkerPool

pytestmark = pytest.mark.unit


@pytest.mark.asyncio
async def test_pool_that_is_not_started_runs_inline() -> None:
    pool = WorkerPool("test", workers=2, queue_size=4, policy=RejectionPolicy.DISCARD)

    async def double(value: int) -> int:
        return value * 2

    future = await pool.submit(double, 21)

    assert future.done()
    assert future.result() == 42
    assert pool.stats()["inline"] == 1


@pytest.mark.asyncio
async def test_same_key_runs_in_submission_order() -> None:
    pool = WorkerPool("test", workers=4, queue_size=400, policy=RejectionPolicy.CALLER_RUNS)
    pool.start()
    seen: list[int] = []

    async def work(value: int) -> None:
        await asyncio.sleep(0)
        seen.append(value)

    for value in range(50):
        await pool.submit(work, value, key="user-1")
    await pool.join()
    await pool.stop()

    assert seen == list(range(50))
    assert pool.stats()["completed"] == 50


async def _blocked_pool(policy: RejectionPolicy) -> tuple[WorkerPool, asyncio.Event]:
    pool = WorkerPool("test", workers=1, queue_size=1, policy=policy)
    pool.start()
    gate = asyncio.Event()

    async def wait_for_gate() -> None:
        await gate.wait()

    await pool.submit(wait_for_gate)  # picked up by the worker
    await asyncio.sleep(0)
    await pool.submit(wait_for_gate)  # fills the queue
    return pool, gate


@pytest.mark.asyncio
async def test_caller_runs_when_saturated() -> None:
    pool, gate = await _blocked_pool(RejectionPolicy.CALLER_RUNS)

    async def quick() -> str:
        return "ran"

    future = await pool.submit(quick)

    assert future.result() == "ran"
    assert pool.stats()["inline"] == 1
    gate.set()
    await pool.stop()


@pytest.mark.asyncio
async def test_discard_when_saturated() -> None:
    pool, gate = await _blocked_pool(RejectionPolicy.DISCARD)

    async def quick() -> None:
        return None

    assert await pool.submit(quick) is None
    assert pool.stats()["discarded"] == 1
    gate.set()
    await pool.stop()


@pytest.mark.asyncio
async def test_abort_when_saturated() -> None:
    pool, gate = await _blocked_pool(RejectionPolicy.ABORT)

    async def quick() -> None:
        return None

    with pytest.raises(PoolSaturatedError):
        await pool.submit(quick)
    assert pool.stats()["rejected"] == 1
    gate.set()
    await pool.stop()


@pytest.mark.asyncio
async def test_failures_are_counted_and_do_not_kill_the_worker() -> None:
    pool = WorkerPool("test", workers=1, queue_size=10, policy=RejectionPolicy.CALLER_RUNS)
    pool.start()

    async def boom() -> None:
        raise ValueError("boom")

    async def fine() -> str:
        return "ok"

    failed = await pool.submit(boom)
    succeeded = await pool.submit(fine)
    await pool.join()

    assert isinstance(failed.exception(), ValueError)
    assert succeeded.result() == "ok"
    assert pool.stats()["failed"] == 1
    await pool.stop()
