import asyncio

import pytest

from shellpilot.coalescer import ContentCoalescer


@pytest.mark.asyncio
async def test_quiet_period_flushes_buffer_once():
    flushed: list[str] = []
    coalescer = ContentCoalescer(flushed.append, flush_interval_ms=10)

    coalescer.accumulate("Hel")
    coalescer.accumulate("lo")
    assert flushed == []
    assert coalescer.pending is True

    await asyncio.sleep(0.05)

    assert flushed == ["Hello"]
    assert coalescer.pending is False
    assert coalescer.flush_count == 1


@pytest.mark.asyncio
async def test_forced_flush_is_idempotent():
    flushed: list[str] = []
    coalescer = ContentCoalescer(flushed.append, flush_interval_ms=1000)
    coalescer.accumulate("abc")

    assert coalescer.flush() == "abc"
    assert coalescer.flush() == ""
    assert flushed == ["abc"]


@pytest.mark.asyncio
async def test_forced_flush_cancels_timer():
    flushed: list[str] = []
    coalescer = ContentCoalescer(flushed.append, flush_interval_ms=10)
    coalescer.accumulate("x")

    coalescer.flush()
    await asyncio.sleep(0.05)

    assert flushed == ["x"]


@pytest.mark.asyncio
@pytest.mark.parametrize("interval_ms", [0, 1, 5, 50])
async def test_concatenation_independent_of_timer_granularity(interval_ms):
    flushed: list[str] = []
    coalescer = ContentCoalescer(flushed.append, flush_interval_ms=interval_ms)
    deltas = [f"d{index} " for index in range(40)]

    for index, delta in enumerate(deltas):
        coalescer.accumulate(delta)
        if index % 7 == 0:
            await asyncio.sleep(0.002)
    coalescer.close()
    await asyncio.sleep(0.06)

    assert "".join(flushed) == "".join(deltas)


@pytest.mark.asyncio
async def test_empty_delta_ignored():
    flushed: list[str] = []
    coalescer = ContentCoalescer(flushed.append, flush_interval_ms=10)

    coalescer.accumulate("")
    await asyncio.sleep(0.03)

    assert flushed == []
    assert coalescer.pending is False
