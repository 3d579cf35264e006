import pytest

from tracefold.ticker import LiveTicker


class _FakeClock:
    def __init__(self, start_ms: int = 0) -> None:
        self.now_ms = start_ms
        self.sleeps: list[float] = []

    def __call__(self) -> int:
        return self.now_ms

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now_ms += int(delay * 1000)


@pytest.mark.anyio
async def test_ticker_stops_when_predicate_turns_false() -> None:
    clock = _FakeClock(start_ms=1000)
    seen: list[int] = []
    ticker = LiveTicker(
        is_active=lambda: len(seen) < 3,
        on_tick=seen.append,
        interval_s=0.5,
        clock=clock,
        sleep=clock.sleep,
    )

    fired = await ticker.run()

    assert fired == 3
    assert seen == [1000, 1500, 2000]
    assert clock.sleeps == [0.5, 0.5, 0.5]
    assert ticker.ticks == 3


@pytest.mark.anyio
async def test_ticker_does_nothing_when_idle() -> None:
    clock = _FakeClock()
    seen: list[int] = []
    ticker = LiveTicker(
        is_active=lambda: False,
        on_tick=seen.append,
        clock=clock,
        sleep=clock.sleep,
    )

    assert await ticker.run() == 0
    assert seen == []
    assert clock.sleeps == []


@pytest.mark.anyio
async def test_stop_ends_the_loop() -> None:
    clock = _FakeClock()
    ticker: LiveTicker

    def on_tick(now_ms: int) -> None:
        if now_ms >= 2000:
            ticker.stop()

    ticker = LiveTicker(
        is_active=lambda: True,
        on_tick=on_tick,
        clock=clock,
        sleep=clock.sleep,
    )

    assert await ticker.run() == 3
    assert clock.now_ms == 3000


@pytest.mark.parametrize("interval", [0, -1.0])
def test_rejects_non_positive_interval(interval: float) -> None:
    with pytest.raises(ValueError, match="interval_s"):
        LiveTicker(is_active=lambda: True, on_tick=lambda _: None, interval_s=interval)
