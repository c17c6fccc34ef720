"""Shared fixtures: controllable time and deferred callbacks."""

from types import SimpleNamespace
from typing import Callable, Optional

import pytest

from xianfeast.app.core.scheduler import CallbackScheduler, ScheduledCall


class FakeClock:
    """Manually advanced clock returning seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class _ManualCall(ScheduledCall):
    def __init__(self, due: float, callback: Callable[[], None]):
        self.due = due
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler(CallbackScheduler):
    """Scheduler whose callbacks only run when ``run_due`` is called."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.calls: list[_ManualCall] = []

    def schedule(self, delay: float, callback: Callable[[], None]) -> ScheduledCall:
        call = _ManualCall(self.clock() + delay, callback)
        self.calls.append(call)
        return call

    def pending(self) -> list[_ManualCall]:
        return [c for c in self.calls if not c.cancelled and not c.fired]

    def run_due(self) -> int:
        ran = 0
        for call in self.pending():
            if call.due <= self.clock():
                call.fired = True
                call.callback()
                ran += 1
        return ran


def make_request(
    ip: Optional[str] = "203.0.113.7",
    headers: Optional[dict] = None,
    user_id: Optional[str] = None,
    url: str = "/",
) -> SimpleNamespace:
    """Minimal request double exposing headers, client and state."""
    return SimpleNamespace(
        headers=dict(headers or {}),
        client=SimpleNamespace(host=ip) if ip else None,
        state=SimpleNamespace(user_id=user_id),
        url=url,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler(clock) -> ManualScheduler:
    return ManualScheduler(clock)


@pytest.fixture
def request_factory() -> Callable[..., SimpleNamespace]:
    return make_request
