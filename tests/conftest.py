import pytest

from core import SessionAuthority
from notifier import ExpiryNotifier
from overlay import EventChannel, OverlayPresenter

T0 = 1_700_000_000


class ManualClock:
    def __init__(self, now=T0):
        self.current = now

    def now(self):
        return self.current

    def advance(self, seconds):
        self.current += seconds


class FakeTimer:
    """Stand-in for threading.Timer that only runs when fired by the test."""

    def __init__(self, registry, interval, function, args=None, kwargs=None):
        self.registry = registry
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.registry.fired.append(self)
        return self.function(*self.args, **self.kwargs)


class FakeTimerFactory:
    def __init__(self):
        self.timers = []
        self.fired = []

    def __call__(self, interval, function, args=None, kwargs=None):
        timer = FakeTimer(self, interval, function, args, kwargs)
        self.timers.append(timer)
        return timer

    @property
    def last(self):
        return self.timers[-1]

    @property
    def pending(self):
        return [t for t in self.timers if t.started and not t.cancelled]


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def timers():
    return FakeTimerFactory()


@pytest.fixture
def overlays():
    return []


@pytest.fixture
def authority(clock, timers, overlays):
    notifier = ExpiryNotifier(on_expire=lambda payload, _session_id: overlays.append(payload),
                              timer_factory=timers)
    return SessionAuthority(clock=clock, notifier=notifier)


@pytest.fixture
def channel():
    return EventChannel()


@pytest.fixture
def presenter(channel, clock, dwell_timers):
    return OverlayPresenter(channel=channel, clock=clock, timer_factory=dwell_timers)


@pytest.fixture
def dwell_timers():
    # kept apart from the expiry timers in `timers`
    return FakeTimerFactory()
