import json

from overlay import (
    OVERLAY_CLOSED_EVENT,
    OVERLAY_CONFIG_EVENT,
    EventChannel,
    OverlayPresenter,
    format_sse,
)


def test_format_sse():
    frame = format_sse('overlay-config', {'message': 'hi', 'overlay_dwell_seconds': 3})
    assert frame.startswith("event: overlay-config\ndata: ")
    assert frame.endswith("\n\n")
    data = frame.split("data: ", 1)[1].strip()
    assert json.loads(data) == {'message': 'hi', 'overlay_dwell_seconds': 3}


class TestEventChannel:
    def test_publish_fans_out(self):
        channel = EventChannel()
        a, b = channel.subscribe(), channel.subscribe()
        assert channel.publish('overlay-config', {'message': 'x'}) == 2
        assert a.get_nowait() == ('overlay-config', {'message': 'x'})
        assert b.get_nowait() == ('overlay-config', {'message': 'x'})

    def test_unsubscribe(self):
        channel = EventChannel()
        q = channel.subscribe()
        channel.unsubscribe(q)
        channel.unsubscribe(q)
        assert channel.subscriber_count == 0
        assert channel.publish('overlay-closed', {}) == 0

    def test_full_subscriber_is_skipped(self, caplog):
        channel = EventChannel(maxsize=1)
        q = channel.subscribe()
        channel.publish('overlay-config', {'n': 1})
        channel.publish('overlay-config', {'n': 2})
        assert q.qsize() == 1
        assert "Dropping overlay-config event" in caplog.text


class TestOverlayPresenter:
    def test_show_publishes_config_and_hides_main_window(self, presenter, channel, clock):
        events = channel.subscribe()
        presenter.show({'message': 'Stand up', 'overlay_dwell_seconds': 10})

        state = presenter.state()
        assert state['overlay_visible'] is True
        assert state['main_window_visible'] is False
        assert state['message'] == 'Stand up'
        assert state['shown_at'] == clock.now()
        assert state['auto_close_at'] == clock.now() + 10
        assert events.get_nowait() == (OVERLAY_CONFIG_EVENT, {'message': 'Stand up', 'overlay_dwell_seconds': 10})

    def test_zero_dwell_waits_for_dismissal(self, channel, clock, timers):
        presenter = OverlayPresenter(channel=channel, clock=clock, timer_factory=timers)
        presenter.create_overlay_window('stay', 0)
        assert timers.timers == []
        assert presenter.state()['auto_close_at'] is None
        assert presenter.visible

    def test_auto_close_disabled(self, channel, clock, timers):
        presenter = OverlayPresenter(channel=channel, clock=clock, auto_close=False, timer_factory=timers)
        presenter.create_overlay_window('stay', 30)
        assert timers.timers == []
        assert presenter.visible

    def test_dwell_timer_closes_and_dismisses(self, channel, clock, timers):
        dismissed = []
        presenter = OverlayPresenter(channel=channel, on_dismiss=dismissed.append,
                                     clock=clock, timer_factory=timers)
        events = channel.subscribe()
        presenter.show({'message': 'bye', 'overlay_dwell_seconds': 5}, session_id=7)
        assert timers.last.interval == 5

        timers.last.fire()
        assert not presenter.visible
        assert presenter.state()['main_window_visible'] is True
        assert dismissed == [7]
        assert [e for e, _ in (events.get_nowait(), events.get_nowait())] == [OVERLAY_CONFIG_EVENT, OVERLAY_CLOSED_EVENT]

    def test_stale_dwell_timer_does_not_close_newer_overlay(self, channel, clock, timers):
        dismissed = []
        presenter = OverlayPresenter(channel=channel, on_dismiss=dismissed.append,
                                     clock=clock, timer_factory=timers)
        presenter.show({'message': 'first', 'overlay_dwell_seconds': 5}, session_id=1)
        stale = timers.last
        presenter.show({'message': 'second', 'overlay_dwell_seconds': 60}, session_id=2)
        assert stale.cancelled

        stale.fire()
        assert presenter.visible
        assert presenter.state()['message'] == 'second'
        assert dismissed == []

    def test_dwell_timer_after_manual_close_is_ignored(self, channel, clock, timers):
        dismissed = []
        presenter = OverlayPresenter(channel=channel, on_dismiss=dismissed.append,
                                     clock=clock, timer_factory=timers)
        presenter.show({'message': 'x', 'overlay_dwell_seconds': 5}, session_id=3)
        presenter.close_overlay_window()
        timers.last.fire()
        assert dismissed == [3]

    def test_close_while_idle_dismisses_nothing(self, channel, clock, timers):
        dismissed = []
        presenter = OverlayPresenter(channel=channel, on_dismiss=dismissed.append,
                                     clock=clock, timer_factory=timers)
        assert presenter.close_overlay_window() is False
        assert dismissed == []

    def test_direct_overlay_dismisses_nothing(self, channel, clock, timers):
        dismissed = []
        presenter = OverlayPresenter(channel=channel, on_dismiss=dismissed.append,
                                     clock=clock, timer_factory=timers)
        presenter.create_overlay_window('manual', 5)
        timers.last.fire()
        assert not presenter.visible
        assert dismissed == []

    def test_close_is_idempotent(self, presenter, channel):
        events = channel.subscribe()
        assert presenter.close() is False
        presenter.create_overlay_window('x', 0)
        assert presenter.close() is True
        assert presenter.close() is False
        published = []
        while not events.empty():
            published.append(events.get_nowait()[0])
        assert published == [OVERLAY_CONFIG_EVENT, OVERLAY_CLOSED_EVENT]
