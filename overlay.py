import json
import logging
import queue
import threading

from clock import SystemClock

logger = logging.getLogger(__name__)

OVERLAY_CONFIG_EVENT = 'overlay-config'
OVERLAY_CLOSED_EVENT = 'overlay-closed'


def format_sse(event, payload):
    """Renders one Server-Sent Events frame."""
    return f"event: {event}\ndata: {json.dumps(payload)}\n\n"


class EventChannel:
    """Fan-out of presenter events to every subscribed window."""

    def __init__(self, maxsize=100):
        self._subscribers = set()
        self._lock = threading.Lock()
        self._maxsize = maxsize

    def subscribe(self):
        q = queue.Queue(maxsize=self._maxsize)
        with self._lock:
            self._subscribers.add(q)
        return q

    def unsubscribe(self, q):
        with self._lock:
            self._subscribers.discard(q)

    def publish(self, event, payload):
        with self._lock:
            subscribers = list(self._subscribers)
        for q in subscribers:
            try:
                q.put_nowait((event, payload))
            except queue.Full:
                logger.warning("Dropping %s event for a subscriber that is not reading", event)
        return len(subscribers)

    @property
    def subscriber_count(self):
        with self._lock:
            return len(self._subscribers)


class OverlayPresenter:
    """
    Tracks the break overlay and the main control window.

    The overlay closes itself after its dwell time when auto-close is on and
    the dwell is positive; a dwell of 0 keeps it up until dismissed. Each
    overlay gets a new generation so a dwell timer from an earlier overlay
    cannot close a later one.

    Closing an overlay that a session expiry produced calls
    `on_dismiss(session_id)` with that session's id. Overlays opened
    directly, and closes while nothing is shown, dismiss nothing.
    """

    def __init__(self, channel=None, on_dismiss=None, auto_close=True,
                 clock=None, timer_factory=threading.Timer):
        self.channel = channel or EventChannel()
        self.on_dismiss = on_dismiss
        self.auto_close = auto_close
        self.clock = clock or SystemClock()
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._generation = 0
        self._dwell_timer = None
        self._session_id = None
        self._state = self._idle_state()

    @staticmethod
    def _idle_state():
        return {
            'overlay_visible': False,
            'main_window_visible': True,
            'message': None,
            'overlay_dwell_seconds': None,
            'shown_at': None,
            'auto_close_at': None,
        }

    # --- Window lifecycle ---

    def show(self, payload, session_id=None):
        return self.create_overlay_window(payload.get('message', ''),
                                          payload.get('overlay_dwell_seconds', 0),
                                          session_id=session_id)

    def create_overlay_window(self, message, overlay_dwell_seconds, session_id=None):
        with self._lock:
            self._generation += 1
            generation = self._generation
            self._cancel_dwell_locked()
            self._session_id = session_id
            now = self.clock.now()
            auto_close = self.auto_close and overlay_dwell_seconds > 0
            self._state = {
                'overlay_visible': True,
                'main_window_visible': False,
                'message': message,
                'overlay_dwell_seconds': overlay_dwell_seconds,
                'shown_at': now,
                'auto_close_at': now + overlay_dwell_seconds if auto_close else None,
            }
            if auto_close:
                timer = self._timer_factory(overlay_dwell_seconds, self._dwell_elapsed, args=(generation,))
                timer.daemon = True
                self._dwell_timer = timer
                timer.start()
        logger.info("Overlay window shown (dwell %ss, auto-close %s)", overlay_dwell_seconds,
                    'on' if auto_close else 'off')
        self.channel.publish(OVERLAY_CONFIG_EVENT,
                             {'message': message, 'overlay_dwell_seconds': overlay_dwell_seconds})
        return generation

    def close(self):
        return self.close_overlay_window()

    def close_overlay_window(self):
        return self._close()

    def _close(self, generation=None):
        with self._lock:
            if generation is not None and (generation != self._generation
                                           or not self._state['overlay_visible']):
                return False
            was_visible = self._state['overlay_visible']
            session_id = self._session_id
            self._session_id = None
            self._cancel_dwell_locked()
            self._state = self._idle_state()
        if not was_visible:
            return False
        logger.info("Overlay window closed, main window shown")
        self.channel.publish(OVERLAY_CLOSED_EVENT, {})
        if self.on_dismiss is not None and session_id is not None:
            self.on_dismiss(session_id)
        return True

    def state(self):
        with self._lock:
            return dict(self._state)

    @property
    def visible(self):
        with self._lock:
            return self._state['overlay_visible']

    # --- Helpers ---

    def _dwell_elapsed(self, generation):
        logger.info("Dwell time elapsed, closing overlay")
        self._close(generation)

    def _cancel_dwell_locked(self):
        if self._dwell_timer is not None:
            self._dwell_timer.cancel()
            self._dwell_timer = None
