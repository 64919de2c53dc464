import logging
import threading

logger = logging.getLogger(__name__)


class ExpiryNotifier:
    """
    One-shot trigger bound to the end time of the current session.

    Only one timer is ever pending: arming replaces the previous timer and
    disarm() cancels it. The timer hands back the session id it was armed
    for so the authority can ignore it when that session is gone.
    """

    def __init__(self, on_expire=None, timer_factory=threading.Timer):
        self.on_expire = on_expire
        self._timer_factory = timer_factory
        self._timer = None
        self._lock = threading.Lock()

    def arm(self, session_id, delay_seconds, fire):
        with self._lock:
            self._cancel_locked()
            timer = self._timer_factory(max(0, delay_seconds), fire, args=(session_id,))
            timer.daemon = True
            self._timer = timer
        timer.start()
        logger.debug("Expiry trigger armed for session %s in %ss", session_id, delay_seconds)

    def disarm(self):
        with self._lock:
            self._cancel_locked()

    @property
    def armed(self):
        return self._timer is not None

    def notify(self, record):
        """Hands the expired session's overlay payload to the presenter."""
        if self.on_expire is None:
            logger.warning("Session %s expired with no overlay presenter attached", record.session_id)
            return
        try:
            self.on_expire(record.overlay_payload(), record.session_id)
        except Exception:
            logger.exception("Overlay presenter failed for session %s", record.session_id)

    def _cancel_locked(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
