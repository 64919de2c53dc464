"""
Control-surface client for the break timer server.

Talks to the session authority over its JSON API and keeps a countdown in
sync by re-deriving the remaining time from the session's absolute start
timestamp on every poll, never from a locally decremented counter.
"""
import argparse
import logging
import sys
import threading

import requests
import requests.exceptions

import config
from clock import SystemClock
from core import InvalidConfig

logger = logging.getLogger(__name__)


class TransientQueryFailure(Exception):
    """The server could not be reached or answered with a server error."""


def remaining_from_status(status, now):
    """Seconds left for a status payload at `now`, clamped at zero."""
    if not status:
        return 0
    remaining = status['duration_minutes'] * 60 - (now - status['start_time_epoch_seconds'])
    return max(0, remaining)


def format_time(seconds):
    """Formats seconds as MM:SS."""
    mins, secs = divmod(max(0, int(seconds)), 60)
    return f"{mins:02d}:{secs:02d}"


class SessionClient:
    def __init__(self, base_url=None, timeout=config.REQUEST_TIMEOUT, session=None):
        self.base_url = (base_url or config.DEFAULT_SETTINGS['url']).rstrip('/')
        self.timeout = timeout
        self.http = session or requests.Session()

    def _request(self, method, path, payload=None):
        url = f"{self.base_url}{path}"
        try:
            resp = self.http.request(method, url, json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise TransientQueryFailure(f"{method} {path} failed: {e}") from e
        if resp.status_code >= 500:
            raise TransientQueryFailure(f"{method} {path} returned {resp.status_code}")
        if resp.status_code == 400:
            try:
                error = resp.json().get('error')
            except ValueError:
                error = resp.text
            raise InvalidConfig(error or 'Invalid request.')
        resp.raise_for_status()
        return resp.json()

    # --- Boundary operations ---

    def start_session(self, duration_minutes, message='', overlay_dwell_seconds=0):
        return self._request('POST', '/api/start_session', {
            'duration_minutes': duration_minutes,
            'message': message,
            'overlay_dwell_seconds': overlay_dwell_seconds,
        })

    def stop_session(self):
        return self._request('POST', '/api/stop_session')

    def get_session_status(self):
        return self._request('GET', '/api/session_status')

    def get_session_config(self):
        return self._request('GET', '/api/session_config')

    def close_overlay_window(self):
        return self._request('POST', '/api/overlay/close')


class CountdownPoller:
    """
    Polls the session status on a fixed interval and reports the remaining
    seconds to `on_update`, or None once the session is gone.

    A failed poll is logged and skipped; the last known state stands until
    the next tick succeeds.
    """

    def __init__(self, client, on_update, interval=config.POLL_INTERVAL_SECONDS, clock=None):
        self.client = client
        self.on_update = on_update
        self.interval = interval
        self.clock = clock or SystemClock()
        self.last_status = None
        self._stop_event = None
        self._thread = None
        self._lock = threading.Lock()

    def start(self):
        """Begins polling, replacing any interval already running."""
        self.stop()
        stop_event = threading.Event()
        thread = threading.Thread(target=self._run, args=(stop_event,), daemon=True)
        with self._lock:
            self._stop_event = stop_event
            self._thread = thread
        thread.start()

    def stop(self):
        with self._lock:
            stop_event, thread = self._stop_event, self._thread
            self._stop_event = self._thread = None
        if stop_event is not None:
            stop_event.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=max(self.interval * 2, 1.0))

    def wait(self, timeout=None):
        """Blocks until the current interval ends. Returns True if it has."""
        with self._lock:
            thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    @property
    def running(self):
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    def tick(self):
        """Runs one poll. Returns False once the session has ended."""
        try:
            status = self.client.get_session_status()
        except TransientQueryFailure as e:
            logger.warning("Failed to sync with backend timer: %s", e)
            return True

        self.last_status = status
        remaining = remaining_from_status(status, self.clock.now())
        if status is None or remaining <= 0:
            self.on_update(None)
            return False
        self.on_update(remaining)
        return True

    def _run(self, stop_event):
        while not stop_event.is_set():
            if not self.tick():
                break
            stop_event.wait(self.interval)


# --- Command line ---

def _print_countdown(remaining):
    if remaining is None:
        print("Session ended.")
    else:
        print(f"\r{format_time(remaining)}", end='', flush=True)


def build_parser():
    parser = argparse.ArgumentParser(description="Break timer control surface")
    parser.add_argument('--url', default=None, help="Server URL (default from BREAKTIMER_URL)")
    sub = parser.add_subparsers(dest='command', required=True)

    start = sub.add_parser('start', help="Start a session")
    start.add_argument('duration_minutes', type=int)
    start.add_argument('message', nargs='?', default='')
    start.add_argument('--dwell', type=int, default=0, dest='overlay_dwell_seconds',
                       help="Seconds the overlay stays before auto-closing (0 = until dismissed)")

    sub.add_parser('stop', help="Stop the current session")
    sub.add_parser('status', help="Show the current session")
    sub.add_parser('watch', help="Follow the countdown until the session ends")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    settings = config.load_settings()
    config.configure_logging(settings['log_level'])
    client = SessionClient(args.url or settings['url'])

    try:
        if args.command == 'start':
            client.start_session(args.duration_minutes, args.message, args.overlay_dwell_seconds)
            print(f"Session started: {args.duration_minutes} minutes")
        elif args.command == 'stop':
            result = client.stop_session()
            print("Session stopped." if result.get('stopped') else "No active session.")
        elif args.command == 'status':
            status = client.get_session_status()
            if status is None:
                print("No active session.")
            else:
                print(f"{format_time(status['remaining_seconds'])} remaining, ends at {status['ends_at']}")
        elif args.command == 'watch':
            poller = CountdownPoller(client, _print_countdown)
            poller.start()
            try:
                while not poller.wait(timeout=0.5):
                    pass
            except KeyboardInterrupt:
                pass
            finally:
                poller.stop()
    except InvalidConfig as e:
        print(f"Invalid session: {e}", file=sys.stderr)
        return 2
    except TransientQueryFailure as e:
        print(f"Server unavailable: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
