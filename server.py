import logging
import queue

import pytz
from flask import Flask, Response, jsonify, request, stream_with_context

import config
from core import InvalidConfig, SessionAuthority, SessionConfig
from notifier import ExpiryNotifier
from overlay import EventChannel, OverlayPresenter, format_sse

logger = logging.getLogger(__name__)

# Seconds between keep-alive comments on an idle event stream
EVENT_KEEPALIVE_SECONDS = 15


def resolve_timezone(name):
    """Looks up a pytz timezone, falling back to UTC for unknown names."""
    try:
        return pytz.timezone(name)
    except pytz.exceptions.UnknownTimeZoneError:
        logger.warning("Unknown timezone %r, using UTC", name)
        return pytz.utc


def create_app(authority=None, presenter=None, channel=None, settings=None):
    """Wires clock -> authority -> notifier -> presenter and registers the API."""
    settings = settings or config.load_settings()
    if presenter is not None:
        if channel is not None and channel is not presenter.channel:
            raise ValueError("channel must be the presenter's own event channel")
        channel = presenter.channel
    channel = channel or EventChannel()

    if authority is None:
        authority = SessionAuthority(notifier=ExpiryNotifier(),
                                     tz=resolve_timezone(settings['timezone']))
    if presenter is None:
        presenter = OverlayPresenter(channel=channel, auto_close=settings['overlay_auto_close'])
    if presenter.on_dismiss is None:
        presenter.on_dismiss = authority.dismiss
    if authority.notifier.on_expire is None:
        authority.notifier.on_expire = presenter.show

    app = Flask(__name__)
    app.config['AUTHORITY'] = authority
    app.config['PRESENTER'] = presenter
    app.config['CHANNEL'] = channel

    # --- SESSION ENDPOINTS ---

    @app.route('/api/start_session', methods=['POST'])
    def start_session():
        """Endpoint to start (or replace) the break session."""
        data = request.get_json(silent=True)
        if data is None:
            return jsonify({'success': False, 'error': 'Invalid request format.'}), 400
        try:
            session_config = SessionConfig.from_payload(data, defaults=config.DEFAULT_SESSION_CONFIG)
        except InvalidConfig as e:
            return jsonify({'success': False, 'error': str(e)}), 400

        record = authority.start(session_config)
        return jsonify({'success': True, 'session': record.to_status(record.start_time, authority.tz)})

    @app.route('/api/stop_session', methods=['POST'])
    def stop_session():
        """Endpoint to cancel the session. Idempotent."""
        stopped = authority.stop()
        return jsonify({'success': True, 'stopped': stopped})

    @app.route('/api/session_status', methods=['GET'])
    def get_session_status():
        """Endpoint for control surfaces to poll the current session."""
        return jsonify(authority.status())

    @app.route('/api/session_config', methods=['GET'])
    def get_session_config():
        """Endpoint queried once by the overlay when it is shown."""
        return jsonify(authority.peek_config_for_overlay())

    # --- OVERLAY ENDPOINTS ---

    @app.route('/api/overlay', methods=['GET'])
    def overlay_state():
        return jsonify(presenter.state())

    @app.route('/api/overlay/open', methods=['POST'])
    def create_overlay_window():
        """Endpoint to show the overlay directly, outside of a session expiry."""
        data = request.get_json(silent=True)
        if data is None:
            return jsonify({'success': False, 'error': 'Invalid request format.'}), 400
        try:
            overlay_config = SessionConfig.from_payload(
                {**data, 'duration_minutes': 0}, defaults=config.DEFAULT_SESSION_CONFIG)
        except InvalidConfig as e:
            return jsonify({'success': False, 'error': str(e)}), 400

        presenter.create_overlay_window(overlay_config.message, overlay_config.overlay_dwell_seconds)
        return jsonify({'success': True})

    @app.route('/api/overlay/close', methods=['POST'])
    def close_overlay_window():
        """Endpoint used by the overlay's close button."""
        closed = presenter.close_overlay_window()
        return jsonify({'success': True, 'closed': closed})

    @app.route('/api/events', methods=['GET'])
    def events():
        """Server-Sent Events stream carrying overlay-config pushes."""
        subscriber = channel.subscribe()

        def stream():
            try:
                while True:
                    try:
                        event, payload = subscriber.get(timeout=EVENT_KEEPALIVE_SECONDS)
                    except queue.Empty:
                        yield ": keep-alive\n\n"
                        continue
                    yield format_sse(event, payload)
            finally:
                channel.unsubscribe(subscriber)

        return Response(stream_with_context(stream()), mimetype='text/event-stream',
                        headers={'Cache-Control': 'no-cache'})

    return app


def main():
    settings = config.load_settings()
    config.configure_logging(settings['log_level'])
    app = create_app(settings=settings)
    logger.info("Break timer listening on %s:%s", settings['host'], settings['port'])
    app.run(host=settings['host'], port=settings['port'], threaded=True)


if __name__ == '__main__':
    main()
