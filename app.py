"""
PvP Stats Tracker - Flask Application

Main entry point. Runs a small Flask API in front of the stats tracker and
drives the foreground loop that owns all session state on its own thread.
Every request that touches sessions is marshalled onto that loop.
"""

import atexit
import logging
import os
import threading

from flask import Flask, abort, jsonify, request

from config import config
from engine import ForegroundLoop, PlayerSession, SchedulerConfig, StatsTracker, build_tracker
from persistence import StatsRepository

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Requests wait this long for the foreground loop before giving up
FOREGROUND_TIMEOUT = 5.0


def setup_logging() -> None:
    os.makedirs(config.LOG_DIR, exist_ok=True)
    logging.basicConfig(
        level=logging.DEBUG if config.DEBUG else logging.INFO,
        format=LOG_FORMAT,
        handlers=[
            logging.FileHandler(os.path.join(config.LOG_DIR, 'stats.log')),
            logging.StreamHandler()
        ]
    )


def create_app(tracker: StatsTracker, foreground: ForegroundLoop) -> Flask:
    """
    Build the Flask app for a tracker.

    The caller is responsible for running `foreground` on some thread.
    """
    app = Flask(__name__)

    def on_foreground(fn, *args):
        try:
            return foreground.call(fn, *args, timeout=FOREGROUND_TIMEOUT)
        except Exception as e:
            logger.error(f"Foreground call {getattr(fn, '__name__', fn)} failed: {e}")
            abort(503)

    def required(payload: dict, field: str) -> str:
        value = payload.get(field)
        if not value:
            abort(400, description=f"'{field}' is required")
        return str(value)

    @app.route('/health')
    def health():
        """Health check endpoint for monitoring"""
        return {
            'status': 'ok',
            'persistence': tracker.cache.persistence_enabled,
            'active_sessions': len(on_foreground(tracker.cache.active_keys)),
            'cached_records': on_foreground(len, tracker.cache),
        }

    @app.route('/api/leaderboard')
    def leaderboard():
        view = tracker.leaderboard
        return {
            'metric': view.metric,
            'entries': [{'name': name, 'value': value} for name, value in view.snapshot()],
        }

    @app.route('/api/players/<session_id>')
    def player_stats(session_id):
        def lookup():
            record = tracker.stats_for(session_id)
            return record.to_dict() if record is not None else None

        stats = on_foreground(lookup)
        if stats is None:
            abort(404)
        return stats

    @app.route('/api/sessions', methods=['POST'])
    def join():
        payload = request.get_json(silent=True) or {}
        session = PlayerSession(
            session_id=required(payload, 'session_id'),
            display_name=required(payload, 'display_name'),
            external_id=payload.get('external_id'),
        )
        scheduled = on_foreground(tracker.on_join, session)
        return {'session_id': session.session_id, 'loading': scheduled}, 202

    @app.route('/api/sessions/<session_id>', methods=['DELETE'])
    def leave(session_id):
        record = on_foreground(tracker.on_quit, session_id)
        return {'session_id': session_id, 'had_stats': record is not None}

    @app.route('/api/events/kill', methods=['POST'])
    def kill():
        payload = request.get_json(silent=True) or {}
        on_foreground(tracker.on_kill, payload.get('killer_id'), required(payload, 'victim_id'))
        return '', 204

    @app.route('/api/events/death', methods=['POST'])
    def death():
        payload = request.get_json(silent=True) or {}
        on_foreground(tracker.on_death, required(payload, 'victim_id'))
        return '', 204

    @app.route('/api/events/aux-kill', methods=['POST'])
    def aux_kill():
        payload = request.get_json(silent=True) or {}
        on_foreground(tracker.on_aux_kill, required(payload, 'killer_id'))
        return '', 204

    @app.errorhandler(400)
    @app.errorhandler(404)
    @app.errorhandler(503)
    def json_error(error):
        return jsonify({'error': error.description}), error.code

    return app


def main() -> None:
    setup_logging()

    logger.info('=' * 60)
    logger.info('PvP Stats Tracker Starting')
    logger.info(f'Host: {config.HOST}:{config.PORT}')
    logger.info(f'Leaderboard: top {config.TOP_ITEMS} by {config.TOP_TYPE}')
    logger.info('=' * 60)

    repository = StatsRepository.from_url(config.DATABASE_URL, pool_size=config.POOL_SIZE,
                                          use_external_id=config.USE_EXTERNAL_ID)
    repository.ensure_schema()

    foreground = ForegroundLoop()
    settings = SchedulerConfig(
        worker_threads=config.WORKER_THREADS,
        save_interval=config.SAVE_INTERVAL,
        toplist_interval=config.TOPLIST_INTERVAL,
        top_type=config.TOP_TYPE,
        top_items=config.TOP_ITEMS,
    )
    tracker = build_tracker(repository, settings, foreground)

    stop = threading.Event()
    stopped = threading.Event()

    def foreground_main():
        try:
            foreground.run_forever(stop)
        finally:
            # Shutdown flush runs on the thread that owns the sessions
            tracker.shutdown()
            stopped.set()

    thread = threading.Thread(target=foreground_main, name='stats-foreground', daemon=True)
    thread.start()
    tracker.start()

    def on_exit():
        stop.set()
        stopped.wait(30)

    atexit.register(on_exit)

    app = create_app(tracker, foreground)
    app.run(host=config.HOST, port=config.PORT, debug=config.DEBUG, threaded=True, use_reloader=False)


if __name__ == '__main__':
    main()
