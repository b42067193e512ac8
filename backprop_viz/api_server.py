"""
api_server.py
~~~~~~~~~~~~~

Flask-based REST API server with WebSocket support for the network visualizer.

This module provides endpoints for:
- Creating visualization sessions, each owning one NetworkEngine
- Stepping a session through forward pass, backpropagation and weight update
- Changing architecture, sample, learning rate, activation and mode
- Auto-playing a session with snapshots pushed via WebSockets

The server uses:
- Flask for REST API endpoints
- Flask-SocketIO for WebSocket communication
- Gevent for auto-play and cleanup background tasks
"""

import os
import sys
import time
import uuid
import logging
from typing import Any, Callable, Dict, Optional, Tuple

import gevent
from flask import Flask, request, jsonify
from flask_cors import CORS
from flask_socketio import SocketIO

from backprop_viz.config import EngineConfig, parse_changes
from backprop_viz.engine import NetworkEngine
from backprop_viz.errors import ConfigurationError, PreconditionError
from backprop_viz.hints import learning_hints

# ============================================================================
# LOGGING SETUP
# ============================================================================

def configure_logging() -> None:
    """
    Set up logging based on environment.

    - In production: Show fewer logs (less noise) but keep important logs
    - In development: Show more detailed logs for debugging
    """
    log_level_str = os.getenv('LOG_LEVEL', 'INFO').upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    is_production = os.getenv('FLASK_ENV') == 'production'

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if is_production:
        for logger_name in ['socketio', 'engineio', 'engineio.server',
                            'socketio.server', 'werkzeug']:
            logging.getLogger(logger_name).setLevel(logging.WARNING)
        logging.getLogger('backprop_viz').setLevel(logging.INFO)
    else:
        logging.getLogger('socketio').setLevel(logging.INFO)
        logging.getLogger('engineio').setLevel(logging.INFO)


configure_logging()
logger = logging.getLogger(__name__)


def _env_float(name: str, default: float) -> float:
    """Read a positive float from the environment, falling back to default."""
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"Ignoring {name}={raw!r}: not a number")
        return default
    if value <= 0:
        logger.warning(f"Ignoring {name}={raw!r}: must be positive")
        return default
    return value


AUTOPLAY_INTERVAL = _env_float('AUTOPLAY_INTERVAL', 1.0)
SESSION_TTL_HOURS = _env_float('SESSION_TTL_HOURS', 24.0)

# ============================================================================
# FLASK APP SETUP
# ============================================================================

app = Flask(__name__)
CORS(app, resources={r"/*": {"origins": "*"}})

is_production = os.getenv('FLASK_ENV') == 'production'

# SocketIO pushes snapshots to the renderer after every step
socketio = SocketIO(
    app,
    cors_allowed_origins="*",
    async_mode='gevent',
    logger=not is_production,
    engineio_logger=not is_production,
    ping_timeout=60,
    ping_interval=25
)

# ============================================================================
# GLOBAL STATE
# ============================================================================

# Visualization sessions: {session_id: session_info}
# session_info = {'engine', 'playing', 'generation', 'interval', 'last_used'}
sessions: Dict[str, Dict[str, Any]] = {}


def _touch(session: Dict[str, Any]) -> None:
    session['last_used'] = time.monotonic()


def _get_session(session_id: str) -> Optional[Dict[str, Any]]:
    session = sessions.get(session_id)
    if session is not None:
        _touch(session)
    return session


def _not_found(session_id: str) -> Tuple[Any, int]:
    logger.warning(f"Request for non-existent session: {session_id}")
    return jsonify({'error': 'Session not found'}), 404


def _engine_call(
    session_id: str,
    operation: Callable[[NetworkEngine], Dict[str, Any]]
) -> Tuple[Any, int]:
    """
    Run ``operation`` on a session's engine and turn errors into responses.

    ConfigurationError maps to 400, PreconditionError to 409.
    """
    session = _get_session(session_id)
    if session is None:
        return _not_found(session_id)

    try:
        return jsonify(operation(session['engine'])), 200
    except ConfigurationError as e:
        logger.warning(f"Rejected configuration for session {session_id}: {e}")
        return jsonify({'error': str(e)}), 400
    except PreconditionError as e:
        logger.warning(f"Rejected operation for session {session_id}: {e}")
        return jsonify({'error': str(e)}), 409
    except Exception as e:
        logger.exception(f"Error in session {session_id}: {e}")
        return jsonify({'error': 'Internal server error'}), 500


def emit_update(session_id: str, action: Optional[str], engine: NetworkEngine) -> None:
    """Push the current snapshot to connected clients."""
    socketio.emit('network_update', {
        'session_id': session_id,
        'action': action,
        'snapshot': engine.snapshot().to_dict()
    })


# ============================================================================
# BACKGROUND TASKS
# ============================================================================

# Flag to ensure cleanup task only starts once
_cleanup_task_started = False


def remove_idle_sessions(ttl_seconds: float) -> int:
    """
    Drop sessions that have not been used for ``ttl_seconds``.

    Returns:
        Number of sessions removed
    """
    now = time.monotonic()
    idle = [
        sid for sid, info in sessions.items()
        if now - info['last_used'] > ttl_seconds
    ]
    for sid in idle:
        sessions[sid]['playing'] = False
        del sessions[sid]
        logger.info(f"Removed idle session {sid}")
    return len(idle)


def cleanup_idle_sessions_task() -> None:
    """
    Background task that removes idle sessions once an hour.

    Sessions are in memory only, so a restart clears them anyway.
    """
    logger.info(f"Session cleanup task started (ttl={SESSION_TTL_HOURS}h)")

    while True:
        try:
            removed = remove_idle_sessions(SESSION_TTL_HOURS * 3600)
            if removed:
                logger.info(f"Cleanup completed: removed {removed} idle session(s)")
            gevent.sleep(3600)
        except Exception as e:
            logger.exception(f"Error during session cleanup: {e}")
            gevent.sleep(3600)


def start_cleanup_task() -> None:
    """
    Start the background cleanup task.

    Uses gevent.spawn() directly instead of socketio.start_background_task()
    to ensure it works both when running directly and under gunicorn.
    This function is idempotent - calling it multiple times has no effect.
    """
    global _cleanup_task_started

    if _cleanup_task_started:
        logger.debug("Cleanup task already started, skipping")
        return

    _cleanup_task_started = True
    gevent.spawn(cleanup_idle_sessions_task)


start_cleanup_task()


def autoplay_task(
    session_id: str,
    generation: int,
    sleep: Callable[[float], Any] = gevent.sleep
) -> None:
    """
    Advance a session repeatedly until paused, removed or finished.

    The engine has no timers of its own; this task is the external scheduler
    that calls ``advance()`` every ``interval`` seconds. Each call to play
    bumps the session generation; a task whose generation is out of date
    exits without stepping, so only one task drives a session.
    """
    reason = 'paused'
    try:
        while True:
            session = sessions.get(session_id)
            if session is None:
                reason = 'removed'
                break
            if session['generation'] != generation:
                logger.debug(
                    f"Auto-play task {generation} for session {session_id} "
                    f"superseded"
                )
                return
            if not session['playing']:
                break

            engine = session['engine']
            action = engine.advance()
            if action is None:
                session['playing'] = False
                reason = 'complete'
                break

            emit_update(session_id, action.value, engine)
            sleep(session['interval'])

    except Exception as e:
        logger.exception(f"Auto-play failed for session {session_id}: {e}")
        reason = 'error'
        if session_id in sessions:
            sessions[session_id]['playing'] = False

    logger.info(f"Auto-play stopped for session {session_id}: {reason}")
    socketio.emit('autoplay_stopped', {
        'session_id': session_id,
        'reason': reason
    })


# ============================================================================
# API ENDPOINTS
# ============================================================================

@app.route('/api/status', methods=['GET'])
def get_status():
    """Return server status and the number of sessions."""
    playing = sum(1 for info in sessions.values() if info['playing'])
    return jsonify({
        'status': 'online',
        'sessions': len(sessions),
        'playing': playing
    }), 200


@app.route('/api/sessions', methods=['POST'])
def create_session():
    """
    Create a new visualization session.

    Request body (all optional):
        {
            'architecture': [2, 3, 1],
            'sample': {'input': [0.3, 0.9], 'target': [1.0]},
            'learning_rate': 0.1,
            'activation': 'sigmoid',
            'mode': 'backward',
            'seed': 42
        }

    Returns:
        JSON with session_id, config and snapshot
    """
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({'error': 'Request body must be a JSON object'}), 400
    seed = data.pop('seed', None)
    if seed is not None and (isinstance(seed, bool) or not isinstance(seed, int)):
        return jsonify({'error': 'seed must be an integer'}), 400

    try:
        config = EngineConfig.from_dict(data)
    except ConfigurationError as e:
        logger.warning(f"Invalid session configuration: {e}")
        return jsonify({'error': str(e)}), 400

    session_id = str(uuid.uuid4())
    engine = NetworkEngine(config, seed=seed)
    sessions[session_id] = {
        'engine': engine,
        'playing': False,
        'generation': 0,
        'interval': AUTOPLAY_INTERVAL,
        'last_used': time.monotonic()
    }

    logger.info(
        f"Created session {session_id} with architecture {config.architecture}"
    )

    return jsonify({
        'session_id': session_id,
        'config': config.to_dict(),
        'snapshot': engine.snapshot().to_dict()
    }), 201


@app.route('/api/sessions', methods=['GET'])
def list_sessions():
    """List all sessions with their configuration and phase."""
    return jsonify({'sessions': [
        {
            'session_id': sid,
            'config': info['engine'].config.to_dict(),
            'phase': info['engine'].snapshot().phase.value,
            'playing': info['playing']
        }
        for sid, info in sessions.items()
    ]}), 200


@app.route('/api/sessions/<session_id>', methods=['GET'])
def get_session(session_id: str):
    """Return the current snapshot of a session."""
    return _engine_call(
        session_id,
        lambda engine: {
            'session_id': session_id,
            'config': engine.config.to_dict(),
            'snapshot': engine.snapshot().to_dict()
        }
    )


@app.route('/api/sessions/<session_id>', methods=['DELETE'])
def delete_session(session_id: str):
    """Stop and remove a session."""
    session = sessions.pop(session_id, None)
    if session is None:
        return _not_found(session_id)

    session['playing'] = False
    logger.info(f"Deleted session {session_id}")
    return jsonify({'session_id': session_id, 'deleted': True}), 200


@app.route('/api/sessions/<session_id>/config', methods=['PATCH'])
def update_config(session_id: str):
    """
    Change the configuration of a session.

    Request body: any subset of the keys accepted by create_session
    (except seed). Changing the architecture reinitializes the network.
    """
    data = request.get_json(silent=True)

    def apply(engine: NetworkEngine) -> Dict[str, Any]:
        snapshot = engine.configure(**parse_changes(data))
        emit_update(session_id, None, engine)
        return {
            'session_id': session_id,
            'config': engine.config.to_dict(),
            'snapshot': snapshot.to_dict()
        }

    return _engine_call(session_id, apply)


@app.route('/api/sessions/<session_id>/step', methods=['POST'])
def step_session(session_id: str):
    """
    Advance a session by exactly one phase.

    Returns:
        JSON with the action performed (null when nothing was left to do)
        and the new snapshot
    """
    def step(engine: NetworkEngine) -> Dict[str, Any]:
        action = engine.advance()
        value = action.value if action is not None else None
        emit_update(session_id, value, engine)
        return {
            'session_id': session_id,
            'action': value,
            'snapshot': engine.snapshot().to_dict()
        }

    return _engine_call(session_id, step)


@app.route('/api/sessions/<session_id>/reset', methods=['POST'])
def reset_session(session_id: str):
    """Reinitialize a session's network with new random weights."""
    def reset(engine: NetworkEngine) -> Dict[str, Any]:
        snapshot = engine.reset()
        emit_update(session_id, None, engine)
        return {'session_id': session_id, 'snapshot': snapshot.to_dict()}

    session = sessions.get(session_id)
    if session is not None:
        session['playing'] = False
    return _engine_call(session_id, reset)


@app.route('/api/sessions/<session_id>/play', methods=['POST'])
def play_session(session_id: str):
    """
    Start auto-play for a session.

    Request body (optional):
        {'interval': 1.0}  # seconds between steps

    Returns:
        JSON with session_id, interval and status
    """
    session = _get_session(session_id)
    if session is None:
        return _not_found(session_id)

    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({'error': 'Request body must be a JSON object'}), 400
    interval = data.get('interval', session['interval'])
    if isinstance(interval, bool) or not isinstance(interval, (int, float)) or interval <= 0:
        return jsonify({'error': 'interval must be a positive number'}), 400

    session['interval'] = float(interval)
    if session['playing']:
        return jsonify({
            'session_id': session_id,
            'interval': session['interval'],
            'status': 'already_playing'
        }), 200

    session['playing'] = True
    session['generation'] += 1
    socketio.start_background_task(
        autoplay_task, session_id, session['generation']
    )
    logger.info(f"Auto-play started for session {session_id} every {interval}s")

    return jsonify({
        'session_id': session_id,
        'interval': session['interval'],
        'status': 'playing'
    }), 202


@app.route('/api/sessions/<session_id>/pause', methods=['POST'])
def pause_session(session_id: str):
    """Stop auto-play; the background task exits before its next step."""
    session = _get_session(session_id)
    if session is None:
        return _not_found(session_id)

    session['playing'] = False
    return jsonify({'session_id': session_id, 'status': 'paused'}), 200


@app.route('/api/sessions/<session_id>/hints', methods=['GET'])
def get_hints(session_id: str):
    """Return learning hints for the session's activation and phase."""
    def hints(engine: NetworkEngine) -> Dict[str, Any]:
        snapshot = engine.snapshot()
        return {
            'session_id': session_id,
            'description': snapshot.description,
            **learning_hints(snapshot.activation, snapshot.mode, snapshot.phase)
        }

    return _engine_call(session_id, hints)


# ============================================================================
# SERVER STARTUP
# ============================================================================

if __name__ == '__main__':
    is_cloud = bool(os.environ.get('PORT'))
    port = int(os.environ.get('PORT', 8000))

    if is_cloud:
        logger.info(f"Starting server in production mode on port {port}")
    else:
        logger.info(f"Starting server at http://localhost:{port}/")

    start_cleanup_task()

    try:
        socketio.run(
            app,
            host='0.0.0.0',
            port=port,
            debug=not is_cloud,
            use_reloader=False,
            allow_unsafe_werkzeug=True
        )
    except OSError as e:
        if "Address already in use" in str(e):
            logger.error(f"Port {port} is already in use.")
            sys.exit(1)
        else:
            raise
