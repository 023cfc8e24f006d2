"""
Hub Web Server

Flask application with the scan REST API, the push-stream (SSE) endpoint,
code image endpoints and the Socket.IO persistent channel.
"""

import logging
import time
import uuid

from flask import Flask, Response, jsonify, request
from flask_cors import CORS
from flask_socketio import SocketIO

from common import code_renderer
from common.constants import (
    CODE_ERROR_CORRECTION_LEVELS, DEFAULT_CODE_ECL, DEFAULT_CODE_SIZE,
    SCAN_EVENT, SCAN_NAMESPACE, TRANSPORT_PERSISTENT_CHANNEL
)
from common.store import (
    InvalidPayload, ScanStoreError, StoreUnavailable, WriteFailed, parse_last_known_id
)
from hub.broadcast_hub import HubClosed

logger = logging.getLogger(__name__)

MAX_AFTER_LIMIT = 500


def create_app(store, hub, secret_key: str = 'scan-hub-secret-key', cors_origins='*',
               code_size: int = DEFAULT_CODE_SIZE, code_ecl: str = DEFAULT_CODE_ECL):
    """
    Build the Flask app and its SocketIO server.

    Args:
        store: Append-only scan store
        hub: Running BroadcastHub the routes publish to
        secret_key: Flask secret key
        cors_origins: Allowed CORS origins for HTTP and Socket.IO
        code_size: Default code image size in pixels
        code_ecl: Default error correction level

    Returns:
        (app, socketio)
    """
    app = Flask(__name__)
    app.config['SECRET_KEY'] = secret_key
    CORS(app, origins=cors_origins)

    # always_connect: the connect handler emits the catch-up
    socketio = SocketIO(app, cors_allowed_origins=cors_origins, async_mode='threading',
                        always_connect=True)

    # ========================================================================
    # Scan API Routes
    # ========================================================================

    @app.route('/api/scans', methods=['POST'])
    def api_insert_scan():
        """Persist an accepted scan and push it to persistent-channel subscribers"""
        data = request.get_json(silent=True) or {}
        payload = data.get('payload')

        captured_at = data.get('capturedAt')
        if captured_at is not None:
            try:
                captured_at = float(captured_at)
            except (TypeError, ValueError):
                return jsonify({'error': 'capturedAt must be a number'}), 400

        try:
            record = store.insert(payload, captured_at)
        except InvalidPayload as e:
            logger.info(f"Rejected scan: {e}")
            return jsonify({'error': str(e)}), 400
        except StoreUnavailable as e:
            logger.error(f"Scan store unavailable: {e}")
            return jsonify({'error': 'Scan store unavailable'}), 503
        except WriteFailed as e:
            logger.error(f"Scan insert failed: {e}")
            return jsonify({'error': 'Scan could not be saved'}), 500

        hub.publish(record)
        return jsonify(record.to_dict()), 201

    def _record_or_empty(fetch):
        try:
            record = fetch()
        except StoreUnavailable as e:
            logger.error(f"Scan store unavailable: {e}")
            return jsonify({'error': 'Scan store unavailable'}), 503
        except ScanStoreError as e:
            logger.error(f"Scan query failed: {e}")
            return jsonify({'error': str(e)}), 500

        if record is None:
            return Response(status=204)
        return jsonify(record.to_dict())

    @app.route('/api/scans/latest')
    def api_latest_scan():
        """Get the most recent scan (204 if none)"""
        return _record_or_empty(store.latest)

    @app.route('/api/scans/since')
    def api_scan_since():
        """Get the newest scan after lastKnownId (204 if caught up)"""
        last_known_id = parse_last_known_id(request.args.get('lastKnownId'))
        return _record_or_empty(lambda: store.since(last_known_id))

    @app.route('/api/scans/after')
    def api_scans_after():
        """Get every scan after lastKnownId, oldest first"""
        last_known_id = parse_last_known_id(request.args.get('lastKnownId'))
        try:
            limit = min(max(int(request.args.get('limit', 100)), 1), MAX_AFTER_LIMIT)
        except ValueError:
            return jsonify({'error': 'limit must be an integer'}), 400

        try:
            records = store.after(last_known_id, limit)
        except StoreUnavailable:
            return jsonify({'error': 'Scan store unavailable'}), 503
        except ScanStoreError as e:
            logger.error(f"Scan query failed: {e}")
            return jsonify({'error': str(e)}), 500

        return jsonify({'records': [r.to_dict() for r in records]})

    @app.route('/api/check-updates')
    def api_check_updates():
        """Report whether a scan newer than lastKnownId exists"""
        last_known_id = parse_last_known_id(request.args.get('lastKnownId'))
        try:
            latest = store.latest()
        except ScanStoreError as e:
            logger.error(f"Update check failed: {e}")
            return jsonify({
                'hasUpdate': False,
                'latestScanId': 0,
                'lastKnownId': last_known_id,
                'error': str(e),
            }), 500

        latest_id = latest.id if latest else 0
        response = jsonify({
            'hasUpdate': latest_id > last_known_id,
            'latestScanId': latest_id,
            'lastKnownId': last_known_id,
        })
        response.headers['Cache-Control'] = 'no-cache, no-store, must-revalidate'
        return response

    # ========================================================================
    # Push Stream
    # ========================================================================

    @app.route('/events')
    def events():
        """Server-Sent Events stream of new scans"""
        last_known_id = parse_last_known_id(
            request.args.get('lastKnownId', request.args.get('lastId'))
        )
        try:
            stream = hub.open_push_stream(last_known_id)
        except HubClosed:
            return jsonify({'error': 'Broadcast hub is shutting down'}), 503

        response = Response(stream.sse(), mimetype='text/event-stream')
        response.headers['Cache-Control'] = 'no-cache'
        response.headers['X-Accel-Buffering'] = 'no'
        return response

    # ========================================================================
    # Code Image Routes
    # ========================================================================

    def _code_options(source):
        try:
            size = int(source.get('size', code_size))
        except (TypeError, ValueError):
            raise ValueError('size must be an integer')
        ecl = str(source.get('errorCorrectionLevel', source.get('ecl', code_ecl))).upper()
        if ecl not in CODE_ERROR_CORRECTION_LEVELS:
            raise ValueError(f"errorCorrectionLevel must be one of {', '.join(CODE_ERROR_CORRECTION_LEVELS)}")
        return size, ecl

    @app.route('/api/code.png')
    def api_code_image():
        """Code for the latest scanned payload, or a fresh UUID if none"""
        try:
            size, ecl = _code_options(request.args)
        except ValueError as e:
            return jsonify({'error': str(e)}), 400

        try:
            latest = store.latest()
            if latest is not None:
                text, source = latest.payload, 'latest-scan'
            else:
                text, source = str(uuid.uuid4()), 'initial-uuid'
        except ScanStoreError as e:
            logger.error(f"Reading latest scan for code failed: {e}")
            text, source = str(uuid.uuid4()), 'fallback-uuid'

        try:
            png = code_renderer.render_png(text, size, ecl)
        except code_renderer.CodeTooLarge as e:
            logger.error(f"Cannot render code for {source}: {e}")
            return jsonify({'error': str(e), 'source': source}), 422
        except ValueError as e:
            return jsonify({'error': str(e)}), 400

        response = Response(png, mimetype='image/png')
        response.headers['Cache-Control'] = 'no-cache'
        response.headers['X-Code-Source'] = source
        return response

    @app.route('/api/code/new', methods=['POST'])
    def api_new_code():
        """Generate a code for a brand-new UUID"""
        data = request.get_json(silent=True) or request.form
        try:
            size, ecl = _code_options(data)
            text = str(uuid.uuid4())
            image = code_renderer.render_data_url(text, size, ecl)
        except ValueError as e:
            return jsonify({'error': str(e)}), 400

        logger.info(f"New code generated: {text}")
        return jsonify({
            'sourceText': text,
            'image': image,
            'size': size,
            'errorCorrectionLevel': ecl,
            'timestamp': int(time.time() * 1000),
        })

    # ========================================================================
    # Health
    # ========================================================================

    @app.route('/health')
    def health():
        """Store reachability and subscriber counts"""
        try:
            count = store.count()
            store_ok = True
        except ScanStoreError as e:
            logger.error(f"Health check store error: {e}")
            count, store_ok = None, False

        body = {
            'status': 'ok' if store_ok and hub.running else 'degraded',
            'store_ok': store_ok,
            'scan_count': count,
            'hub': hub.get_stats(),
        }
        return jsonify(body), 200 if store_ok else 503

    # ========================================================================
    # Socket.IO Persistent Channel
    # ========================================================================

    @socketio.on('connect', namespace=SCAN_NAMESPACE)
    def handle_connect(auth=None):
        """Register a persistent-channel subscriber and send its catch-up"""
        sid = request.sid
        last_known_id = parse_last_known_id(
            request.args.get('lastKnownId', auth.get('lastKnownId') if isinstance(auth, dict) else None)
        )

        def send(envelope):
            socketio.emit(SCAN_EVENT, envelope, to=sid, namespace=SCAN_NAMESPACE)

        def close_transport():
            socketio.server.disconnect(sid, namespace=SCAN_NAMESPACE)

        try:
            conn = hub.subscribe(sid, TRANSPORT_PERSISTENT_CHANNEL, last_known_id,
                                 send=send, close_transport=close_transport)
        except HubClosed:
            logger.warning(f"Rejected subscriber {sid}: hub shutting down")
            return False

        hub.connect(conn)

    @socketio.on('disconnect', namespace=SCAN_NAMESPACE)
    def handle_disconnect(reason=None):
        hub.unsubscribe(request.sid)

    return app, socketio
