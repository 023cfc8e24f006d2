#!/usr/bin/env python3
"""
Scan Hub - Main Entry Point

Owns the scan store and the broadcast hub, and serves the HTTP API,
the push stream and the Socket.IO persistent channel.
"""

import argparse
import logging
import os
import signal
import sys
from typing import Optional

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from common.logging_config import setup_logging
from hub import config
from hub.broadcast_hub import BroadcastHub
from hub.scan_store import SqliteScanStore
from hub.web_server import create_app

logger = logging.getLogger(__name__)


class HubServer:
    """
    Process-level wiring for the hub.

    The store and the broadcast hub are created once here and handed to
    the web layer; stop() is safe to call from a signal handler.
    """

    def __init__(self, db_path: str = config.DB_PATH, host: str = config.HUB_HOST,
                 port: int = config.HUB_PORT):
        self.host = host
        self.port = port
        self.store = SqliteScanStore(db_path)
        self.hub = BroadcastHub(
            self.store,
            heartbeat_interval=config.HEARTBEAT_INTERVAL,
            stream_poll_interval=config.STREAM_POLL_INTERVAL,
            stream_heartbeat_interval=config.STREAM_HEARTBEAT_INTERVAL,
        )
        self.app, self.socketio = create_app(
            self.store, self.hub,
            secret_key=config.SECRET_KEY,
            cors_origins=config.CORS_ORIGINS,
            code_size=config.CODE_DEFAULT_SIZE,
            code_ecl=config.CODE_DEFAULT_ECL,
        )
        self.stopped = False

    def start(self):
        """Open the store, start the hub and serve until interrupted."""
        self.store.open()
        self.hub.init()

        logger.info(f"Scan hub listening on {self.host}:{self.port}")
        self.socketio.run(
            self.app,
            host=self.host,
            port=self.port,
            debug=False,
            use_reloader=False,
            allow_unsafe_werkzeug=True
        )

    def stop(self):
        if self.stopped:
            return
        self.stopped = True
        logger.info("Stopping scan hub...")
        self.hub.shutdown()
        self.store.close()
        logger.info("Scan hub stopped")


# Global server instance
server: Optional[HubServer] = None


def signal_handler(sig, frame):
    """Handle shutdown signals"""
    logger.info("Shutdown signal received")
    if server:
        server.stop()
    sys.exit(0)


def main():
    """Main entry point"""
    global server

    parser = argparse.ArgumentParser(description='Scan hub server')
    parser.add_argument('--host', default=config.HUB_HOST, help='Bind address')
    parser.add_argument('--port', type=int, default=config.HUB_PORT, help='Listen port')
    parser.add_argument('--db', default=config.DB_PATH, help='SQLite database path')
    args = parser.parse_args()

    setup_logging('hub', config.LOG_LEVEL, config.LOG_FILE)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    logger.info("=" * 60)
    logger.info("SCAN HUB STARTING")
    logger.info("=" * 60)

    server = HubServer(db_path=args.db, host=args.host, port=args.port)

    try:
        server.start()
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        server.stop()
        sys.exit(1)
    finally:
        server.stop()


if __name__ == '__main__':
    main()
