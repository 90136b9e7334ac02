"""
Main entry point for requestbox.

Initializes all components and starts the server.
"""

import argparse
import logging
import secrets
import sys
from typing import Optional

import uvicorn

from .broadcast import ConnectionHub
from .config_manager import ConfigManager
from .dispatcher import EventDispatcher
from .session import SessionRegistry
from .shutdown import RESTART_EXIT_CODE, ShutdownCoordinator
from .snapshot import SnapshotManager
from .state import StateStore
from .web.server import create_app
from .youtube import YouTubeClient

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


class RequestboxServer:
    """Main server class that orchestrates all components."""

    def __init__(self, config_manager: Optional[ConfigManager] = None):
        """
        Initialize all components.

        Args:
            config_manager: Configuration (read from the environment if omitted)
        """
        logger.info("Initializing requestbox server...")

        self.config_manager = config_manager or ConfigManager()

        self.state = StateStore(self.config_manager)
        self.sessions = SessionRegistry()
        self.hub = ConnectionHub()
        self.youtube = YouTubeClient(lambda: self.state.youtube_api_key)
        self.snapshots = SnapshotManager(self.config_manager)
        self.shutdown = ShutdownCoordinator(self.hub, self.config_manager, on_exit=self.stop)

        if not self.youtube.is_configured():
            logger.warning(
                "YouTube API key not configured. Titles and durations will not be resolved. "
                "Set REQUESTBOX_YOUTUBE_API_KEY or use the admin settings."
            )
        if not self.config_manager.get("operator_password"):
            logger.warning(
                "Operator password not configured; admin controls are disabled. "
                "Set REQUESTBOX_OPERATOR_PASSWORD."
            )

        self.dispatcher = EventDispatcher(
            self.state,
            self.sessions,
            self.hub,
            self.youtube,
            self.snapshots,
            self.shutdown,
        )

        session_secret = self.config_manager.get("session_secret") or secrets.token_urlsafe(32)
        self.web_app = create_app(self.dispatcher, self.config_manager, session_secret)

        # Uvicorn server instance (will be created in run())
        self.uvicorn_server = None

        logger.info("requestbox server initialized")

    def run(self) -> int:
        """
        Start the server and block until it exits.

        Returns:
            Process exit status (RESTART_EXIT_CODE after an operator restart)
        """
        host = self.config_manager.get("host")
        port = self.config_manager.get_int("port", 5000)

        logger.info("=" * 60)
        logger.info("requestbox is running on %s:%s", host, port)
        logger.info("Events: ws://%s:%s/ws", host, port)
        logger.info("=" * 60)

        # Use uvicorn Server API for better control over shutdown
        config = uvicorn.Config(self.web_app, host=host, port=port, log_level="info")
        self.uvicorn_server = uvicorn.Server(config)
        self.uvicorn_server.run()

        if self.shutdown.restart_requested:
            logger.info("Exiting with status %s so the supervisor restarts us", RESTART_EXIT_CODE)
            return RESTART_EXIT_CODE
        return 0

    def stop(self):
        """Ask the web server to exit."""
        logger.info("Stopping requestbox server...")
        if self.uvicorn_server:
            self.uvicorn_server.should_exit = True


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="requestbox - Collaborative music request server")
    parser.add_argument("--host", help="Address to bind (default from REQUESTBOX_HOST or 0.0.0.0)")
    parser.add_argument("--port", type=int, help="Port to bind (default from REQUESTBOX_PORT or 5000)")
    args = parser.parse_args()

    overrides = {}
    if args.host:
        overrides["host"] = args.host
    if args.port:
        overrides["port"] = args.port

    server = RequestboxServer(ConfigManager(overrides))
    try:
        status = server.run()
    except KeyboardInterrupt:
        status = 0
    finally:
        server.stop()
    sys.exit(status)


if __name__ == "__main__":
    main()
