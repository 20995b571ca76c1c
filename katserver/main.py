#!/usr/bin/env python3
"""
KatServer entry point.

Loads the configuration, sets up logging, opens the database and the CRUD
executor and keeps them available to the message storage layer until the
process is asked to stop.
"""

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from jsonschema import ValidationError

from .config_manager import load_server_config
from .database import CrudExecutor, DatabaseConfig, DatabaseFactory, PersistenceError, setup_db_logging
from .logging_utils import setup_main_logging
from .storage import MessageStorage, MessageTypeRegistry

logger = logging.getLogger(__name__)

# Message types every server understands
BUILTIN_MESSAGE_TYPES = ('text', 'image', 'file', 'system')


class KatServer:
    """Owns the database manager, executor and storage of one server process."""

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.manager = None
        self.executor: Optional[CrudExecutor] = None
        self.storage: Optional[MessageStorage] = None
        self.message_types = MessageTypeRegistry(BUILTIN_MESSAGE_TYPES)
        self._stop_event = threading.Event()

    def start(self) -> None:
        """Open the database and the storage layer."""
        db_config = DatabaseConfig.from_server_config(self.config)
        database_path = db_config['connection_params'].get('database')
        if db_config['db_type'] == 'sqlite' and database_path and database_path != ':memory:':
            Path(database_path).parent.mkdir(parents=True, exist_ok=True)

        self.manager = DatabaseFactory.create_from_config(db_config)
        self.executor = CrudExecutor(self.manager).open()
        self.storage = MessageStorage(self.executor)

        logger.info(f"Message types: {', '.join(self.message_types.message_types())}")
        logger.info("Started!")

    def stop(self) -> None:
        """Close the executor and the database."""
        self._stop_event.set()
        if self.executor is not None:
            self.executor.close()
            self.executor = None
        if self.manager is not None:
            self.manager.close()
            self.manager = None
        logger.info("Stopped")

    def wait(self) -> None:
        """Block until ``stop`` is requested."""
        self._stop_event.wait()

    def request_stop(self, signum=None, frame=None) -> None:
        logger.info(f"Received signal {signum}, shutting down")
        self._stop_event.set()


def main(argv=None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description='KatServer')
    parser.add_argument(
        '--config',
        default=None,
        help='Configuration file path (default: built-in configuration)'
    )
    parser.add_argument(
        '--override',
        default=None,
        help='Override configuration file merged over --config'
    )
    parser.add_argument(
        '--check',
        action='store_true',
        help='Open the database, run a health check and exit'
    )

    args = parser.parse_args(argv)

    try:
        config = load_server_config(args.config, args.override)
    except (FileNotFoundError, ValueError, ValidationError) as e:
        print(f"Configuration error: {e}")
        return 1

    setup_main_logging(config)
    setup_db_logging(config)

    server = KatServer(config)
    try:
        server.start()
    except (PersistenceError, ValueError) as e:
        logger.error(f"Startup failed: {e}")
        server.stop()
        return 1

    if args.check:
        health = server.manager.health_check()
        server.stop()
        if health['success']:
            logger.info(f"Health check passed in {health['response_time_ms']}ms "
                        f"({health['database_type']} {health['database_version']}, "
                        f"{health['table_count']} tables)")
            return 0
        logger.error(f"Health check failed: {health['error']}")
        return 1

    signal.signal(signal.SIGTERM, server.request_stop)
    try:
        server.wait()
    except KeyboardInterrupt:
        logger.info("Process interrupted by user")
    finally:
        server.stop()

    return 0


if __name__ == '__main__':
    sys.exit(main())
