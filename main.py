#!/usr/bin/env python3
"""
PULSE SERVICE ENTRY POINT
=========================

Purpose:
- Run the order splitting pipeline workers (splitter, slice executor,
  timeout monitor) in supervised threads
- Expose the order ingress HTTP API (Flask + Waitress)

Any number of these processes may run against the same database; all
coordination happens through conditional updates in the store.

Usage:
    python main.py                                  # all roles + API
    python main.py --env config_env/pulse.env
    python main.py --roles executor --no-api        # extra executor capacity
"""

import sys
import os
import signal
import logging
import threading
import time
import argparse
from pathlib import Path
from typing import Optional

from waitress import serve

from pulse_platform import __version__
from pulse_platform.api.http.order_app import OrderApp
from pulse_platform.brokers.base import create_broker
from pulse_platform.core.config import Config
from pulse_platform.logging.logger_config import (
    get_component_logger,
    get_log_files,
    setup_application_logging,
)
from pulse_platform.persistence.database import configure_database
from pulse_platform.services.bootstrap import build_services, parse_roles
from pulse_platform.services.service_manager import ServiceManager
from pulse_platform.utils.utils import log_exception

# ---------------------------------------------------------------------
# GLOBALS (FOR SIGNAL HANDLING)
# ---------------------------------------------------------------------
service_manager: Optional[ServiceManager] = None
logger: Optional[logging.Logger] = None
shutdown_event = threading.Event()


# ---------------------------------------------------------------------
# GRACEFUL SHUTDOWN HANDLER (SYSTEMD SAFE)
# ---------------------------------------------------------------------
def signal_handler(signum, frame):
    shutdown_start = time.time()

    if logger:
        logger.warning(f"🛑 Received shutdown signal: {signum}")

    shutdown_event.set()

    if service_manager:
        try:
            service_manager.stop_all()
        except Exception as e:
            if logger:
                logger.error(f"❌ Error stopping services: {e}")

    if logger:
        logger.info(f"✅ Graceful shutdown complete in {time.time() - shutdown_start:.1f}s")

    sys.exit(0)


# ---------------------------------------------------------------------
# MAIN
# ---------------------------------------------------------------------
def main():
    global service_manager, logger

    parser = argparse.ArgumentParser(description="Pulse order splitting service")
    parser.add_argument(
        "--env",
        type=str,
        default=None,
        help="Path to .env file (e.g. config_env/pulse.env)"
    )
    parser.add_argument(
        "--roles",
        type=str,
        default="all",
        help="Comma separated worker roles: splitter,executor,monitor (default: all)"
    )
    parser.add_argument(
        "--no-api",
        action="store_true",
        help="Do not start the HTTP ingress API"
    )
    args = parser.parse_args()

    env_path = None
    if args.env:
        env_path = Path(args.env)
        if not env_path.is_absolute():
            env_path = Path(__file__).resolve().parent / env_path

    try:
        # -------------------------------------------------
        # CONFIG + LOGGING
        # -------------------------------------------------
        config = Config(env_path=env_path)
        roles = parse_roles(args.roles)

        setup_application_logging(
            log_dir=config.log_dir,
            level=config.log_level,
            max_bytes=50 * 1024 * 1024,  # 50 MB per file
            backup_count=10,
        )
        logger = get_component_logger('service')

        logger.info("=" * 70)
        logger.info("🚀 STARTING PULSE SERVICE")
        logger.info("=" * 70)
        logger.info(f"PID: {os.getpid()}")
        logger.info(f"Python: {sys.version}")
        logger.info(f"Roles: {', '.join(roles)} | API: {'OFF' if args.no_api else 'ON'}")
        logger.info(f"Config: {config.get_config_summary()}")
        logger.info("📋 Log files (rotating, 50MB max, 10 backups):")
        for name, path in get_log_files().items():
            logger.info(f"   - {name}: {path}")

        # -------------------------------------------------
        # STORE + BROKER + WORKERS
        # -------------------------------------------------
        configure_database(config.db_path)
        broker = create_broker(config)

        service_manager = build_services(config, broker, roles)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)
        logger.info("Signal handlers installed")

        service_manager.start_all()

        if args.no_api:
            logger.info("✅ WORKERS RUNNING (no API), waiting for shutdown signal")
            while not shutdown_event.wait(1.0):
                pass
            return

        # -------------------------------------------------
        # INGRESS HTTP SERVICE (FLASK + WAITRESS, BLOCKING)
        # -------------------------------------------------
        server_cfg = config.get_server_config()
        flask_app = OrderApp(service_manager=service_manager).get_app()

        logger.info("=" * 70)
        logger.info(
            f"✅ PULSE READY: ACCEPTING ORDERS on {server_cfg['host']}:{server_cfg['port']} "
            f"(threads={server_cfg['threads']})"
        )
        logger.info("=" * 70)

        serve(
            flask_app,
            host=server_cfg["host"],
            port=server_cfg["port"],
            threads=server_cfg["threads"],
            connection_limit=1000,
            cleanup_interval=30,
            channel_timeout=120,
            max_request_body_size=1048576,  # 1 MB
            expose_tracebacks=False,
            ident=f"Pulse/{__version__}",
        )

    except KeyboardInterrupt:
        if logger:
            logger.info("Received keyboard interrupt")
        shutdown_event.set()
        if service_manager:
            service_manager.stop_all()

    except Exception as exc:
        if logger:
            log_exception("pulse_service.main", exc)
            logger.critical(f"FATAL ERROR: {exc}", exc_info=True)
        else:
            print(f"CRITICAL ERROR: {exc}")
            import traceback
            traceback.print_exc()

        if service_manager:
            service_manager.stop_all()
        sys.exit(1)

    finally:
        if logger:
            logger.info("🏁 Pulse service stopped")


# ---------------------------------------------------------------------
# ENTRY POINT
# ---------------------------------------------------------------------
if __name__ == "__main__":
    main()
