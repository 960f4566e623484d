#!/usr/bin/env python3
"""
Weather Alert System

Fetches current weather for every city with registered users on a cron
schedule, checks each user's alert preferences and emails alerts.

Commands:
    serve [--port N]      Start the REST API with the cron scheduler
    fetch-weather         Run one weather fetch pass and exit
    test-email --to ADDR  Send a diagnostic email and exit
    init-db               Create the database schema and exit
    list-jobs             Print the scheduled jobs
"""

import argparse
import asyncio
import logging
import signal
import sys
import threading
from typing import List, Optional

from werkzeug.serving import make_server

from alert_pipeline import AlertPipeline
from config import Config, load_config
from data_fetcher import WeatherDataFetcher
from email_notifier import EmailNotifier
from errors import AppError, IoError
from log_rotation import setup_logging
from scheduler import STATIC_JOBS, WeatherAlertScheduler
from storage import WeatherAlertDatabase
from web_app import create_app

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Weather Alert System - CRON Job Scheduler")
    subparsers = parser.add_subparsers(dest="command")

    serve_parser = subparsers.add_parser("serve", help="Start the web server with CRON scheduler")
    serve_parser.add_argument("-p", "--port", type=int, default=None, help="Port to listen on (default 8080)")

    subparsers.add_parser("fetch-weather", help="Manually fetch weather for all users")

    email_parser = subparsers.add_parser("test-email", help="Send test email")
    email_parser.add_argument("-t", "--to", required=True, help="Recipient address")

    subparsers.add_parser("init-db", help="Initialize database schema")
    subparsers.add_parser("list-jobs", help="List all scheduled jobs")
    return parser


def open_database(config: Config) -> WeatherAlertDatabase:
    database = WeatherAlertDatabase(config.system.database_url, config.system.max_db_connections)
    database.init_database()
    return database


def list_jobs():
    print("📋 Scheduled CRON Jobs:")
    for job in STATIC_JOBS:
        print(f"  ⏰ {job['name']}: {job['description']} ({job['schedule']})")
    print("\n🔧 Manual Commands:")
    print("  python main.py fetch-weather          (Manually fetch weather now)")
    print("  python main.py init-db                (Initialize database)")
    print("  python main.py test-email --to ADDR   (Send test email)")


async def serve(config: Config, port: int):
    """Run the API server and the cron scheduler until SIGINT/SIGTERM."""
    database = open_database(config)
    fetcher = WeatherDataFetcher(config.weather)
    notifier = EmailNotifier(config.email)
    pipeline = AlertPipeline(
        database, fetcher, notifier,
        inter_city_delay=config.system.inter_city_delay_seconds
    )
    scheduler = WeatherAlertScheduler(pipeline, config.system.fetch_cron)

    app = create_app(database, notifier, scheduler.submit, pipeline.run_once)
    try:
        server = make_server(config.webapp.host, port, app, threaded=True)
    except OSError as e:
        notifier.close()
        raise IoError(f"Cannot bind {config.webapp.host}:{port}: {e}") from e

    await scheduler.start()

    server_thread = threading.Thread(target=server.serve_forever, name="api-server", daemon=True)
    server_thread.start()
    logger.info(f"Starting server on http://{config.webapp.host}:{port}")

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops
            pass

    try:
        await stop_event.wait()
    finally:
        logger.info("Shutting down...")
        server.shutdown()
        server_thread.join(timeout=10)
        await scheduler.stop()
        await fetcher.close()
        notifier.close()
        logger.info("Shutdown complete")


async def fetch_weather(config: Config):
    database = open_database(config)
    notifier = EmailNotifier(config.email)
    try:
        async with WeatherDataFetcher(config.weather) as fetcher:
            pipeline = AlertPipeline(
                database, fetcher, notifier,
                inter_city_delay=config.system.inter_city_delay_seconds
            )
            return await pipeline.run_once()
    finally:
        notifier.close()


async def send_test_email(config: Config, to: str):
    notifier = EmailNotifier(config.email)
    try:
        await notifier.send_test_email(to, "Weather Alert Test")
    finally:
        notifier.close()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point; returns the process exit code."""
    args = build_parser().parse_args(argv)
    command = args.command or "serve"

    if command == "list-jobs":
        list_jobs()
        return 0

    try:
        config = load_config()
    except AppError as e:
        setup_logging()
        logger.error(f"{e}")
        return 1

    setup_logging(config.system.log_level, config.system.log_file)
    logger.info("Weather Alert System Starting...")

    try:
        if command == "serve":
            port = getattr(args, "port", None) or config.webapp.port
            asyncio.run(serve(config, port))
        elif command == "fetch-weather":
            logger.info("Manually fetching weather...")
            summary = asyncio.run(fetch_weather(config))
            logger.info(f"Weather fetch completed! {summary.alerts_sent} alerts sent")
        elif command == "test-email":
            logger.info(f"Sending test email to {args.to}")
            asyncio.run(send_test_email(config, args.to))
            logger.info("Test email sent!")
        elif command == "init-db":
            logger.info("Initializing database schema...")
            WeatherAlertDatabase(config.system.database_url, config.system.max_db_connections).init_database()
            logger.info("Database schema created!")
    except AppError as e:
        logger.error(f"{e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, shutting down...")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
