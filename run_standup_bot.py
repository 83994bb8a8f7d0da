#!/usr/bin/env python3
"""
Run the standup scheduler.

Reads Zulip credentials and scheduler settings from a .zuliprc-style INI file
and/or environment variables, syncs channel schedules into the database, and
ticks once a minute.
"""

import os
import sys
import json
import signal
import logging
import argparse
from pathlib import Path

from channel_config import load_channel_schedules, sync_channel_schedules
from config import Config
from error_handler import ScheduleConfigError, StandupError
from notifier import ZulipNotifier
from scheduler import OrchestratorContext, SchedulerRunner, run_tick, start_daily_sessions
from storage_manager import StorageManager

logger = logging.getLogger('standup_bot.runner')


def load_env_file(path: str = '.env') -> None:
    """Load environment variables from .env file if it exists."""
    env_file = Path(path)
    if env_file.exists():
        with open(env_file, 'r') as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith('#') and '=' in line:
                    key, value = line.split('=', 1)
                    os.environ.setdefault(key.strip(), value.strip())
        logger.info(f"Loaded environment variables from {env_file}")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='Run the Zulip standup scheduler')
    parser.add_argument('--config', '-c',
                        help='Path to the .zuliprc-style config file')
    parser.add_argument('--channels',
                        help='Path to the channel schedules file (overrides CHANNELS_FILE)')
    parser.add_argument('--check', action='store_true',
                        help='Validate configuration and channel schedules, then exit')
    parser.add_argument('--once', action='store_true',
                        help='Run a single tick, print its report and exit')
    parser.add_argument('--start-sessions', action='store_true',
                        help="Create today's sessions for all active channels and exit")
    return parser.parse_args(argv)


def check(config: Config, channels_file) -> int:
    """Validate configuration without touching the database or Zulip"""
    print("🔍 Checking configuration...")
    try:
        config.validate()
    except ValueError as e:
        print(f"❌ {e}")
        return 1

    if channels_file:
        try:
            schedules = load_channel_schedules(channels_file, config.default_timezone)
        except ScheduleConfigError as e:
            print(f"❌ {e}")
            return 1
        print(f"📅 {len(schedules)} channel schedules are valid")

    print("✅ Configuration is valid!")
    return 0


def main(argv=None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    load_env_file()

    config = Config(args.config)
    config.setup_logging()
    channels_file = args.channels or config.channels_file

    if args.check:
        return check(config, channels_file)

    try:
        config.validate()
    except ValueError as e:
        logger.error(str(e))
        return 1

    store = StorageManager(config.database_url)
    store.init_db()

    try:
        if channels_file:
            schedules = load_channel_schedules(channels_file, config.default_timezone)
            synced = sync_channel_schedules(store, schedules)
            logger.info(f"Synced {synced} channel schedules from {channels_file}")

        ctx = OrchestratorContext.build(store, ZulipNotifier.from_config(config), config)

        if args.start_sessions:
            started = start_daily_sessions(ctx)
            print(f"Started {started} sessions")
            return 0

        if args.once:
            report = run_tick(ctx)
            print(json.dumps(report.to_dict(), indent=2))
            return 1 if report.failed_channels else 0

        runner = SchedulerRunner(ctx, config, blocking=True)

        def _stop(signum, frame):
            logger.info(f"Received signal {signum}, shutting down")
            runner.shutdown(wait=False)

        signal.signal(signal.SIGTERM, _stop)
        start_daily_sessions(ctx)
        try:
            runner.start()
        except KeyboardInterrupt:
            runner.shutdown()
        return 0

    except StandupError as e:
        logger.error(f"Standup scheduler failed: {e}", exc_info=True)
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
