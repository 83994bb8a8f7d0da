import os
import logging
import configparser
from typing import Optional

from storage_manager import DEFAULT_DATABASE_URL


class Config:
    """
    Configuration management for the standup scheduler.
    Supports both file-based configuration (INI, .zuliprc style) and environment variables.
    Environment variables override values from the file.
    """

    def __init__(self, config_file: Optional[str] = None):
        # Zulip API credentials
        self.email = None
        self.api_key = None
        self.site = None

        # Database
        self.database_url = DEFAULT_DATABASE_URL

        # Scheduler
        self.max_workers = 1
        self.notifier_timeout = 10.0  # seconds per notifier call
        self.retention_days = 90
        self.misfire_grace_time = 30  # seconds

        # Bot
        self.default_timezone = 'UTC'
        self.channels_file = None
        self.log_level = 'INFO'

        # Load configuration from file if provided
        if config_file and os.path.exists(config_file):
            self._load_from_file(config_file)

        # Override with environment variables if provided
        self._load_from_env()

    def _load_from_file(self, config_file: str) -> None:
        """Load configuration from an INI file"""
        config = configparser.ConfigParser()
        config.read(config_file)

        if 'api' in config:
            self.email = config['api'].get('email', self.email)
            self.api_key = config['api'].get('key', self.api_key)
            self.site = config['api'].get('site', self.site)

        if 'database' in config:
            self.database_url = config['database'].get('url', self.database_url)

        if 'scheduler' in config:
            section = config['scheduler']
            self.max_workers = section.getint('max_workers', self.max_workers)
            self.notifier_timeout = section.getfloat('notifier_timeout', self.notifier_timeout)
            self.retention_days = section.getint('retention_days', self.retention_days)
            self.misfire_grace_time = section.getint('misfire_grace_time', self.misfire_grace_time)

        if 'bot' in config:
            self.default_timezone = config['bot'].get('default_timezone', self.default_timezone)
            self.channels_file = config['bot'].get('channels_file', self.channels_file)
            self.log_level = config['bot'].get('log_level', self.log_level)

    def _load_from_env(self) -> None:
        """Load configuration from environment variables"""
        # Zulip API credentials
        if os.environ.get('ZULIP_EMAIL'):
            self.email = os.environ.get('ZULIP_EMAIL')

        if os.environ.get('ZULIP_API_KEY'):
            self.api_key = os.environ.get('ZULIP_API_KEY')

        if os.environ.get('ZULIP_SITE'):
            self.site = os.environ.get('ZULIP_SITE')

        if os.environ.get('DATABASE_URL'):
            self.database_url = os.environ.get('DATABASE_URL')

        # Scheduler settings
        if os.environ.get('SCHEDULER_MAX_WORKERS'):
            self.max_workers = int(os.environ.get('SCHEDULER_MAX_WORKERS'))

        if os.environ.get('NOTIFIER_TIMEOUT'):
            self.notifier_timeout = float(os.environ.get('NOTIFIER_TIMEOUT'))

        if os.environ.get('RETENTION_DAYS'):
            self.retention_days = int(os.environ.get('RETENTION_DAYS'))

        if os.environ.get('DEFAULT_TIMEZONE'):
            self.default_timezone = os.environ.get('DEFAULT_TIMEZONE')

        if os.environ.get('CHANNELS_FILE'):
            self.channels_file = os.environ.get('CHANNELS_FILE')

        if os.environ.get('LOG_LEVEL'):
            self.log_level = os.environ.get('LOG_LEVEL')

    def validate(self, require_zulip: bool = True) -> None:
        """Validate that required configuration is present"""
        if require_zulip and not all([self.email, self.api_key, self.site]):
            missing = [name for name, value in (
                ('ZULIP_EMAIL', self.email),
                ('ZULIP_API_KEY', self.api_key),
                ('ZULIP_SITE', self.site)
            ) if not value]
            raise ValueError(
                "Missing required Zulip API credentials: " + ", ".join(missing) + ". "
                "Please provide them via the config file or environment variables."
            )

        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")

        if self.notifier_timeout <= 0:
            raise ValueError("notifier_timeout must be positive")

    def setup_logging(self) -> None:
        """
        Set up logging configuration.
        """
        numeric_level = getattr(logging, str(self.log_level).upper(), None)
        if not isinstance(numeric_level, int):
            numeric_level = logging.INFO

        logging.basicConfig(
            level=numeric_level,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    def get_zulip_config(self) -> dict:
        """Return Zulip API configuration as a dictionary"""
        return {
            'email': self.email,
            'api_key': self.api_key,
            'site': self.site
        }
