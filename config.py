#!/usr/bin/env python3
"""
Configuration management for the Feed Aggregator.

This module centralizes configuration loading, validation, and logging setup.
It handles environment variables, an optional .env file and an optional YAML
secrets file, and exposes a single ``config`` instance to the rest of the
application.
"""

from os import environ, path, access, R_OK
from typing import Dict, Any
from logging import getLogger, basicConfig, StreamHandler, INFO, DEBUG, WARNING, ERROR
import sys
import yaml
from dotenv import load_dotenv

def _setup_global_logger():
    """Setup a single global logger for the entire application.

    Environment Variables:
        LOG_LEVEL: Set log level (DEBUG, INFO, WARNING, ERROR) - defaults to INFO
        LOG_TIMESTAMPS: Enable/disable timestamps in logs (true/false) - defaults to true

    The logger outputs to stdout with line buffering for real-time logging.
    All modules should use get_logger() to create module-specific loggers that inherit this configuration.
    """
    environ.setdefault("PYTHONUNBUFFERED", "1")

    level_str = environ.get("LOG_LEVEL", "INFO").upper()
    level_map = {
        "DEBUG": DEBUG,
        "INFO": INFO,
        "WARNING": WARNING,
        "ERROR": ERROR
    }
    level = level_map.get(level_str, INFO)

    show_timestamps = environ.get("LOG_TIMESTAMPS", "true").lower() != "false"

    if show_timestamps:
        log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    else:
        log_format = '%(name)s - %(levelname)s - %(message)s'

    basicConfig(
        level=level,
        format=log_format,
        handlers=[StreamHandler(sys.stdout)],
        force=True
    )

    # pytest and some process managers swap stdout for objects without reconfigure()
    if hasattr(sys.stdout, "reconfigure"):
        sys.stdout.reconfigure(line_buffering=True)
    if hasattr(sys.stderr, "reconfigure"):
        sys.stderr.reconfigure(line_buffering=True)

    # Keep the HTTP access log and Azure SDK quiet unless explicitly overridden
    azure_level = level_map.get(environ.get("AZURE_LOG_LEVEL", "WARNING").upper(), WARNING)
    for name in ("azure", "azure.core", "azure.monitor"):
        getLogger(name).setLevel(azure_level)
    access_level = level_map.get(environ.get("ACCESS_LOG_LEVEL", "WARNING").upper(), WARNING)
    getLogger("aiohttp.access").setLevel(access_level)

    return getLogger("FeedAggregator")

def get_logger(name: str):
    """Get a module-specific logger with the unified configuration.

    Args:
        name: The logger name (e.g., "fetcher", "parser", "api")

    Returns:
        A logger named "FeedAggregator.{name}"
    """
    return getLogger(f"FeedAggregator.{name}")

logger = _setup_global_logger()

class Config:
    """Configuration manager for the Feed Aggregator.

    Values are resolved from:
    1. Environment variables
    2. .env file (if present)
    3. YAML secrets file (if SECRETS_FILE environment variable is set)

    Secrets file values override both system and .env variables.
    """

    def __init__(self):
        self._load_environment()
        self._validate_and_set_config()

    def _load_environment(self):
        """Load environment variables from .env file and secrets file if present."""
        dotenv_path = path.join(path.dirname(path.abspath(__file__)), '.env')
        if path.exists(dotenv_path):
            load_dotenv(dotenv_path)
            logger.info(f"Loaded environment variables from {dotenv_path}")

        self._load_secrets_file()

    def _validate_positive_int(self, env_var: str, default: int, min_val: int = 1) -> int:
        """Validate and parse a positive integer environment variable."""
        try:
            value = int(environ.get(env_var, str(default)))
            if value < min_val:
                logger.warning(f"{env_var} must be at least {min_val}, using default {default}")
                return default
            return value
        except (ValueError, TypeError):
            logger.warning(f"Invalid {env_var} value, using default {default}")
            return default

    def _validate_bool(self, env_var: str, default: bool) -> bool:
        raw = environ.get(env_var)
        if raw is None:
            return default
        return raw.strip().lower() in ("1", "true", "yes", "on")

    def _validate_and_set_config(self):
        """Validate and set all configuration values."""
        base_dir = path.dirname(path.abspath(__file__))

        # Storage
        self.DATABASE_PATH = environ.get("DATABASE_PATH", "feeds.db")
        self.SCHEMA_FILE_PATH = environ.get("SCHEMA_FILE_PATH", path.join(base_dir, "schema.sql"))
        self.SCHEMA_FILE_SIZE_LIMIT_MB = self._validate_positive_int("SCHEMA_FILE_SIZE_LIMIT_MB", 10, 1)
        self.FEEDS_CONFIG_PATH = environ.get("FEEDS_CONFIG_PATH", path.join(base_dir, "feeds.yaml"))

        # HTTP fetching
        self.USER_AGENT = environ.get("USER_AGENT", "Mozilla/5.0 (compatible; FeedAggregator/1.0)")
        # 0 disables the overall request timeout; a stalled source then stalls the cycle
        self.HTTP_TIMEOUT = self._validate_positive_int("HTTP_TIMEOUT", 0, 0)
        self.MAX_REDIRECTS = self._validate_positive_int("MAX_REDIRECTS", 5, 0)

        # Scheduling
        self.FETCH_INTERVAL_MINUTES = self._validate_positive_int("FETCH_INTERVAL_MINUTES", 5, 1)
        self.SCHEDULER_RUN_IMMEDIATELY = self._validate_bool("SCHEDULER_RUN_IMMEDIATELY", True)

        # Retention
        self.RETENTION_HOURS = self._validate_positive_int("RETENTION_HOURS", 24, 1)

        # Query / API
        self.DEFAULT_PAGE_LIMIT = self._validate_positive_int("DEFAULT_PAGE_LIMIT", 20, 1)
        self.MAX_PAGE_LIMIT = self._validate_positive_int("MAX_PAGE_LIMIT", 50, 1)
        if self.DEFAULT_PAGE_LIMIT > self.MAX_PAGE_LIMIT:
            logger.warning(
                "DEFAULT_PAGE_LIMIT (%d) exceeds MAX_PAGE_LIMIT (%d); clamping",
                self.DEFAULT_PAGE_LIMIT,
                self.MAX_PAGE_LIMIT,
            )
            self.DEFAULT_PAGE_LIMIT = self.MAX_PAGE_LIMIT
        self.MAX_SOURCES_PER_REQUEST = self._validate_positive_int("MAX_SOURCES_PER_REQUEST", 50, 1)
        self.DEFAULT_LOCALE = environ.get("DEFAULT_LOCALE", "en")
        self.API_HOST = environ.get("API_HOST", "0.0.0.0")
        self.API_PORT = self._validate_positive_int("API_PORT", 3000, 1)
        self.MAX_BODY_BYTES = self._validate_positive_int("MAX_BODY_BYTES", 10 * 1024, 1024)

    def _load_secrets_file(self):
        """Load environment variable overrides from a YAML secrets file.

        If SECRETS_FILE is set, the file is read (top-level mapping, or nested
        under ``environment``) and every key is exported as an environment
        variable before the rest of the configuration is resolved.
        """
        secrets_file_path = environ.get("SECRETS_FILE")
        if not secrets_file_path:
            logger.debug("SECRETS_FILE not set; relying on environment/.env")
            return

        secrets_config = self._safe_read_yaml(secrets_file_path, 2 * 1024 * 1024, 'secrets')
        if not isinstance(secrets_config, dict):
            if secrets_config is not None:
                logger.warning(f"Secrets file {secrets_file_path} must be a YAML mapping at the top level")
            return

        if isinstance(secrets_config.get('environment'), dict):
            env_vars = secrets_config['environment']
        else:
            env_vars = secrets_config

        secrets_loaded = 0
        for key, value in env_vars.items():
            if isinstance(key, str) and value is not None:
                environ[key] = str(value)
                secrets_loaded += 1
            else:
                logger.warning(f"Skipping invalid environment variable in secrets file: {key}")

        logger.info(f"Loaded {secrets_loaded} environment variables from secrets file {secrets_file_path}")

    def _safe_read_yaml(self, file_path: str, max_size: int, kind: str) -> Any | None:
        """Safely read a YAML file with consistent validation.

        Args:
            file_path: Path to the YAML file
            max_size: Maximum allowed file size in bytes
            kind: Short label for logging context (e.g. 'secrets', 'sources')

        Returns:
            Parsed YAML (mapping/list/primitive) or None on failure.
        """
        try:
            if not path.isfile(file_path):
                logger.warning(f"{kind.capitalize()} file not found at {file_path}")
                return None
            if not access(file_path, R_OK):
                logger.error(f"No read permission for {kind} file at {file_path}")
                return None
            size = path.getsize(file_path)
            if size > max_size:
                logger.error(f"{kind.capitalize()} file too large: {size} bytes (limit: {max_size} bytes)")
                return None
            with open(file_path, 'r') as f:
                data = yaml.safe_load(f)
            if not data:
                logger.warning(f"Empty or invalid YAML in {kind} file {file_path}")
                return None
            return data
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML in {kind} file {file_path}: {e}")
        except OSError as e:
            logger.error(f"Error loading {kind} file {file_path}: {e}")
        return None

    def get_config_summary(self) -> Dict[str, Any]:
        """Get a summary of current configuration for logging/debugging."""
        return {
            "database_path": self.DATABASE_PATH,
            "feeds_config_path": self.FEEDS_CONFIG_PATH,
            "fetch_interval_minutes": self.FETCH_INTERVAL_MINUTES,
            "http_timeout": self.HTTP_TIMEOUT,
            "retention_hours": self.RETENTION_HOURS,
            "default_page_limit": self.DEFAULT_PAGE_LIMIT,
            "max_page_limit": self.MAX_PAGE_LIMIT,
            "max_sources_per_request": self.MAX_SOURCES_PER_REQUEST,
            "api": f"{self.API_HOST}:{self.API_PORT}",
            "run_immediately": self.SCHEDULER_RUN_IMMEDIATELY,
            "secrets_file_configured": bool(environ.get("SECRETS_FILE")),
        }

# Global configuration instance
config = Config()
