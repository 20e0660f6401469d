"""
Configuration Management

Simple utility for loading and validating environment configuration.
"""

import os
from typing import Optional
from dotenv import load_dotenv


VALID_STATUS_CATEGORIES = ("running", "paused", "faulted")


def load_config(env_path: Optional[str] = None) -> bool:
    """
    Load environment configuration from .env file.

    Args:
        env_path: Optional path to .env file. If None, searches in current directory.

    Returns:
        bool: True if .env file was found and loaded, False otherwise
    """
    if env_path:
        return load_dotenv(env_path)
    return load_dotenv()


def get_database_config() -> dict:
    """
    Get event store database configuration.

    Returns:
        dict: Database configuration suitable for psycopg2.connect

    Raises:
        ValueError: If required configuration is missing
    """
    config = {
        "host": os.getenv("EVENTSTORE_HOST"),
        "port": os.getenv("EVENTSTORE_PORT", "5432"),
        "database": os.getenv("EVENTSTORE_NAME"),
        "user": os.getenv("EVENTSTORE_USER"),
        "password": os.getenv("EVENTSTORE_PASS"),
    }

    missing = [k for k, v in config.items() if not v]
    if missing:
        raise ValueError(
            f"Missing event store database configuration: {missing}. "
            f"Please check your .env file."
        )

    config["sslmode"] = os.getenv("EVENTSTORE_SSLMODE", "disable")
    return config


def get_app_config() -> dict:
    """
    Get application configuration settings.

    Returns:
        dict: Application settings
    """
    return {
        "timezone": os.getenv("TIMEZONE", "UTC"),
        "log_level": os.getenv("LOG_LEVEL", "INFO").upper(),
        "default_status_category": os.getenv("DEFAULT_STATUS_CATEGORY", "paused").lower(),
        "category_registry_path": os.getenv("CATEGORY_REGISTRY_PATH") or None,
        "report_max_workers": int(os.getenv("REPORT_MAX_WORKERS", "4")),
        "default_window_hours": int(os.getenv("DEFAULT_WINDOW_HOURS", "8")),
        "pool_min_connections": int(os.getenv("EVENTSTORE_POOL_MIN", "2")),
        "pool_max_connections": int(os.getenv("EVENTSTORE_POOL_MAX", "10")),
    }


def validate_config() -> list:
    """
    Validate all required configuration is present.

    Returns:
        list: List of problems found (empty if all valid)
    """
    problems = []

    try:
        get_database_config()
    except ValueError as e:
        problems.append(f"EVENTSTORE: {str(e)}")

    try:
        app_config = get_app_config()
    except ValueError as e:
        problems.append(f"APP: {str(e)}")
        return problems

    if app_config["default_status_category"] not in VALID_STATUS_CATEGORIES:
        problems.append(
            f"APP: DEFAULT_STATUS_CATEGORY must be one of {list(VALID_STATUS_CATEGORIES)}, "
            f"got '{app_config['default_status_category']}'"
        )

    registry_path = app_config["category_registry_path"]
    if registry_path and not os.path.isfile(registry_path):
        problems.append(f"APP: CATEGORY_REGISTRY_PATH does not exist: {registry_path}")

    if app_config["report_max_workers"] < 1:
        problems.append("APP: REPORT_MAX_WORKERS must be at least 1")

    if not 1 <= app_config["pool_min_connections"] <= app_config["pool_max_connections"]:
        problems.append("APP: EVENTSTORE_POOL_MIN must be at least 1 and not above EVENTSTORE_POOL_MAX")

    return problems
