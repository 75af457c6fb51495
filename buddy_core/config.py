"""
Configuration Management Module

This module provides a centralized way to load and access configuration settings
from the config.yaml file. It uses the Singleton pattern to ensure only one
configuration instance exists throughout the application.

Secrets (session signing key, identity provider keys, completion API key)
are never committed to config.yaml. They are read from environment variables,
which override whatever the YAML file contains.

Usage:
    from buddy_core.config import get_config
    config = get_config()
    threshold = config["matching"]["accept_threshold"]
"""

import os
import yaml
from pathlib import Path
from typing import Any, Dict, Optional


# Store the singleton instance (module-level variable)
_config_instance: Optional[Dict[str, Any]] = None

# Environment variable -> (section, key)
ENV_OVERRIDES = {
    "STUDY_BUDDY_DB_PATH": ("storage", "db_path"),
    "SESSION_SECRET": ("session", "secret"),
    "CLERK_SECRET_KEY": ("identity", "secret_key"),
    "CLERK_WEBHOOK_SECRET": ("identity", "webhook_secret"),
    "OPENROUTER_API_KEY": ("completion", "api_key"),
    "ADMIN_TOKEN": ("api", "admin_token"),
}


def get_project_root() -> Path:
    """
    Find the project root directory.

    The project root is identified by the presence of config.yaml file.
    This function walks up the directory tree from this file's location,
    then from the current working directory, until it finds config.yaml.

    Returns:
        Path: The absolute path to the project root directory.

    Raises:
        FileNotFoundError: If config.yaml cannot be found in any parent directory.
    """
    for start in (Path(__file__).resolve().parent, Path.cwd().resolve()):
        current_dir = start
        while current_dir != current_dir.parent:
            if (current_dir / "config.yaml").exists():
                return current_dir
            current_dir = current_dir.parent

    raise FileNotFoundError(
        "Could not find config.yaml in any parent directory. "
        "Make sure you're running from within the project directory."
    )


def apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Overlay environment variables from ENV_OVERRIDES onto a loaded config.

    Args:
        config: Configuration dict as loaded from YAML. Modified in place.

    Returns:
        The same dict, for chaining.
    """
    for env_var, (section, key) in ENV_OVERRIDES.items():
        value = os.environ.get(env_var)
        if value:
            config.setdefault(section, {})
            config[section][key] = value
    return config


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Optional path to the config file.
                     If not provided, uses $STUDY_BUDDY_CONFIG or the
                     default config.yaml in project root.

    Returns:
        Dict containing all configuration values, with environment
        overrides applied.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        yaml.YAMLError: If the config file contains invalid YAML.
    """
    if config_path is None:
        config_path = os.environ.get("STUDY_BUDDY_CONFIG")

    if config_path is None:
        config_path = get_project_root() / "config.yaml"
    else:
        config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}

    return apply_env_overrides(config)


def get_config(reload: bool = False) -> Dict[str, Any]:
    """
    Get the configuration singleton.

    Args:
        reload: If True, forces reloading the configuration from disk.
                Useful for testing or if the config file has changed.

    Returns:
        Dict containing all configuration values.

    Example:
        config = get_config()
        cookie = config["session"]["cookie_name"]
    """
    global _config_instance

    if _config_instance is None or reload:
        _config_instance = load_config()

    return _config_instance


def get_section(section_name: str) -> Dict[str, Any]:
    """
    Get a specific section from the configuration.

    Args:
        section_name: Name of the configuration section
                      (e.g., "matching", "session", "identity")

    Returns:
        Dict containing the section's configuration values.

    Raises:
        KeyError: If the section doesn't exist in the configuration.
    """
    config = get_config()

    if section_name not in config:
        raise KeyError(
            f"Configuration section '{section_name}' not found. "
            f"Available sections: {list(config.keys())}"
        )

    return config[section_name]


# Convenience functions for commonly used configuration sections
def get_matching_config() -> Dict[str, Any]:
    """Get face matching configuration."""
    return get_section("matching")


def get_storage_config() -> Dict[str, Any]:
    """Get storage configuration."""
    return get_section("storage")


def get_session_config() -> Dict[str, Any]:
    """Get session token configuration."""
    return get_section("session")


def get_identity_config() -> Dict[str, Any]:
    """Get identity provider configuration."""
    return get_section("identity")


def get_completion_config() -> Dict[str, Any]:
    """Get completion service configuration."""
    return get_section("completion")


def get_api_config() -> Dict[str, Any]:
    """Get API configuration."""
    return get_section("api")


def get_logging_config() -> Dict[str, Any]:
    """Get logging configuration, falling back to defaults when absent."""
    return get_config().get("logging", {})


def get_server_config() -> Dict[str, Any]:
    """
    Get server configuration for the API.

    Returns:
        Dict with host and port for the API server.
    """
    api_config = get_api_config()
    base_url = api_config.get("base_url", "http://localhost:8000")

    # Format: http://host:port
    host = "0.0.0.0"
    port = 8000

    try:
        url_part = base_url.split("//")[-1]
        if ":" in url_part:
            host_part, port_str = url_part.rsplit(":", 1)
            port = int(port_str.rstrip("/"))
            if host_part != "localhost":
                host = host_part
    except (ValueError, IndexError):
        pass

    return {"host": host, "port": port}
