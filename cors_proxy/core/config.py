"""Configuration management for CORS Proxy Buddy."""

import copy
from typing import Any, List, Tuple

from cors_proxy.utils.logger import DEFAULT_LOGGING_CONFIG

# Default configuration schema
DEFAULT_CONFIG = {
    "server": {
        "host": "127.0.0.1",
        "port": 8080,
        "request_timeout": 30,
        "client_ip_header": "CF-Connecting-IP",
        "proxied_by": "CORS-Proxy-Buddy",
    },
    "security": {
        "allowed_schemes": ["http", "https"],
        "blocked_hosts": ["localhost", "127.0.0.1", "::1"],
        "log_security_events": True,
    },
    "cache": {"max_entries": 500, "ttl_seconds": 300, "max_cache_response_size": 10485760},  # 10MB
    "throttling": {"window_seconds": 10, "max_requests": 10, "max_tracked_clients": 10000},
    "logging": dict(DEFAULT_LOGGING_CONFIG),
}


def deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge two dictionaries."""
    result = copy.deepcopy(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = deep_merge(result[k], v)
        else:
            result[k] = copy.deepcopy(v)
    return result


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_str_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(v, str) for v in value)


class ConfigurationValidator:
    """Validates configuration and provides error reporting."""

    @staticmethod
    def validate_config(config: dict) -> Tuple[bool, List[str]]:
        errors = []
        if not isinstance(config, dict):
            errors.append("Config must be a dictionary.")
            return False, errors
        # Validate server
        server = config.get("server", {})
        if not isinstance(server.get("host", None), str):
            errors.append("server.host must be a string.")
        port = server.get("port", None)
        if not _is_int(port) or not 0 <= port <= 65535:
            errors.append("server.port must be an integer between 0 and 65535.")
        if not _is_number(server.get("request_timeout", None)) or server.get("request_timeout") <= 0:
            errors.append("server.request_timeout must be a positive number.")
        if not isinstance(server.get("client_ip_header", None), str) or not server.get("client_ip_header"):
            errors.append("server.client_ip_header must be a non-empty string.")
        if not isinstance(server.get("proxied_by", None), str):
            errors.append("server.proxied_by must be a string.")
        # Validate security
        security = config.get("security", {})
        if not _is_str_list(security.get("allowed_schemes", None)):
            errors.append("security.allowed_schemes must be a list of strings.")
        if not _is_str_list(security.get("blocked_hosts", None)):
            errors.append("security.blocked_hosts must be a list of strings.")
        if not isinstance(security.get("log_security_events", None), bool):
            errors.append("security.log_security_events must be a boolean.")
        # Validate cache
        cache = config.get("cache", {})
        if not _is_int(cache.get("max_entries", None)) or cache.get("max_entries") < 1:
            errors.append("cache.max_entries must be a positive integer.")
        if not _is_number(cache.get("ttl_seconds", None)) or cache.get("ttl_seconds") <= 0:
            errors.append("cache.ttl_seconds must be a positive number.")
        if not _is_int(cache.get("max_cache_response_size", None)):
            errors.append("cache.max_cache_response_size must be an integer.")
        # Validate throttling
        throttling = config.get("throttling", {})
        if not _is_number(throttling.get("window_seconds", None)) or throttling.get("window_seconds") <= 0:
            errors.append("throttling.window_seconds must be a positive number.")
        if not _is_int(throttling.get("max_requests", None)) or throttling.get("max_requests") < 0:
            errors.append("throttling.max_requests must be a non-negative integer.")
        if not _is_int(throttling.get("max_tracked_clients", None)) or throttling.get("max_tracked_clients") < 1:
            errors.append("throttling.max_tracked_clients must be a positive integer.")
        # Validate logging
        logging_cfg = config.get("logging", {})
        if not isinstance(logging_cfg.get("level", None), str):
            errors.append("logging.level must be a string.")
        if logging_cfg.get("parent_logger") is not None and not isinstance(logging_cfg.get("parent_logger"), str):
            errors.append("logging.parent_logger must be a string or None.")
        if not isinstance(logging_cfg.get("format", None), str):
            errors.append("logging.format must be a string.")
        if not isinstance(logging_cfg.get("date_format", None), str):
            errors.append("logging.date_format must be a string.")
        if not isinstance(logging_cfg.get("enable_console", None), bool):
            errors.append("logging.enable_console must be a boolean.")
        if not isinstance(logging_cfg.get("enable_file", None), bool):
            errors.append("logging.enable_file must be a boolean.")
        if logging_cfg.get("file_path") is not None and not isinstance(logging_cfg.get("file_path"), str):
            errors.append("logging.file_path must be a string or None.")
        if not _is_int(logging_cfg.get("max_file_size", None)):
            errors.append("logging.max_file_size must be an integer.")
        if not _is_int(logging_cfg.get("backup_count", None)):
            errors.append("logging.backup_count must be an integer.")
        return len(errors) == 0, errors

    @staticmethod
    def merge_with_defaults(user_config: dict) -> dict:
        return deep_merge(DEFAULT_CONFIG, user_config)


class ConfigurationManager:
    """Manages configuration, validation, merging, and runtime updates."""

    def __init__(self, user_config: dict = None):
        if user_config is None:
            user_config = {}
        self._config = self.load_config(user_config)

    def load_config(self, user_config: dict) -> dict:
        merged = ConfigurationValidator.merge_with_defaults(user_config)
        valid, errors = ConfigurationValidator.validate_config(merged)
        if not valid:
            raise ValueError(f"Invalid configuration: {errors}")
        return merged

    @property
    def config(self) -> dict:
        return self._config

    def update(self, key_path: str, value: Any) -> None:
        """Update a config value at a dotted key path (e.g., 'server.host')."""
        keys = key_path.split(".")
        candidate = copy.deepcopy(self._config)
        d = candidate
        for k in keys[:-1]:
            if k not in d or not isinstance(d[k], dict):
                d[k] = {}
            d = d[k]
        d[keys[-1]] = value
        valid, errors = ConfigurationValidator.validate_config(candidate)
        if not valid:
            raise ValueError(f"Invalid configuration after update: {errors}")
        self._config = candidate

    def reload(self, new_config: dict) -> None:
        self._config = self.load_config(new_config)
