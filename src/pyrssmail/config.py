"""
Configuration loaded from a YAML file into dataclasses.

Example file:

    feeds:
      - https://blog.rust-lang.org/feed.xml
    from_email: pyrssmail@example.com
    to_email: pyrssmail@example.com
    concurrency: 1
    sendmail_command: [sendmail, -t, -i]
    logging:
      level: INFO
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List

import yaml


DEFAULT_FEEDS = ["https://blog.rust-lang.org/feed.xml"]
DEFAULT_EMAIL = "pyrssmail@example.com"


class ConfigError(Exception):
    pass


@dataclass
class LoggingConfig:
    level: str = "INFO"


@dataclass
class AppConfig:
    feeds: List[str] = field(default_factory=lambda: list(DEFAULT_FEEDS))
    from_email: str = DEFAULT_EMAIL
    to_email: str = DEFAULT_EMAIL
    concurrency: int = 1
    sendmail_command: List[str] = field(default_factory=lambda: ["sendmail", "-t", "-i"])
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _check_keys(section: str, data: Dict[str, Any], cls: type) -> None:
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"unknown {section} key(s): {', '.join(unknown)}")


def _str_list(key: str, value: Any) -> List[str]:
    if not isinstance(value, list) or not all(isinstance(v, str) and v.strip() for v in value):
        raise ConfigError(f"'{key}' must be a list of non-empty strings")
    return [v.strip() for v in value]


def _email(key: str, value: Any) -> str:
    if not isinstance(value, str) or "@" not in value:
        raise ConfigError(f"'{key}' must be an email address")
    return value.strip()


def config_from_dict(data: Dict[str, Any]) -> AppConfig:
    _check_keys("config", data, AppConfig)
    cfg = AppConfig()

    if "feeds" in data:
        cfg.feeds = _str_list("feeds", data["feeds"])
    if "from_email" in data:
        cfg.from_email = _email("from_email", data["from_email"])
    if "to_email" in data:
        cfg.to_email = _email("to_email", data["to_email"])
    if "concurrency" in data:
        concurrency = data["concurrency"]
        if isinstance(concurrency, bool) or not isinstance(concurrency, int) or concurrency < 1:
            raise ConfigError("'concurrency' must be a positive integer")
        cfg.concurrency = concurrency
    if "sendmail_command" in data:
        cfg.sendmail_command = _str_list("sendmail_command", data["sendmail_command"])
    if "logging" in data:
        section = data["logging"] or {}
        if not isinstance(section, dict):
            raise ConfigError("'logging' must be a mapping")
        _check_keys("logging", section, LoggingConfig)
        cfg.logging = LoggingConfig(**{k: str(v) for k, v in section.items()})

    return cfg


def load_config(path: str) -> AppConfig:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"failed to read config: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"failed to parse config: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("failed to parse config: top level must be a mapping")
    return config_from_dict(data)


def write_example_config(path: str) -> bool:
    """Write the default config to `path` unless a file is already there."""
    if os.path.exists(path):
        return False
    parent = os.path.dirname(os.path.abspath(path))
    try:
        os.makedirs(parent, exist_ok=True)
    except OSError as e:
        raise ConfigError(f"failed to create config directory: {e}") from e
    try:
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(asdict(AppConfig()), f, sort_keys=False)
    except OSError as e:
        raise ConfigError(f"failed to create config file: {e}") from e
    return True
