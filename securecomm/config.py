"""
Configuration and Runtime Context

Loads the structured-text configuration file and builds the RuntimeContext
that is handed explicitly to every component needing to log or read
settings. There is no module-level logging or config state.

Configuration file (YAML; the JSON format of earlier releases also loads):

    server_address: 127.0.0.1
    server_port: 5555
    log_level: INFO              # ERROR | WARN | INFO | DEBUG
    log_file_path: ""            # empty = console
    framing: length-prefixed     # length-prefixed | datagram
    nonce_strategy: random       # random | counter
    quit_command: exit
    read_size: 4096
    auth:
      backend: static            # static | file
      users_file: users.yaml
"""

import logging
import logging.handlers
import queue
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .errors import ConfigurationError
from .integration.event_logger import EventLogger
from .messaging.framing import FRAMING_MODES, LENGTH_PREFIXED


LOG_LEVELS = {
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}
NONCE_STRATEGIES = ("random", "counter")
AUTH_BACKENDS = ("static", "file")

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOGGER_NAME = "securecomm"

DEFAULT_READ_SIZE = 4096


@dataclass
class AuthConfig:
    """Which AuthenticationProvider to build."""
    backend: str = "static"
    users_file: Optional[str] = None


@dataclass
class Config:
    """Validated runtime configuration."""
    server_address: str
    server_port: int
    log_level: str = "INFO"
    log_file_path: str = ""
    framing: str = LENGTH_PREFIXED
    nonce_strategy: str = "random"
    quit_command: str = "exit"
    read_size: int = DEFAULT_READ_SIZE
    auth: AuthConfig = field(default_factory=AuthConfig)

    @property
    def logging_level(self) -> int:
        return LOG_LEVELS[self.log_level]


def _load_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")

    try:
        loaded = yaml.safe_load(path.read_text())
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in config file {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Expected {path} to contain a mapping of settings")
    return loaded


def _require_str(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ConfigurationError(f"'{key}' is missing or not a string")
    return value


def _optional_str(data: Dict[str, Any], key: str, default: str) -> str:
    value = data.get(key, default)
    if value is None:
        return default
    if not isinstance(value, str):
        raise ConfigurationError(f"'{key}' must be a string")
    return value


def _choice(data: Dict[str, Any], key: str, choices, default: str) -> str:
    value = _optional_str(data, key, default)
    if value not in choices:
        raise ConfigurationError(
            f"Unknown '{key}' value '{value}' (expected one of: {', '.join(choices)})"
        )
    return value


def _positive_int(data: Dict[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigurationError(f"'{key}' must be a positive integer")
    return value


def _parse_auth(data: Dict[str, Any]) -> AuthConfig:
    section = data.get("auth") or {}
    if not isinstance(section, dict):
        raise ConfigurationError("'auth' must be a mapping")

    backend = _choice(section, "backend", AUTH_BACKENDS, "static")
    users_file = section.get("users_file")
    if users_file is not None and not isinstance(users_file, str):
        raise ConfigurationError("'auth.users_file' must be a string")
    if backend == "file" and not users_file:
        raise ConfigurationError("'auth.users_file' is required for the file backend")
    return AuthConfig(backend=backend, users_file=users_file)


def parse_configuration(data: Dict[str, Any]) -> Config:
    """
    Validate a mapping of settings.

    Raises:
        ConfigurationError: On the first missing or invalid field
    """
    server_address = _require_str(data, "server_address")

    server_port = data.get("server_port")
    if isinstance(server_port, bool) or not isinstance(server_port, int):
        raise ConfigurationError("'server_port' is missing or not a number")
    if not 0 < server_port < 65536:
        raise ConfigurationError(f"'server_port' out of range: {server_port}")

    if not isinstance(data.get("log_level"), str):
        raise ConfigurationError("'log_level' is missing or not a string")
    log_level = _choice(data, "log_level", tuple(LOG_LEVELS), "INFO")

    return Config(
        server_address=server_address,
        server_port=server_port,
        log_level=log_level,
        log_file_path=_optional_str(data, "log_file_path", ""),
        framing=_choice(data, "framing", FRAMING_MODES, LENGTH_PREFIXED),
        nonce_strategy=_choice(data, "nonce_strategy", NONCE_STRATEGIES, "random"),
        quit_command=_optional_str(data, "quit_command", "exit"),
        read_size=_positive_int(data, "read_size", DEFAULT_READ_SIZE),
        auth=_parse_auth(data),
    )


def load_configuration(config_path: Union[str, Path]) -> Config:
    """Load and validate the configuration file at config_path."""
    path = Path(config_path).expanduser()
    return parse_configuration(_load_config_file(path))


class RuntimeContext:
    """
    Process-wide services, constructed once at start-up.

    Holds the configuration, the logger and the security event log.
    Log records pass through a queue so that logging never blocks the
    caller on file or console I/O.

    Example:
        >>> context = RuntimeContext.create(load_configuration("client.yaml"))
        >>> context.logger.info("Client starting...")
        >>> context.close()
    """

    def __init__(self, config: Config, logger: logging.Logger,
                 events: EventLogger,
                 listener: Optional[logging.handlers.QueueListener] = None):
        self.config = config
        self.logger = logger
        self.events = events
        self._listener = listener

    @classmethod
    def create(cls, config: Config, name: str = LOGGER_NAME,
               stream=None) -> 'RuntimeContext':
        """
        Build the logger (file or console sink) and the event log.

        Args:
            config: Validated configuration
            name: Logger name; one per context
            stream: Console stream when no log file is configured
        """
        if config.log_file_path:
            try:
                sink = logging.FileHandler(config.log_file_path, mode="a")
            except OSError as exc:
                raise ConfigurationError(
                    f"Failed to open log file '{config.log_file_path}': {exc}"
                ) from exc
        else:
            sink = logging.StreamHandler(stream or sys.stdout)
        sink.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))

        records = queue.SimpleQueue()
        listener = logging.handlers.QueueListener(records, sink, respect_handler_level=False)

        logger = logging.getLogger(name)
        logger.setLevel(config.logging_level)
        logger.propagate = False
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
        logger.addHandler(logging.handlers.QueueHandler(records))
        listener.start()

        events = EventLogger(logger=logger.getChild("events"))
        return cls(config, logger, events, listener)

    @classmethod
    def for_testing(cls, config: Optional[Config] = None) -> 'RuntimeContext':
        """Context that logs synchronously through the standard hierarchy."""
        config = config or Config(server_address="127.0.0.1", server_port=5555)
        logger = logging.getLogger(LOGGER_NAME)
        return cls(config, logger, EventLogger(logger=logger.getChild("events")))

    def log(self, level: int, text: str) -> None:
        """Fire-and-forget log entry."""
        self.logger.log(level, text)

    def close(self) -> None:
        """Record shutdown, flush queued records and stop the listener."""
        self.events.log_shutdown()
        if self._listener is not None:
            self._listener.stop()
            for handler in self._listener.handlers:
                handler.close()
            self._listener = None
