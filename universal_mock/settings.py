import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path

from universal_mock.exceptions import ConfigurationError

CONFIG_FILE = "config.json"
LOGGER_NAME = "universal_mock"

DEFAULTS = {
    "verbose": False,
    "interfaceAndPort": ":50000",
    "responseFile": "response.txt",
    "responseContentType": "text/xml; charset=UTF-8",
}

# JSON key -> expected python type of the value
CONFIG_TYPES = {
    "verbose": bool,
    "interfaceAndPort": str,
    "responseFile": str,
    "responseContentType": str,
}


def split_interface_and_port(interface_and_port: str):
    """
    Split "host:port" into its parts.

        ":50000"          -> ("", 50000)   all interfaces
        "localhost:20000" -> ("localhost", 20000)
        "[::1]:8080"      -> ("::1", 8080)
    """
    host, sep, port = interface_and_port.rpartition(":")
    if not sep:
        raise ConfigurationError(f"missing port in address {interface_and_port!r}")

    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    elif ":" in host:
        raise ConfigurationError(f"too many colons in address {interface_and_port!r}")

    if not (port.isascii() and port.isdigit()) or int(port) > 65535:
        raise ConfigurationError(f"invalid port {port!r} in address {interface_and_port!r}")
    return host, int(port)


def response_file_exists(filename) -> bool:
    # directories, broken links and unreadable paths all count as missing
    try:
        return Path(filename).is_file()
    except OSError:
        return False


@dataclass(frozen=True)
class Configuration:
    verbose_output: bool = DEFAULTS["verbose"]
    interface_and_port: str = DEFAULTS["interfaceAndPort"]
    response_file: str = DEFAULTS["responseFile"]
    response_content_type: str = DEFAULTS["responseContentType"]

    @property
    def address(self):
        return split_interface_and_port(self.interface_and_port)

    @property
    def host(self):
        return self.address[0]

    @property
    def port(self):
        return self.address[1]


class Settings:
    """
    Lazily loads the optional JSON config file and layers command line
    overrides on top of it. Inspired from Django's settings.

    Priority, lowest first: DEFAULTS, the config file, configure() overrides.
    """

    def __init__(self, config_file=CONFIG_FILE):
        self._config_file = config_file
        self._config = {}
        self._overrides = {}
        self._loaded = False
        self._load_error = None
        self._logger = None

    def _load_config(self):
        if self._loaded:
            return
        self._loaded = True
        try:
            with open(self._config_file, "r") as f:
                self._config = self._validate(json.load(f))
        except FileNotFoundError:
            self._load_error = f"Configuration file {self._config_file} not found. Using default settings."
            self._config = {}
        except (OSError, ValueError) as e:
            # json.JSONDecodeError and UnicodeDecodeError are ValueErrors too
            self._load_error = f"Error reading configuration from {self._config_file}: {e}"
            self._config = {}

    def _validate(self, config):
        if not isinstance(config, dict):
            raise ValueError(f"expected a JSON object, got {type(config).__name__}")
        for key, expected in CONFIG_TYPES.items():
            if key in config and not isinstance(config[key], expected):
                raise ValueError(
                    f"field {key!r} must be {expected.__name__}, got {type(config[key]).__name__}"
                )
        return config

    @property
    def load_error(self):
        """Why the config file was ignored, or None when it was used."""
        self._load_config()
        return self._load_error

    def __contains__(self, item):
        self._load_config()
        return item in self._config

    def get(self, key, default=None):
        if key not in DEFAULTS:
            return default
        self._load_config()
        if self._overrides.get(key) is not None:
            return self._overrides[key]
        value = self._config.get(key)
        # empty strings in the file keep the default, like an absent key
        if value is None or value == "":
            return DEFAULTS[key]
        return value

    def configure(self, **kwargs):
        """Apply command line values. None means the flag was not given."""
        unknown = set(kwargs) - set(DEFAULTS)
        if unknown:
            raise ConfigurationError(f"unknown settings: {', '.join(sorted(unknown))}")
        self._overrides.update({k: v for k, v in kwargs.items() if v is not None})

    @property
    def configuration(self) -> Configuration:
        return Configuration(
            verbose_output=self.get("verbose"),
            interface_and_port=self.get("interfaceAndPort"),
            response_file=self.get("responseFile"),
            response_content_type=self.get("responseContentType"),
        )

    @property
    def logger(self) -> logging.Logger:
        if self._logger is None:
            self._logger = self._setup_logger()
        return self._logger

    def _setup_logger(self) -> logging.Logger:
        """Sets up the logger with the appropriate level and handlers."""
        level = logging.DEBUG if self.get("verbose") else logging.INFO
        logger = logging.getLogger(LOGGER_NAME)
        logger.setLevel(level)

        # drop the handler from an earlier Settings so lines are not doubled
        for existing in list(logger.handlers):
            if existing.get_name() == LOGGER_NAME:
                logger.removeHandler(existing)

        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
        handler = logging.StreamHandler(sys.stderr)
        handler.set_name(LOGGER_NAME)
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        return logger
