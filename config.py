# config.py
# Central configuration for PortProbe: scan parameters, defaults, validation errors

from __future__ import annotations
import ipaddress
import re
from dataclasses import dataclass

TOOL_NAME = "PortProbe"
VERSION = "1.0.0"

# CLI defaults
DEFAULT_TIMEOUT = 1
DEFAULT_WORKERS = 10
MAX_WORKERS = 1000

MIN_PORT = 1
MAX_PORT = 65535

# q, Q and ESC stop a running scan
ABORT_KEYS = frozenset({"q", "Q", "\x1b"})

# Refresh period for the progress bar and the key monitor poll (seconds)
PROGRESS_INTERVAL = 0.1


class ConfigError(ValueError):
    """Invalid user input. Raised before any scanning starts."""


class ResolutionError(ConfigError):
    """The target host has no IPv4 address."""


class ScanResourceError(RuntimeError):
    """A thread or other scan resource could not be acquired."""


_INTEGER = re.compile(r"[+-]?[0-9]+")


def parse_int(text: str) -> int:
    """Plain decimal integer with an optional sign. No underscores, no other digit sets."""
    if not isinstance(text, str) or not _INTEGER.fullmatch(text.strip()):
        raise ValueError(f"invalid integer: {text!r}")
    return int(text)


def parse_port(text: str, label: str) -> int:
    try:
        return parse_int(text)
    except ValueError:
        raise ConfigError(f"Invalid {label} port.") from None


def validate_port_range(start_port: int, end_port: int) -> None:
    if start_port < MIN_PORT or end_port > MAX_PORT or start_port > end_port:
        raise ConfigError(f"Invalid port range [{start_port} - {end_port}].")


@dataclass(frozen=True)
class ScanConfig:
    # Per-port connect timeout (seconds)
    timeout_seconds: int = DEFAULT_TIMEOUT

    # Number of worker threads, fixed for the whole run
    worker_count: int = DEFAULT_WORKERS

    def __post_init__(self):
        if self.timeout_seconds <= 0:
            raise ConfigError("Invalid timeout value.")
        if not (1 <= self.worker_count <= MAX_WORKERS):
            raise ConfigError(f"Invalid thread count (1-{MAX_WORKERS}).")


@dataclass(frozen=True)
class ScanRange:
    address: str
    start_port: int
    end_port: int

    def __post_init__(self):
        try:
            ipaddress.IPv4Address(self.address)
        except ValueError:
            raise ConfigError(f"Not an IPv4 address: {self.address}") from None
        validate_port_range(self.start_port, self.end_port)

    @property
    def size(self) -> int:
        return self.end_port - self.start_port + 1
