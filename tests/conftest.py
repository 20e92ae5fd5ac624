# conftest.py
# Shared fixtures: loopback listener, a port nobody listens on, scripted probe

from __future__ import annotations
import socket
import threading
from typing import Callable, Iterable, List, Optional

import pytest

from scanner import ScanOutcome


@pytest.fixture
def listener():
    srv = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    srv.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    srv.bind(("127.0.0.1", 0))
    srv.listen(128)
    try:
        yield srv.getsockname()[1]
    finally:
        srv.close()


@pytest.fixture
def closed_port():
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.bind(("127.0.0.1", 0))
    port = s.getsockname()[1]
    s.close()
    return port


class ScriptedProber:
    """Stands in for scanner.probe: answers OPEN for a fixed set of ports, records every call."""

    def __init__(self, open_ports: Iterable[int] = (), hook: Optional[Callable[[int], None]] = None):
        self.open_ports = set(open_ports)
        self.hook = hook
        self.calls: List[int] = []
        self._lock = threading.Lock()

    def __call__(self, address: str, port: int, timeout: float) -> ScanOutcome:
        with self._lock:
            self.calls.append(port)
        if self.hook:
            self.hook(port)
        return ScanOutcome.OPEN if port in self.open_ports else ScanOutcome.CLOSED


@pytest.fixture
def scripted():
    return ScriptedProber
