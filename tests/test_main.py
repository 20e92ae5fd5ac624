import functools
import json
import signal
import socket

import pytest
from rich.console import Console

import main as cli
import scanner
from config import ResolutionError
from scanner import ScanOutcome


@pytest.fixture
def no_scan_state(monkeypatch):
    """Fails the test if a frontier or collector is ever built."""
    def forbidden(*args, **kwargs):
        raise AssertionError("scan state constructed")

    monkeypatch.setattr(scanner, "PortFrontier", forbidden)
    monkeypatch.setattr(scanner, "ResultCollector", forbidden)


def test_open_port_reported_and_complete(listener, capsys):
    rc = cli.main(["127.0.0.1", str(listener), str(listener)])
    out = capsys.readouterr().out
    assert rc == 0
    assert "--- Starting Port Scan ---" in out
    assert f"[OPEN] 127.0.0.1:{listener}" in out
    assert f"\n{listener}\n" in out
    assert "--- Scan Complete ---" in out


def test_no_open_ports_is_still_success(closed_port, capsys):
    rc = cli.main(["-t", "1", "-j", "5", "127.0.0.1", str(closed_port), str(closed_port)])
    out = capsys.readouterr().out
    assert rc == 0
    assert "No open ports found." in out
    assert "--- Scan Complete ---" in out


def test_json_output(listener, capsys):
    rc = cli.main(["--json", "127.0.0.1", str(listener), str(listener)])
    captured = capsys.readouterr()
    assert rc == 0
    doc = json.loads(captured.out)
    assert doc["status"] == "complete"
    assert doc["open_ports"] == [listener]
    assert doc["target"]["address"] == "127.0.0.1"
    assert f"[OPEN] 127.0.0.1:{listener}" in captured.err


def test_user_abort_reports_partial_results_and_exits_zero(monkeypatch, capsys):
    real_scanner = cli.PortScanner

    def scanner_with_abort(scan_range, config, cancel=None, on_open=None):
        def prober(address, port, timeout):
            if port == 5:
                cancel.set()
            return ScanOutcome.OPEN if port == 3 else ScanOutcome.CLOSED

        return real_scanner(scan_range, config, cancel=cancel, on_open=on_open, prober=prober)

    monkeypatch.setattr(cli, "PortScanner", scanner_with_abort)
    rc = cli.main(["-j", "1", "127.0.0.1", "1", "100"])
    out = capsys.readouterr().out
    assert rc == 0
    assert "[OPEN] 127.0.0.1:3" in out
    assert "--- Scan Aborted by User ---" in out
    assert "Scan Complete" not in out
    assert "5 ports probed" in out


@pytest.mark.parametrize(
    "argv",
    [
        ["-j", "0", "127.0.0.1", "1", "10"],
        ["-j", "1001", "127.0.0.1", "1", "10"],
        ["-t", "-1", "127.0.0.1", "1", "10"],
        ["-t", "0", "127.0.0.1", "1", "10"],
        ["127.0.0.1", "abc", "10"],
        ["127.0.0.1", "1", "10x"],
        ["127.0.0.1", "20", "10"],
        ["127.0.0.1", "0", "10"],
        ["127.0.0.1", "1", "70000"],
        ["127.0.0.1", "1_000", "2000"],
        ["127.0.0.1", "1", "\u0663"],
    ],
)
def test_invalid_input_exits_one_without_scanning(argv, no_scan_state, capsys):
    assert cli.main(argv) == 1
    assert "Error:" in capsys.readouterr().err


def test_unresolved_host_exits_one_before_workers(monkeypatch, capsys):
    def no_such_host(*args, **kwargs):
        raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")

    def forbidden(*args, **kwargs):
        raise AssertionError("scanner constructed")

    monkeypatch.setattr(cli.socket, "getaddrinfo", no_such_host)
    monkeypatch.setattr(cli, "PortScanner", forbidden)
    assert cli.main(["no-such-host.invalid", "80", "80"]) == 1
    assert "Could not resolve hostname: no-such-host.invalid" in capsys.readouterr().err


@pytest.mark.parametrize(
    "argv",
    [
        ["127.0.0.1", "80"],
        ["--bogus", "127.0.0.1", "1", "2"],
        ["-j", "many", "h", "1", "2"],
        ["-j", "1_0", "h", "1", "2"],
        ["-t", "2.5", "h", "1", "2"],
    ],
)
def test_usage_errors_exit_one(argv, capsys):
    with pytest.raises(SystemExit) as exc:
        cli.main(argv)
    assert exc.value.code == 1
    assert "usage:" in capsys.readouterr().err


def test_help_exits_zero(capsys):
    with pytest.raises(SystemExit) as exc:
        cli.main(["-h"])
    assert exc.value.code == 0
    assert "-t TIMEOUT" in capsys.readouterr().out


def test_resolve_host_ipv4_literal():
    assert cli.resolve_host("127.0.0.1") == "127.0.0.1"


def test_resolve_host_failure(monkeypatch):
    def no_such_host(*args, **kwargs):
        raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")

    monkeypatch.setattr(cli.socket, "getaddrinfo", no_such_host)
    with pytest.raises(ResolutionError):
        cli.resolve_host("nowhere.invalid")


class RecordingMonitor:
    def __init__(self, cancel, fail=False):
        self.fail = fail
        self.stopped = False

    def start(self):
        if self.fail:
            raise RuntimeError("cannot put stdin in cbreak mode")

    def stop(self):
        self.stopped = True


def test_key_monitor_start_failure_restores_sigint(monkeypatch, closed_port):
    monitors = []

    def failing_monitor(cancel):
        monitors.append(RecordingMonitor(cancel, fail=True))
        return monitors[-1]

    monkeypatch.setattr(cli, "KeyMonitor", failing_monitor)
    before = signal.getsignal(signal.SIGINT)
    with pytest.raises(RuntimeError):
        cli.main(["127.0.0.1", str(closed_port), str(closed_port)])
    assert signal.getsignal(signal.SIGINT) is before
    assert monitors[0].stopped


def test_progress_start_failure_restores_terminal_and_sigint(monkeypatch, closed_port):
    monitors = []
    bars = []

    class FailingProgress:
        def __init__(self, progress, console):
            self.stopped = False
            bars.append(self)

        def start(self):
            raise RuntimeError("live display already active")

        def stop(self, aborted=False):
            self.stopped = True

    def recording_monitor(cancel):
        monitors.append(RecordingMonitor(cancel))
        return monitors[-1]

    monkeypatch.setattr(cli, "Console", functools.partial(Console, force_terminal=True))
    monkeypatch.setattr(cli, "KeyMonitor", recording_monitor)
    monkeypatch.setattr(cli, "ProgressUI", FailingProgress)
    before = signal.getsignal(signal.SIGINT)
    with pytest.raises(RuntimeError):
        cli.main(["127.0.0.1", str(closed_port), str(closed_port)])
    assert signal.getsignal(signal.SIGINT) is before
    assert monitors[0].stopped
    assert bars[0].stopped
