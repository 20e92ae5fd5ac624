# main.py
# CLI entrypoint: argument handling, target resolution, scan lifecycle and summary

from __future__ import annotations
import argparse
import logging
import signal
import socket
import sys
import threading
from typing import List, Optional

from rich.console import Console
from rich.logging import RichHandler

from config import (
    DEFAULT_TIMEOUT,
    DEFAULT_WORKERS,
    MAX_WORKERS,
    TOOL_NAME,
    VERSION,
    ConfigError,
    ResolutionError,
    ScanConfig,
    ScanRange,
    ScanResourceError,
    parse_int,
    parse_port,
    validate_port_range,
)
from reporter import Reporter, format_header
from scanner import PortScanner
from ui import KeyMonitor, ProgressUI

logger = logging.getLogger(__name__)


class ScanArgumentParser(argparse.ArgumentParser):
    # Usage errors exit with 1, like every other invalid input
    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def build_parser() -> ScanArgumentParser:
    parser = ScanArgumentParser(
        prog="portprobe",
        description="Concurrent TCP connect port scanner",
        epilog="Example: portprobe -t 2 -j 50 example.com 80 443",
    )
    parser.add_argument("target", help="IP address or hostname")
    parser.add_argument("start_port", help="First port of the range")
    parser.add_argument("end_port", help="Last port of the range (inclusive)")
    parser.add_argument("-t", "--timeout", type=whole_number, default=DEFAULT_TIMEOUT,
                        help=f"Timeout per port in seconds (default: {DEFAULT_TIMEOUT})")
    parser.add_argument("-j", "--threads", type=whole_number, default=DEFAULT_WORKERS,
                        help=f"Number of worker threads, 1-{MAX_WORKERS} (default: {DEFAULT_WORKERS})")
    parser.add_argument("--json", action="store_true", help="Print the summary as JSON")
    parser.add_argument("--no-progress", action="store_true", help="Do not draw the progress bar")
    parser.add_argument("--no-color", action="store_true", help="Disable colorized output")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-v info, -vv debug)")
    parser.add_argument("--version", action="version", version=f"{TOOL_NAME} {VERSION}")
    return parser


def whole_number(text: str) -> int:
    try:
        return parse_int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer value: {text!r}") from None


def setup_logging(verbosity: int, console: Console):
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def resolve_host(target: str) -> str:
    """First IPv4 address for a hostname or IPv4 literal. Raises ResolutionError."""
    try:
        infos = socket.getaddrinfo(target, None, socket.AF_INET, socket.SOCK_STREAM)
    except (socket.gaierror, UnicodeError):
        raise ResolutionError(f"Could not resolve hostname: {target}") from None
    if not infos:
        raise ResolutionError(f"Could not resolve hostname: {target}")
    return infos[0][4][0]


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    console = Console(no_color=args.no_color, highlight=False)
    err_console = Console(stderr=True, no_color=args.no_color, highlight=False)
    setup_logging(args.verbose, err_console)

    # Validating: nothing below allocates scan state until input is known good
    try:
        config = ScanConfig(timeout_seconds=args.timeout, worker_count=args.threads)
        start_port = parse_port(args.start_port, "start")
        end_port = parse_port(args.end_port, "end")
        validate_port_range(start_port, end_port)
        address = resolve_host(args.target)
        scan_range = ScanRange(address, start_port, end_port)
        logger.info("Resolved %s to %s", args.target, address)
    except ConfigError as e:
        err_console.print(f"[bold red]Error:[/bold red] {e}")
        return 1

    # JSON mode keeps stdout machine-readable
    notify_console = err_console if args.json else console

    def announce(addr: str, port: int):
        notify_console.print(f"[OPEN] {addr}:{port}", markup=False)

    cancel = threading.Event()
    scanner = PortScanner(scan_range, config, cancel=cancel, on_open=announce)

    if not args.json:
        console.print(format_header(args.target, scan_range, config), markup=False, soft_wrap=True)

    monitor = KeyMonitor(cancel)
    ui = None
    if console.is_terminal and not args.no_progress and not args.json:
        ui = ProgressUI(scanner.progress, console)

    previous_handler = signal.signal(signal.SIGINT, lambda signum, frame: cancel.set())
    try:
        monitor.start()
        if ui:
            ui.start()
        report = scanner.run(target=args.target)
    except ScanResourceError as e:
        err_console.print(f"[bold red]Error:[/bold red] {e}")
        return 1
    finally:
        if ui:
            ui.stop(aborted=cancel.is_set())
        monitor.stop()
        signal.signal(signal.SIGINT, previous_handler)

    reporter = Reporter(report)
    if args.json:
        console.print_json(reporter.to_json())
    else:
        console.print(reporter.to_text(), markup=False, soft_wrap=True)
    return 0


if __name__ == "__main__":
    sys.exit(main())
