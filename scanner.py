# scanner.py
# Concurrent TCP connect scanning: probe, shared port frontier, result collection, worker pool

from __future__ import annotations
import concurrent.futures
import enum
import errno
import logging
import selectors
import socket
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from config import PROGRESS_INTERVAL, ScanConfig, ScanRange, ScanResourceError

logger = logging.getLogger(__name__)

# connect_ex() codes meaning the handshake is still pending on a non-blocking socket
_IN_PROGRESS = {errno.EINPROGRESS, errno.EWOULDBLOCK, errno.EALREADY}


def _writability_selector() -> selectors.BaseSelector:
    # poll() holds no descriptor of its own and has no FD_SETSIZE cap, so an
    # in-flight connect costs exactly one fd
    if hasattr(selectors, "PollSelector"):
        return selectors.PollSelector()
    return selectors.DefaultSelector()


class ScanOutcome(enum.Enum):
    OPEN = "open"
    CLOSED = "closed"
    TIMEOUT = "timeout"
    ERROR = "error"


class ScanPhase(enum.Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    ABORTING = "aborting"
    DRAINING = "draining"
    REPORTING = "reporting"
    DONE = "done"


def probe(address: str, port: int, timeout: float) -> ScanOutcome:
    """
    Single non-blocking connect attempt against address:port.
    Never blocks longer than `timeout` plus overhead. The socket is always closed.
    """
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    except OSError as e:
        logger.debug("socket() failed for %s:%d: %s", address, port, e)
        return ScanOutcome.ERROR

    with sock:
        try:
            sock.setblocking(False)
        except OSError:
            return ScanOutcome.ERROR

        try:
            rc = sock.connect_ex((address, port))
        except OSError:
            return ScanOutcome.CLOSED
        if rc == 0:
            return ScanOutcome.OPEN
        if rc not in _IN_PROGRESS:
            return ScanOutcome.CLOSED

        try:
            with _writability_selector() as sel:
                sel.register(sock, selectors.EVENT_WRITE)
                events = sel.select(timeout)
        except (OSError, ValueError) as e:
            logger.debug("wait failed for %s:%d: %s", address, port, e)
            return ScanOutcome.ERROR
        if not events:
            return ScanOutcome.TIMEOUT

        try:
            so_error = sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
        except OSError:
            return ScanOutcome.ERROR
        return ScanOutcome.OPEN if so_error == 0 else ScanOutcome.CLOSED


class PortFrontier:
    """Hands out the ports of a range in increasing order, each exactly once."""

    def __init__(self, scan_range: ScanRange):
        self._start = scan_range.start_port
        self._end = scan_range.end_port
        self._next = scan_range.start_port
        self._lock = threading.Lock()

    def claim_next(self) -> Optional[int]:
        with self._lock:
            if self._next > self._end:
                return None
            port = self._next
            self._next += 1
            return port

    # Unlocked readers below; progress display tolerates a stale value

    @property
    def position(self) -> int:
        return self._next

    @property
    def total(self) -> int:
        return self._end - self._start + 1

    @property
    def claimed(self) -> int:
        return min(self._next - self._start, self.total)

    @property
    def exhausted(self) -> bool:
        return self._next > self._end


class ResultCollector:
    def __init__(self):
        self._ports: List[int] = []
        self._lock = threading.Lock()

    def record_open(self, port: int) -> None:
        with self._lock:
            self._ports.append(port)

    def snapshot_sorted(self) -> List[int]:
        # Only valid once every worker has finished
        return sorted(self._ports)

    def __len__(self) -> int:
        return len(self._ports)


@dataclass
class ScanContext:
    scan_range: ScanRange
    config: ScanConfig
    frontier: PortFrontier
    collector: ResultCollector
    cancel: threading.Event
    on_open: Optional[Callable[[str, int], None]] = None
    prober: Callable[[str, int, float], ScanOutcome] = probe


def scan_worker(ctx: ScanContext) -> int:
    """
    Pull ports from the frontier until it runs dry or the scan is cancelled.
    Returns the number of ports this worker probed.
    """
    address = ctx.scan_range.address
    probed = 0
    while not ctx.cancel.is_set():
        port = ctx.frontier.claim_next()
        if port is None:
            break
        if ctx.cancel.is_set():
            # Claimed but left unscanned
            break

        outcome = ctx.prober(address, port, ctx.config.timeout_seconds)
        probed += 1
        logger.debug("%s:%d -> %s", address, port, outcome.value)

        if outcome is ScanOutcome.OPEN:
            if ctx.on_open:
                try:
                    ctx.on_open(address, port)
                except Exception:
                    logger.exception("open-port callback failed for %s:%d", address, port)
            ctx.collector.record_open(port)
    return probed


class WorkerPool:
    """A fixed set of `worker_count` scan_worker loops sharing one ScanContext."""

    def __init__(self, ctx: ScanContext):
        self.ctx = ctx
        self._executor: Optional[concurrent.futures.ThreadPoolExecutor] = None
        self._futures: List[concurrent.futures.Future] = []

    def start(self) -> None:
        count = self.ctx.config.worker_count
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=count, thread_name_prefix="scan-worker"
        )
        try:
            for _ in range(count):
                self._futures.append(self._executor.submit(scan_worker, self.ctx))
        except RuntimeError as e:
            self.ctx.cancel.set()
            self._executor.shutdown(wait=True)
            raise ScanResourceError(f"Could not start worker threads: {e}") from e
        logger.info("Started %d workers", count)

    def wait(self, timeout: Optional[float] = None) -> bool:
        _, pending = concurrent.futures.wait(self._futures, timeout=timeout)
        return not pending

    def join(self) -> int:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
        return sum(f.result() for f in self._futures)


@dataclass
class ScanReport:
    target: str
    address: str
    start_port: int
    end_port: int
    open_ports: List[int]
    aborted: bool
    probed: int
    elapsed: float

    @property
    def status(self) -> str:
        return "aborted" if self.aborted else "complete"


class PortScanner:
    """Owns one scan run: builds the shared state, runs the pool, produces the report."""

    def __init__(
        self,
        scan_range: ScanRange,
        config: ScanConfig,
        cancel: Optional[threading.Event] = None,
        on_open: Optional[Callable[[str, int], None]] = None,
        prober: Callable[[str, int, float], ScanOutcome] = probe,
    ):
        self.scan_range = scan_range
        self.config = config
        self.cancel = cancel if cancel is not None else threading.Event()
        self.on_open = on_open
        self.prober = prober
        self._phase = ScanPhase.IDLE
        self.history: List[ScanPhase] = [ScanPhase.IDLE]
        self._frontier: Optional[PortFrontier] = None
        self._final_claimed = 0

    @property
    def phase(self) -> ScanPhase:
        return self._phase

    def _set_phase(self, phase: ScanPhase) -> None:
        logger.debug("phase %s -> %s", self._phase.value, phase.value)
        self._phase = phase
        self.history.append(phase)

    def progress(self) -> Tuple[int, int]:
        frontier = self._frontier
        if frontier is None:
            return self._final_claimed, self.scan_range.size
        return frontier.claimed, frontier.total

    def run(self, target: Optional[str] = None) -> ScanReport:
        if self._phase is not ScanPhase.IDLE:
            raise RuntimeError("PortScanner.run() may only be called once")

        frontier = PortFrontier(self.scan_range)
        collector = ResultCollector()
        ctx = ScanContext(
            scan_range=self.scan_range,
            config=self.config,
            frontier=frontier,
            collector=collector,
            cancel=self.cancel,
            on_open=self.on_open,
            prober=self.prober,
        )
        self._frontier = frontier
        pool = WorkerPool(ctx)

        started = time.perf_counter()
        self._set_phase(ScanPhase.SCANNING)
        try:
            pool.start()
            while True:
                done = pool.wait(PROGRESS_INTERVAL)
                self._track_drain(frontier)
                if done:
                    break
            probed = pool.join()
        except ScanResourceError:
            self._set_phase(ScanPhase.DONE)
            self._frontier = None
            raise
        elapsed = time.perf_counter() - started

        self._set_phase(ScanPhase.REPORTING)
        aborted = self.cancel.is_set()
        if aborted:
            logger.info("Scan aborted after %d ports", probed)
        report = ScanReport(
            target=target or self.scan_range.address,
            address=self.scan_range.address,
            start_port=self.scan_range.start_port,
            end_port=self.scan_range.end_port,
            open_ports=collector.snapshot_sorted(),
            aborted=aborted,
            probed=probed,
            elapsed=elapsed,
        )
        self._final_claimed = frontier.claimed
        self._frontier = None
        self._set_phase(ScanPhase.DONE)
        return report

    def _track_drain(self, frontier: PortFrontier) -> None:
        if self._phase is not ScanPhase.SCANNING:
            return
        if self.cancel.is_set():
            self._set_phase(ScanPhase.ABORTING)
            self._set_phase(ScanPhase.DRAINING)
        elif frontier.exhausted:
            self._set_phase(ScanPhase.DRAINING)
