"""Pool of context threads plus per-client traffic accounting on disk."""

from __future__ import annotations

import logging
import os
import queue
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from .ctxthread import MAX_CTXES, CtxesThread
from .tinyclasses import ByteStats, SinOut

_log = logging.getLogger(__name__)

MAX_THREADS = 256
THREADS_CNT = 128

_STATS_LINE_LEN = 72
_STATS_EVERY = 3
_STOP_WAIT = 32.0
_FINAL_DIFF = 10

Reporter = Callable[[SinOut, str], str]


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(int(value), high))


@dataclass
class PoolConfig:
    """Settings of the thread pool."""

    min_threads: int = 1
    max_threads: int = 8
    clients_perthread: int = 64
    time_out: float = 30.0
    tickfile: Optional[str] = None
    max_rollup: int = 1 << 20
    stop_file: Optional[str] = "/tmp/buflea.stop"


def _stats_line(values: Tuple[int, ...]) -> str:
    return " ".join(f"{value:011d}" for value in values) + "\n"


def _rollup(path: Path) -> None:
    try:
        os.replace(path, path.with_suffix(".log1"))
    except OSError as exc:
        _log.error("cannot roll up %s: %s", path, exc)


class ThreadPool(threading.Thread):
    """Owns the context threads, the context queue and traffic statistics."""

    def __init__(self, config: PoolConfig, logs_path: str) -> None:
        super().__init__(name="threadpool", daemon=True)
        self.config = config
        self.logs_path = Path(logs_path)
        self.min_threads = _clamp(config.min_threads, 1, THREADS_CNT)
        self.max_threads = _clamp(config.max_threads, self.min_threads, MAX_THREADS)
        self.capacity = _clamp(config.clients_perthread, 1, MAX_CTXES)
        self.queue: "queue.Queue" = queue.Queue()
        self.alive = True
        self.count = 0
        self.lock = threading.RLock()
        self.reporters: List[Reporter] = []
        self._pool: List[CtxesThread] = []
        self._clients: Dict[str, ByteStats] = {}
        self._halt = threading.Event()

    def __len__(self) -> int:
        with self.lock:
            return len(self._pool)

    @property
    def threads(self) -> Tuple[CtxesThread, ...]:
        with self.lock:
            return tuple(self._pool)

    def create(self) -> bool:
        """Start the minimum number of static context threads."""
        _log.info("STARTING %d threads. out of:%d", self.min_threads, self.max_threads)
        for _ in range(self.min_threads):
            self.add_thread(False)
        return True

    def add_thread(self, dynamic: bool) -> bool:
        """Start one more context thread; False when the pool is full."""
        with self.lock:
            if len(self._pool) >= self.max_threads:
                return False
            thread = CtxesThread(
                self, len(self._pool), dynamic, self.config.time_out, self.config.tickfile
            )
            self._pool.append(thread)
        thread.start()
        return True

    def remove_thread(self, thread: CtxesThread) -> None:
        with self.lock:
            if thread in self._pool:
                self.count -= 1
                self._pool.remove(thread)

    def inc(self) -> None:
        with self.lock:
            self.count += 1

    def dec(self) -> None:
        with self.lock:
            self.count -= 1

    def save_statuses(self, ip: str, stats: ByteStats) -> None:
        """Add a context's pending bytes to the totals kept for ``ip``."""
        with self.lock:
            record = self._clients.setdefault(ip, ByteStats())
            record.total_bytes[ByteStats.IN] += stats.temp_bytes[ByteStats.IN]
            record.total_bytes[ByteStats.OUT] += stats.temp_bytes[ByteStats.OUT]

    @staticmethod
    def _read_last_line(path: Path) -> Optional[List[int]]:
        try:
            with open(path, "rb") as handle:
                handle.seek(0, os.SEEK_END)
                if handle.tell() < _STATS_LINE_LEN:
                    return None
                handle.seek(-_STATS_LINE_LEN, os.SEEK_END)
                fields = handle.read().split()
        except OSError:
            return None
        try:
            values = [int(field) for field in fields]
        except ValueError:
            return None
        return values if len(values) == 6 else None

    def commit_stats_to_file(self, now: float, diff: float) -> bool:
        """Append per-client byte counters to disk; True if any counter changed."""
        now = int(now)
        diff = int(diff) or 1
        with self.lock:
            local = self._clients
            self._clients = {}

        bytes_dir = self.logs_path / "bytes"
        bytes_dir.mkdir(parents=True, exist_ok=True)
        server = ByteStats()
        changes = False

        for ip, record in local.items():
            path = bytes_dir / f"{ip}.log0"
            last = self._read_last_line(path)
            if last is None:
                with open(path, "w") as handle:
                    handle.write(_stats_line((now, 0, 0, 0, 0, diff)))
                continue

            prev_in, prev_out = last[1], last[2]
            bytes_in = prev_in + record.total_bytes[ByteStats.IN]
            bytes_out = prev_out + record.total_bytes[ByteStats.OUT]
            if bytes_in != prev_in or bytes_out != prev_out:
                record.bps_spin[ByteStats.IN] = (bytes_in - prev_in) // diff
                record.bps_spin[ByteStats.OUT] = (bytes_out - prev_out) // diff
                for direction in (ByteStats.IN, ByteStats.OUT):
                    server.bps_spin[direction] += record.bps_spin[direction]
                    server.total_bytes[direction] += record.total_bytes[direction]
                with open(path, "a") as handle:
                    handle.write(
                        _stats_line((now, bytes_in, bytes_out, prev_in, prev_out, diff))
                    )
                changes = True
            if path.stat().st_size > self.config.max_rollup:
                _rollup(path)

        if changes:
            path = bytes_dir / "metrics.log0"
            with open(path, "a") as handle:
                handle.write(
                    f"{now},{len(local)},"
                    f"{server.bps_spin[ByteStats.IN]},{server.bps_spin[ByteStats.OUT]},"
                    f"{server.total_bytes[ByteStats.IN]},{server.total_bytes[ByteStats.OUT]}\n"
                )
                size = handle.tell()
            if size > self.config.max_rollup:
                _rollup(path)
        return changes

    def accumulate_log(self, text: str, client_ip: str) -> None:
        """Append ``text`` to the log file kept for ``client_ip``."""
        if not text:
            return
        logs_dir = self.logs_path / "logs"
        with self.lock:
            logs_dir.mkdir(parents=True, exist_ok=True)
            path = logs_dir / f"{client_ip}.log0"
            try:
                with open(path, "a") as handle:
                    handle.write(text)
                    size = handle.tell()
            except OSError as exc:
                _log.error("cannot write %s: %s", path, exc)
                return
            if size > self.config.max_rollup:
                _rollup(path)

    def metrics(self, hname: str = "") -> str:
        """An HTTP response holding an HTML table of the pool's state."""
        totals = SinOut()
        parts = [
            "HTTP/1.1 200 OK\r\n",
            "Content-Type: text/html;charset=utf-8\r\n\r\n",
            "<style> th, td {border-width: 0 0 1px 1px;border-style: solid;border-color: #600;}\n",
            "th{background-color: #EFC;}\n",
            "</style>\n",
            "<table>\n",
        ]
        parts.extend(reporter(totals, hname) for reporter in self.reporters)
        threads = self.threads
        parts.append(f"<tr><th colspan='4''>Thread pool</th><th>{len(threads)}</th></tr>\n")
        parts.extend(thread.metrics(totals) for thread in threads)
        parts.append(
            f"<tr><th colspan='3'>BPS/BUF</th><td>IN:{totals.inbound} Ops</td>"
            f"<td>OUT: {totals.outbound} Ops</td></tr>"
        )
        parts.append("</table>\n")
        return "".join(parts)

    def run(self) -> None:
        now = int(time.time())
        previous = now
        tick = 0
        while not self._halt.is_set() and self.alive:
            now = int(time.time())
            if tick % _STATS_EVERY == 0:
                diff = now - previous
                previous = now
                self.commit_stats_to_file(now, diff)
            tick += 1
            self._halt.wait(1)
        _log.debug("Thread pool exits")
        self.commit_stats_to_file(now, _FINAL_DIFF)
        if self.config.stop_file:
            Path(self.config.stop_file).unlink(missing_ok=True)
        self.alive = False

    def stop(self) -> None:
        """Stop every context thread and the pool's own thread."""
        self._halt.set()
        threads = self.threads
        for thread in threads:
            thread.signal_to_stop()
        for _ in threads:
            self.queue.put(None)
        deadline = time.monotonic() + _STOP_WAIT
        for thread in threads:
            thread.join(max(0.0, deadline - time.monotonic()))
        if self.is_alive() and threading.current_thread() is not self:
            self.join(max(0.0, deadline - time.monotonic()))
        with self.lock:
            self._pool.clear()