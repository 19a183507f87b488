"""Worker thread that multiplexes a set of proxy connection contexts."""

from __future__ import annotations

import errno
import logging
import os
import queue
import select
import threading
import time
from enum import Enum
from typing import Any, List, Optional, Protocol, Sequence, Tuple

from .tinyclasses import Bucket, ByteStats, SinOut

_log = logging.getLogger(__name__)

MAX_CTXES = 1024
_PRELOAD = 8
_SPIN_SLEEP = 256 / 1_000_000
_IDLE_SLEEP = 0xFFFF / 1_000_000
_SELECT_TIMEOUT = 0xFFF / 1_000_000
_NO_EVENT_SLEEP = 0x1FF / 1_000_000
_TICK_EVERY = 10
_TICK_FILE_LIMIT = 1024
_DEFAULT_BPS_DELAY = 10.0


class CallResult(Enum):
    """Outcome of one context spin."""

    CONTINUE = "continue"
    DONE = "done"
    KILL = "kill"


class Context(Protocol):
    """What a connection context offers to the thread that drives it."""

    dead: bool

    def watch(self, thread: "CtxesThread") -> Tuple[List[Any], List[Any]]:
        """Sockets to wait on for reading and for writing."""
        ...

    def is_ready(self, readable: Sequence[Any], writable: Sequence[Any]) -> bool:
        ...

    def spin(self) -> CallResult:
        ...

    def destroy(self) -> None:
        ...

    def clear_fd(
        self,
        readable: Sequence[Any],
        writable: Sequence[Any],
        idle: bool,
        elapsed: float,
        first: bool,
    ) -> None:
        ...

    def metrics(self, totals: SinOut, count: int) -> str:
        ...

    def close_sockets(self) -> None:
        ...

    def clear(self) -> None:
        ...


class CtxesThread(threading.Thread):
    """Drives the contexts taken from the pool's queue until stopped.

    The pool provides ``queue`` (a ``queue.Queue`` in which None ends the
    work), ``capacity``, a writable ``alive`` flag, and the methods ``inc()``,
    ``remove_thread(thread)`` and ``save_statuses(ip, stats)``.
    """

    def __init__(
        self,
        pool: Any,
        index: int,
        dynamic: bool,
        timeout: float,
        tickfile: Optional[str],
    ) -> None:
        super().__init__(name=f"ctx-{index}", daemon=True)
        self.pool = pool
        self.index = index
        self.dynamic = dynamic
        self.timeout = timeout
        self.tickfile = tickfile
        self.stats = ByteStats()
        self.lock = threading.RLock()
        self.last_spin = time.time()
        self._ctxs: Bucket[Context] = Bucket(MAX_CTXES)
        self._halt = threading.Event()

    def __len__(self) -> int:
        with self.lock:
            return len(self._ctxs)

    @property
    def stopped(self) -> bool:
        return self._halt.is_set()

    def add_context(self, ctx: Context) -> bool:
        with self.lock:
            return self._ctxs.push(ctx)

    def _get_from_queue(self, maxctxes: int) -> int:
        """1 if a context was taken, 0 if none, -1 on the end-of-work marker."""
        if len(self._ctxs) >= maxctxes:
            return 0
        try:
            ctx = self.pool.queue.get_nowait()
        except queue.Empty:
            return 0
        if ctx is None:
            return -1
        with self.lock:
            self._ctxs.push(ctx)
        return 1

    def save_ctx_state(self, ip: str, ctx_stats: ByteStats, first: bool) -> None:
        """Fold a context's counters into this thread's and the pool's statistics."""
        if first:
            self.stats.reset_spin()
        for direction in (ByteStats.IN, ByteStats.OUT):
            self.stats.total_bytes[direction] += ctx_stats.temp_bytes[direction]
            self.stats.bps_spin[direction] += ctx_stats.bps_spin[direction]
        self.pool.save_statuses(ip, ctx_stats)
        ctx_stats.temp_bytes[ByteStats.IN] = 0
        ctx_stats.temp_bytes[ByteStats.OUT] = 0

    def metrics(self, totals: SinOut) -> str:
        """HTML table rows describing this thread; adds its rates to ``totals``."""
        with self.lock:
            count = len(self._ctxs)
            if not count:
                return ""
            bps_in = self.stats.bps_spin[ByteStats.IN]
            bps_out = self.stats.bps_spin[ByteStats.OUT]
            parts = [
                f"<tr><th colspan='5'>Thread:{self.index} Dynamic:{int(self.dynamic)}</th></tr>\n",
                f"<tr><th>BPS In/thread</th><td colspan='4'> {bps_in}</td></tr>\n",
                f"<tr><th>BPS Out/thread</th><td colspan='4'>{bps_out}</td></tr>\n",
            ]
            totals.inbound += bps_in
            totals.outbound += bps_out
            if count < 16:
                parts.append(
                    "<tr><th>Type</th><th>id</th><th>IN-Ops</th>"
                    "<th>OUT-Ops/sec</th><th>connection</th></tr>\n"
                )
                parts.extend(ctx.metrics(totals, count) for ctx in self._ctxs)
            return "".join(parts)

    def file_tick(self, when: float) -> None:
        """Append a liveness line to the tick file, discarding it once it grows large."""
        if not self.tickfile:
            return
        with self.lock:
            stamp = time.strftime("%Y-%m-%d %H:%M:%S")
            try:
                with open(self.tickfile, "ab") as handle:
                    handle.write(
                        f"{stamp}, thread: {self.index}, tick:{int(when)}\n".encode()
                    )
                    size = handle.tell()
            except OSError as exc:
                _log.error("Error opening %s: %s", self.tickfile, exc)
                return
            if size > _TICK_FILE_LIMIT:
                try:
                    os.unlink(self.tickfile)
                except OSError:
                    pass

    def close_sockets(self) -> None:
        for ctx in self._ctxs:
            ctx.close_sockets()

    def signal_to_stop(self) -> None:
        self._halt.set()
        with self.lock:
            for ctx in self._ctxs:
                ctx.clear()

    def _close_all(self) -> None:
        with self.lock:
            for ctx in self._ctxs:
                ctx.destroy()
                ctx.close_sockets()
            self._ctxs.clear()

    def _drop_dead(self) -> None:
        with self.lock:
            survivors = []
            for ctx in self._ctxs:
                if ctx.dead:
                    ctx.close_sockets()
                else:
                    survivors.append(ctx)
            self._ctxs.clear()
            for ctx in survivors:
                self._ctxs.push(ctx)

    def run(self) -> None:
        self.pool.inc()
        try:
            self._main()
        finally:
            self.pool.remove_thread(self)

    def _main(self) -> None:
        _log.debug("T++:%d", self.index)
        now = time.time()
        self.last_spin = now
        last_active = now
        previous = now
        delay_for_bps = _DEFAULT_BPS_DELAY
        delaytick = 0
        maxctxes = min(max(int(self.pool.capacity), 1), MAX_CTXES)

        if self.dynamic:
            for _ in range(_PRELOAD):
                if self._get_from_queue(maxctxes) <= 0:
                    break

        while not self._halt.is_set() and self.pool.alive:
            time.sleep(_SPIN_SLEEP)
            now = time.time()
            self.last_spin = now
            delete_oldies = False
            if now - previous > self.timeout:
                delay_for_bps = now - previous
                previous = now
                delete_oldies = True
                delaytick += 1
                if delaytick % _TICK_EVERY == 0:
                    self.file_tick(now)

            if self._get_from_queue(maxctxes) == -1:
                _log.debug("end of queue. T breaks")
                break

            if not len(self._ctxs):
                if self.dynamic and now - last_active > self.timeout:
                    _log.debug("dynamic T breaks")
                    break
                time.sleep(_IDLE_SLEEP)
                continue

            readers: List[Any] = []
            writers: List[Any] = []
            for ctx in self._ctxs:
                wanted_read, wanted_write = ctx.watch(self)
                readers.extend(wanted_read)
                writers.extend(wanted_write)

            try:
                readable, writable, _ = select.select(readers, writers, [], _SELECT_TIMEOUT)
            except ValueError:
                self._close_all()
                continue
            except OSError as exc:
                _log.error("select error: %s", exc)
                if exc.errno in (errno.EBADF, errno.EINVAL):
                    self._close_all()
                    continue
                break

            if readable or writable:
                for ctx in self._ctxs:
                    if not ctx.is_ready(readable, writable):
                        continue
                    result = ctx.spin()
                    if result is CallResult.CONTINUE:
                        last_active = time.time()
                        delete_oldies = False
                    else:
                        if result is CallResult.KILL:
                            ctx.destroy()
                        delete_oldies = True
            else:
                time.sleep(_NO_EVENT_SLEEP)

            for position, ctx in enumerate(self._ctxs):
                ctx.clear_fd(readable, writable, delete_oldies, delay_for_bps, position == 0)
            self._drop_dead()

        with self.lock:
            for ctx in self._ctxs:
                ctx.close_sockets()
            self._ctxs.clear()
        if not self.dynamic:
            self.pool.alive = False
        _log.debug("T-CTX exits:%d", self.index)