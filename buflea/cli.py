"""Command entry point: single-instance control and the server main loop."""

from __future__ import annotations

import atexit
import fcntl
import logging
import os
import signal
import sys
import threading
from pathlib import Path
from typing import IO, Dict, List, Optional, Sequence

from .tasker import Tasker
from .threadpool import PoolConfig, ThreadPool

_log = logging.getLogger(__name__)

LOCK_ENV = "BUFLEA_LOCK_FILE"
STOP_ENV = "BUFLEA_STOP_FILE"
_USR_LOCK = "/tmp/buflea.lock"
_SYS_LOCK = "/var/run/buflea.lock"
_STOP_FILE = "/tmp/buflea.stop"
_STOP_POLL = 0.5

_held_locks: Dict[str, IO[bytes]] = {}


def lock_file_path() -> str:
    """The instance lock file: system-wide for root, per /tmp otherwise."""
    override = os.environ.get(LOCK_ENV)
    if override:
        return override
    return _SYS_LOCK if os.getuid() == 0 else _USR_LOCK


def _stop_file_path() -> str:
    return os.environ.get(STOP_ENV) or _STOP_FILE


def _release_locks() -> None:
    for path, handle in list(_held_locks.items()):
        print("deleting lock")
        handle.close()
        Path(path).unlink(missing_ok=True)
    _held_locks.clear()


atexit.register(_release_locks)


def is_running(path: Optional[str] = None) -> bool:
    """True if another holder has the lock; otherwise take and keep it."""
    path = path or lock_file_path()
    handle = open(path, "a+b")
    try:
        fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        handle.close()
        return True
    print(f"Locking file{path}")
    _held_locks[path] = handle
    return False


def _daemonize() -> None:
    if os.fork() > 0:
        os._exit(0)
    os.setsid()
    if os.fork() > 0:
        os._exit(0)
    with open(os.devnull, "r+b") as null:
        for stream in (sys.stdin, sys.stdout, sys.stderr):
            os.dup2(null.fileno(), stream.fileno())


def single_instance(argv: Sequence[str]) -> bool:
    """Handle start/stop arguments; True if this process should run the server."""
    running = is_running(lock_file_path())
    if len(argv) != 1:
        if running:
            print("process already running")
            return False
        print("usage: buflea start/stop")
        return True

    command = argv[0]
    if command == "stop":
        if running:
            print("stopping")
            Path(_stop_file_path()).touch()
        return False
    if running:
        print("process already running")
        return False
    if command == "start":
        _daemonize()
    return True


def main(argv: Optional[List[str]] = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if not single_instance(args):
        return 0

    logging.basicConfig(level=logging.INFO)
    stop = threading.Event()

    def _on_signal(signum: int, frame: object) -> None:
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM, signal.SIGABRT):
        signal.signal(sig, _on_signal)
    for sig_name in ("SIGPIPE", "SIGTRAP"):
        if hasattr(signal, sig_name):
            signal.signal(getattr(signal, sig_name), signal.SIG_IGN)

    stop_file = Path(_stop_file_path())
    tasker = Tasker()
    pool = ThreadPool(PoolConfig(stop_file=str(stop_file)), os.getcwd())

    tasker.start()
    pool.create()
    pool.start()
    _log.info("STARTING SERVER BUFLEA")
    _log.info("%s (stops server)", stop_file)
    try:
        while not stop.is_set() and pool.alive:
            if stop_file.exists():
                stop_file.unlink(missing_ok=True)
                _log.info("STOPPING SERVER DUE %s", stop_file)
                break
            stop.wait(_STOP_POLL)
    finally:
        pool.stop()
        tasker.stop()
        stop_file.unlink(missing_ok=True)
    _log.info("Destroying. Exitpoint")
    return 0


if __name__ == "__main__":
    sys.exit(main())