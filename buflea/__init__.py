"""Building blocks of a multi-threaded proxy server."""

__version__ = "0.1.0"

__all__ = [
    "cli",
    "ctxthread",
    "dnscache",
    "httphdr",
    "httprequest",
    "tasker",
    "tcppipe",
    "threadpool",
    "tinyclasses",
]