# buflea

Building blocks of a multi-threaded proxy server: an incremental HTTP
header scanner, a request parser, worker threads that multiplex connection
contexts with `select`, a thread pool that keeps per-client byte counters
on disk, a TLS-capable socket wrapper and a small DNS routing cache.

Requires Python 3.10 or later on a POSIX system. No third-party packages
are needed.

## The `buflea` command

    buflea start    # detach into the background and run
    buflea stop     # ask a running instance to shut down
    buflea          # print usage, then run in the foreground

Only one instance runs at a time. The running instance holds an exclusive
lock on `/var/run/buflea.lock` when run as root and on `/tmp/buflea.lock`
otherwise (the `BUFLEA_LOCK_FILE` environment variable overrides this).
Starting a second copy prints `process already running` and exits.

`buflea stop` creates the stop file `/tmp/buflea.stop` (override with
`BUFLEA_STOP_FILE`). The running instance polls for it, removes it and
shuts down. `Ctrl-C` or `SIGTERM` also stop a foreground instance.

When running, the command starts a `Tasker` and a `ThreadPool` with the
default `PoolConfig`, using the current directory as the logs directory.

## What the package does not do

The command does not open any listening ports, read a configuration file,
or accept client connections. The package has no implementations of the
HTTP, SOCKS or other proxy protocols as connection contexts, no access
lists or ban lists, and no certificate setup. Those pieces have to be
supplied by the program that uses the library: connection objects that
follow the `buflea.ctxthread.Context` protocol are put on a pool's
`queue` to be driven by its threads.

## Library modules

- `buflea.httphdr.SocksHdr` scans an incoming request header as it arrives.
  Call `append()` with each chunk of bytes and `parse()` after it; `parse()`
  returns `True` once the header and any `Content-Length` body are complete,
  `False` while more data is needed. It records where the `Host`, `Referer`,
  `Accept-Encoding` and `Proxy-Connection` values and a `CONNECT` target
  lie (`get_host()`, `get_referer()`, `has_open`), and can rewrite the
  request for the upstream server with `prep_doc()` and `replace_option()`.
  Appending past 16384 bytes raises `HeaderOverflow`.
- `buflea.httprequest.Request` collects a request with `parse()` and splits
  it into method, URI, query arguments, headers and cookies.
  `get_header()` looks a header up case-insensitively, `close_header()`
  splits the decoded URI into directory and document (choosing an index
  file that exists under a home directory), and `read_post_data()` spools a
  body to a temporary file. `method_hash()` gives the numeric method code.
- `buflea.dnscache.DnsHtps` remembers, per client address, the host that
  client looked up (`DnsRecord`), so later connections carrying a request
  signature can be routed to it (`queue_host()`, `update_host()`,
  `deque_host()`); `cleanup()` drops entries older than the timeout.
- `buflea.tasker.Tasker` runs queued `Task`s of each `TaskKind` one at a
  time through the handlers it was given, either with `run_once()` or on
  its own thread with `start()` / `stop()`.
- `buflea.tinyclasses` holds `Bucket`, a fixed-capacity container whose
  `remove()` fills the hole with the last element; `ByteStats` and `SinOut`
  byte and rate counters; and socket helpers `parse_bind_address()`,
  `bind_udp_socket()`, `bind_listener_socket()` and `receive_some()` for
  `proto:host:port` addresses.
- `buflea.tcppipe.TcpPipe` wraps a connected socket, with optional TLS in
  the server role (`ssl_pre_accept()`, `ssl_accept()`) or client role
  (`ssl_pre_connect()`, `ssl_connect()`). `classify_ssl_error()` maps TLS
  errors to 1 (done), -1 (retry later) or 0 (failed).
- `buflea.ctxthread.CtxesThread` drives a set of connection contexts,
  folding their byte counts into its own statistics and the pool's
  (`save_ctx_state()`), and reports them as HTML table rows (`metrics()`).
- `buflea.threadpool.ThreadPool` owns those threads: `create()` starts the
  configured minimum, `add_thread()` starts more up to the maximum, and
  `stop()` ends them all. It writes `bytes/<ip>.log0` and
  `bytes/metrics.log0` (`commit_stats_to_file()`) and `logs/<ip>.log0`
  (`accumulate_log()`) under its logs directory, rolling a file over to
  `.log1` once it grows past `PoolConfig.max_rollup`. `metrics()` returns
  an HTTP response holding an HTML status table.

## Tests

    pip install -e ".[test]"
    pytest