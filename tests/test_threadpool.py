from pathlib import Path

import pytest

from buflea.threadpool import MAX_THREADS, PoolConfig, ThreadPool
from buflea.tinyclasses import ByteStats, SinOut


def make_pool(tmp_path, **overrides):
    config = PoolConfig(stop_file=str(tmp_path / "stop"), **overrides)
    return ThreadPool(config, str(tmp_path))


def stats(inbound, outbound):
    record = ByteStats()
    record.temp_bytes[ByteStats.IN] = inbound
    record.temp_bytes[ByteStats.OUT] = outbound
    return record


def test_limits_are_clamped(tmp_path):
    pool = make_pool(tmp_path, min_threads=0, max_threads=1000, clients_perthread=0)
    assert pool.min_threads == 1
    assert pool.max_threads == MAX_THREADS
    assert pool.capacity == 1


def test_max_threads_not_below_min(tmp_path):
    pool = make_pool(tmp_path, min_threads=5, max_threads=2)
    assert pool.max_threads == pool.min_threads == 5


def test_add_thread_respects_maximum(tmp_path):
    pool = make_pool(tmp_path, min_threads=1, max_threads=2)
    try:
        assert pool.add_thread(False) is True
        assert pool.add_thread(True) is True
        assert pool.add_thread(False) is False
        assert len(pool) == 2
    finally:
        pool.stop()
    assert len(pool) == 0
    assert pool.count == 0


def test_create_starts_minimum(tmp_path):
    pool = make_pool(tmp_path, min_threads=2, max_threads=4)
    try:
        assert pool.create() is True
        assert len(pool.threads) == 2
        assert [t.index for t in pool.threads] == [0, 1]
    finally:
        pool.stop()
    assert pool.threads == ()


def test_inc_dec(tmp_path):
    pool = make_pool(tmp_path)
    pool.inc()
    pool.inc()
    pool.dec()
    assert pool.count == 1


def test_first_commit_creates_initial_line(tmp_path):
    pool = make_pool(tmp_path)
    pool.save_statuses("10.0.0.1", stats(100, 50))
    assert pool.commit_stats_to_file(1000, 2) is False
    content = (tmp_path / "bytes" / "10.0.0.1.log0").read_text()
    assert content == "00000001000 00000000000 00000000000 00000000000 00000000000 00000000002\n"
    assert len(content) == 72


def test_second_commit_appends_and_writes_metrics(tmp_path):
    pool = make_pool(tmp_path)
    pool.save_statuses("10.0.0.1", stats(0, 0))
    pool.commit_stats_to_file(1000, 1)
    pool.save_statuses("10.0.0.1", stats(100, 50))
    assert pool.commit_stats_to_file(1001, 1) is True
    lines = (tmp_path / "bytes" / "10.0.0.1.log0").read_text().splitlines()
    assert len(lines) == 2
    assert [int(v) for v in lines[1].split()] == [1001, 100, 50, 0, 0, 1]
    metrics = (tmp_path / "bytes" / "metrics.log0").read_text()
    assert metrics == "1001,1,100,50,100,50\n"


def test_counters_accumulate_across_commits(tmp_path):
    pool = make_pool(tmp_path)
    pool.save_statuses("10.0.0.2", stats(0, 0))
    pool.commit_stats_to_file(1000, 1)
    pool.save_statuses("10.0.0.2", stats(100, 50))
    pool.commit_stats_to_file(1001, 1)
    pool.save_statuses("10.0.0.2", stats(100, 50))
    pool.commit_stats_to_file(1002, 1)
    last = (tmp_path / "bytes" / "10.0.0.2.log0").read_text().splitlines()[-1]
    values = [int(v) for v in last.split()]
    assert values[1:5] == [200, 100, 100, 50]


def test_clients_cleared_after_commit(tmp_path):
    pool = make_pool(tmp_path)
    pool.save_statuses("10.0.0.3", stats(0, 0))
    pool.commit_stats_to_file(1000, 1)
    pool.save_statuses("10.0.0.3", stats(100, 50))
    assert pool.commit_stats_to_file(1001, 1) is True
    assert pool.commit_stats_to_file(1002, 1) is False
    lines = (tmp_path / "bytes" / "10.0.0.3.log0").read_text().splitlines()
    assert len(lines) == 2


def test_unchanged_counters_write_nothing(tmp_path):
    pool = make_pool(tmp_path)
    pool.save_statuses("10.0.0.4", stats(0, 0))
    pool.commit_stats_to_file(1000, 1)
    pool.save_statuses("10.0.0.4", stats(0, 0))
    assert pool.commit_stats_to_file(1001, 1) is False
    assert not (tmp_path / "bytes" / "metrics.log0").exists()


def test_short_file_is_reset(tmp_path):
    bytes_dir = tmp_path / "bytes"
    bytes_dir.mkdir()
    path = bytes_dir / "10.0.0.5.log0"
    path.write_text("junk\n")
    pool = make_pool(tmp_path)
    pool.save_statuses("10.0.0.5", stats(10, 10))
    pool.commit_stats_to_file(1000, 3)
    assert [int(v) for v in path.read_text().split()] == [1000, 0, 0, 0, 0, 3]


def test_rollup_when_file_grows(tmp_path):
    pool = make_pool(tmp_path, max_rollup=100)
    pool.save_statuses("10.0.0.6", stats(0, 0))
    pool.commit_stats_to_file(1000, 1)
    pool.save_statuses("10.0.0.6", stats(7, 8))
    pool.commit_stats_to_file(1001, 1)
    bytes_dir = tmp_path / "bytes"
    assert not (bytes_dir / "10.0.0.6.log0").exists()
    rolled = (bytes_dir / "10.0.0.6.log1").read_text().splitlines()
    assert len(rolled) == 2


def test_accumulate_log(tmp_path):
    pool = make_pool(tmp_path)
    pool.accumulate_log("first\n", "10.0.0.7")
    pool.accumulate_log("second\n", "10.0.0.7")
    path = tmp_path / "logs" / "10.0.0.7.log0"
    assert path.read_text() == "first\nsecond\n"


def test_accumulate_empty_log_writes_nothing(tmp_path):
    pool = make_pool(tmp_path)
    pool.accumulate_log("", "10.0.0.8")
    assert not (tmp_path / "logs" / "10.0.0.8.log0").exists()


def test_metrics_page(tmp_path):
    pool = make_pool(tmp_path)
    page = pool.metrics("host")
    assert page.startswith("HTTP/1.1 200 OK\r\n")
    assert "<tr><th colspan='4''>Thread pool</th><th>0</th></tr>\n" in page
    assert "IN:0 Ops" in page
    assert page.endswith("</table>\n")


def test_metrics_includes_reporters(tmp_path):
    pool = make_pool(tmp_path)

    def reporter(totals: SinOut, hname: str) -> str:
        totals.inbound += 5
        return f"<tr><td>{hname}</td></tr>"

    pool.reporters.append(reporter)
    page = pool.metrics("proxy.example.com")
    assert "<tr><td>proxy.example.com</td></tr>" in page
    assert "IN:5 Ops" in page


def test_run_commits_and_removes_stop_file(tmp_path):
    stop_file = tmp_path / "stop"
    stop_file.write_text("")
    pool = make_pool(tmp_path)
    pool.save_statuses("10.0.0.9", stats(1, 1))
    pool.start()
    pool.stop()
    assert pool.alive is False
    assert not stop_file.exists()
    assert (tmp_path / "bytes" / "10.0.0.9.log0").exists()


@pytest.mark.parametrize("ip", ["192.168.1.1", "::1"])
def test_save_statuses_file_named_after_ip(tmp_path, ip):
    pool = make_pool(tmp_path)
    pool.save_statuses(ip, stats(1, 2))
    pool.commit_stats_to_file(1000, 1)
    assert Path(tmp_path / "bytes" / f"{ip}.log0").is_file()