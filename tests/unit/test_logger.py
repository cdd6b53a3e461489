"""
Unit tests for the moderation log and the JSON access log.
"""

import json
import logging
import threading

from freezegun import freeze_time

from qdb.logger import AccessLogger, ModerationLog


class _ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.lines = []

    def emit(self, record):
        self.lines.append(self.format(record))


class _BrokenHandler(logging.Handler):
    def emit(self, record):
        raise OSError("disk full")


class TestModerationLog:
    @freeze_time("2025-06-19 15:07:02")
    def test_line_format(self, moderation_log, read_moderation_log):
        moderation_log.record("alice", ":post_quotes", 7)
        assert read_moderation_log() == [
            "time=2025-06-19T15:07:02Z name=alice action=:post_quotes on=7"
        ]

    def test_appends(self, moderation_log_path):
        first = ModerationLog(moderation_log_path)
        first.record("alice", ":edit_quotes", 1)
        first.close()
        second = ModerationLog(moderation_log_path)
        second.record("bob", ":delete_quotes", 2)
        second.close()

        lines = moderation_log_path.read_text().splitlines()
        assert len(lines) == 2
        assert "name=alice" in lines[0]
        assert "name=bob" in lines[1]

    def test_flushed_immediately(self, moderation_log, read_moderation_log):
        moderation_log.record("alice", ":approve_quotes", 3)
        assert len(read_moderation_log()) == 1

    def test_newlines_cannot_split_a_record(self, moderation_log, read_moderation_log):
        moderation_log.record("eve\ntime=forged name=admin", ":set_flags", "1 -> 63")
        lines = read_moderation_log()
        assert len(lines) == 1
        assert lines[0].startswith("time=")

    def test_in_memory_sink(self):
        handler = _ListHandler()
        ml = ModerationLog(handler=handler, name="qdb.moderation.test")
        ml.record("alice", ":set_flags", "2 -> 5")
        ml.close()
        assert len(handler.lines) == 1
        assert handler.lines[0].endswith("name=alice action=:set_flags on=2 -> 5")

    def test_never_raises(self):
        ml = ModerationLog(handler=_BrokenHandler(), name="qdb.moderation.broken")
        ml.record("alice", ":post_quotes", 1)
        ml.close()

    def test_concurrent_records_are_whole_lines(self, moderation_log, read_moderation_log):
        def worker(n):
            for i in range(50):
                moderation_log.record(f"mod{n}", ":set_flags", f"{n} -> {i}")

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        lines = read_moderation_log()
        assert len(lines) == 400
        assert all(line.startswith("time=") and " action=:set_flags on=" in line for line in lines)
        # per-writer order is preserved
        for n in range(8):
            mine = [line for line in lines if f"name=mod{n} " in line]
            assert [int(line.rsplit("-> ", 1)[1]) for line in mine] == list(range(50))

    def test_instances_keep_their_own_sinks(self, tmp_path):
        a_path = tmp_path / "a.log"
        b_path = tmp_path / "b.log"
        a = ModerationLog(a_path)
        b = ModerationLog(b_path)
        a.record("alice", ":post_quotes", 1)
        b.record("bob", ":post_quotes", 2)
        a.record("alice", ":edit_quotes", 1)
        b.close()
        a.close()

        assert [line.split(" name=")[1] for line in a_path.read_text().splitlines()] == [
            "alice action=:post_quotes on=1",
            "alice action=:edit_quotes on=1",
        ]
        assert b_path.read_text().splitlines()[0].endswith("name=bob action=:post_quotes on=2")
        assert len(b_path.read_text().splitlines()) == 1


class TestAccessLogger:
    def test_writes_json_lines(self, tmp_path):
        access = AccessLogger(tmp_path / "log" / "access.log")
        access.end("alice", "127.0.0.1", "GET", "/quotes/", 200, 3)
        access.deny("-", "GET", "/user/list", "not_logged_in")
        access.auth_fail("127.0.0.1", "mallory", "InvalidCredentials")
        access.close()

        records = [json.loads(line) for line in (tmp_path / "log" / "access.jsonl").read_text().splitlines()]
        assert [r["event"] for r in records] == ["end", "deny", "auth_fail"]
        assert records[0]["status"] == 200
        assert records[1]["reason"] == "not_logged_in"
        assert records[2]["user"] == "mallory"

    def test_instances_keep_their_own_files(self, tmp_path):
        first = AccessLogger(tmp_path / "one" / "access.log")
        second = AccessLogger(tmp_path / "two" / "access.log")
        first.end("alice", "127.0.0.1", "GET", "/", 200, 1)
        second.end("bob", "127.0.0.1", "GET", "/", 200, 1)
        second.close()
        first.close()

        one = (tmp_path / "one" / "access.jsonl").read_text().splitlines()
        two = (tmp_path / "two" / "access.jsonl").read_text().splitlines()
        assert [json.loads(line)["user"] for line in one] == ["alice"]
        assert [json.loads(line)["user"] for line in two] == ["bob"]
