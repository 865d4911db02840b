import json
import logging
import os
import time

import fakeredis
import pytest

from ckdb.cache import RedisQueryCache
from ckdb.constants import CacheKeys, FetchMode, ShareStatus
from ckdb.exceptions import NotSupportedError, QueryError, StateError
from ckdb.expression import ParamType
from ckdb.share import ShareResult


class TestRawSql:
    def test_named_params_are_rendered_as_literals(self, connection):
        command = connection.create_command(
            "SELECT * FROM t WHERE a=:a AND b=':a' AND c=:c",
            {"a": "x'y", ":c": [1, 2]},
        )

        assert command.raw_sql() == "SELECT * FROM t WHERE a='x\\'y' AND b=':a' AND c=[1, 2]"

    def test_positional_params(self, connection):
        command = connection.create_command("SELECT ?, ?, '?'", [1, None])

        assert command.raw_sql() == "SELECT 1, NULL, '?'"

    def test_typed_params(self, connection):
        command = connection.create_command("SELECT :a, :b", {"a": ("12", ParamType.INT), "b": (5, ParamType.STR)})

        assert command.raw_sql() == "SELECT 12, '5'"

    def test_backticked_identifiers_are_untouched(self, connection):
        command = connection.create_command("SELECT `:a` FROM t WHERE x=:a", {"a": 1})

        assert command.raw_sql() == "SELECT `:a` FROM t WHERE x=1"


class TestQuerying:
    def test_query_one_appends_limit_and_format(self, connection, transport, envelope):
        transport.reply_json(envelope([{"id": 1}]))

        assert connection.create_command("SELECT * FROM events").query_one() == {"id": 1}
        assert transport.sql == ["SELECT * FROM events LIMIT 1 FORMAT JSON"]

    def test_query_one_keeps_existing_limit(self, connection, transport, envelope):
        transport.reply_json(envelope([{"id": 1}]))

        connection.create_command("SELECT * FROM events LIMIT 5").query_one()

        assert transport.sql == ["SELECT * FROM events LIMIT 5 FORMAT JSON"]

    def test_literals_do_not_hide_a_missing_limit_or_format(self, connection, transport, envelope):
        transport.reply_json(envelope([{"id": 1}]))

        command = connection.create_command(
            "SELECT * FROM events WHERE name = :name", {":name": "no limit, FORMAT CSV"}
        )

        assert command.query_one() == {"id": 1}
        assert transport.sql == [
            "SELECT * FROM events WHERE name = 'no limit, FORMAT CSV' LIMIT 1 FORMAT JSON"
        ]

    def test_query_one_on_empty_result(self, connection, transport, envelope):
        transport.reply_json(envelope([]))

        assert connection.create_command("SELECT * FROM events").query_one() is None

    def test_custom_format_is_returned_as_text(self, connection, transport):
        transport.reply_text("1\ta\n")

        result = connection.create_command("SELECT id, name FROM events").set_format("TabSeparated").query_all()

        assert result == "1\ta\n"
        assert transport.sql == ["SELECT id, name FROM events FORMAT TabSeparated"]

    def test_fetch_mode_all_returns_the_envelope(self, connection, transport, envelope):
        transport.reply_json(envelope([{"c": "1"}], totals={"c": "5"}))

        result = connection.create_command("SELECT count() AS c FROM events").query_all(FetchMode.ALL)

        assert result["data"] == [{"c": "1"}]
        assert result["totals"] == {"c": "5"}
        assert result["count_all"] == 1
        assert set(result) == {"meta", "data", "rows", "count_all", "totals", "statistics", "extremes"}

    def test_fetch_mode_total(self, connection, transport, envelope):
        transport.reply_json(envelope([{"c": "1"}], totals={"c": "5"}))

        result = connection.create_command("SELECT count() AS c FROM events").query_all(FetchMode.TOTAL)

        assert result == {"c": "5"}

    def test_envelope_accessors_require_execution(self, connection):
        command = connection.create_command("SELECT 1")

        with pytest.raises(StateError):
            command.meta()
        with pytest.raises(StateError):
            command.count_all()

    def test_server_error(self, connection, transport):
        transport.reply_text("Code: 62. DB::Exception: Syntax error", status=400)

        with pytest.raises(QueryError) as excinfo:
            connection.create_command("SELEC 1").query_all()

        assert str(excinfo.value).startswith("Query error: Code: 62")
        assert excinfo.value.status_code == 400

    def test_query_is_not_supported(self, connection):
        with pytest.raises(NotSupportedError):
            connection.create_command("SELECT 1").query()

    def test_options_travel_in_the_query_string(self, connection, transport, envelope):
        transport.reply_json(envelope([{"x": 1}]))

        connection.create_command("SELECT 1 AS x").add_options({"max_threads": 2}).query_scalar()

        query_string = transport.requests[0]["query"]
        assert "max_threads=2" in query_string
        assert "database=analytics" in query_string

    def test_schema_query(self, connection, transport):
        transport.reply_json(
            {"meta": [{"name": "id", "type": "UInt64"}, {"name": "name", "type": "String"}], "data": [], "rows": 0}
        )
        command = connection.create_command("SELECT id, name FROM events")
        command.query_all()

        assert command.schema_query() == "CREATE TABLE x (\n    `id` UInt64,\n    `name` String\n)"


class TestExecute:
    def test_empty_body_means_success(self, connection, transport):
        assert connection.create_command("TRUNCATE TABLE events").execute() == 1

    def test_empty_json_body_means_success(self, connection, transport):
        transport.reply_json("")

        assert connection.create_command("TRUNCATE TABLE events").execute() == 1

    def test_server_error(self, connection, transport):
        transport.reply_text("Code: 60. Table does not exist", status=404)

        with pytest.raises(QueryError) as excinfo:
            connection.create_command("DROP TABLE nope").execute()

        assert excinfo.value.body == "Code: 60. Table does not exist"

    def test_failed_execute_leaves_the_command_unexecuted(self, connection, transport):
        transport.reply_text("Code: 341. Mutation failed", status=500)
        command = connection.create_command("ALTER TABLE events DELETE WHERE 1")

        with pytest.raises(QueryError):
            command.execute()

        with pytest.raises(StateError, match="Query was not executed yet"):
            command.meta()

    def test_write_builders(self, connection, transport):
        command = connection.create_command()
        command.insert("events", {"id": 1, "name": "a"}).execute()
        command.update("events", {"clicks": 2}, {"id": 1}).execute()
        command.delete("events", {"id": 1}).execute()
        command.batch_insert("events", ["id", "name"], [[1, "a"], [2, "b"]]).execute()

        assert transport.sql == [
            "INSERT INTO `events` (`id`, `name`) VALUES (1, 'a')",
            "ALTER TABLE `events` UPDATE `clicks`=2 WHERE `id`=1",
            "ALTER TABLE `events` DELETE WHERE `id`=1",
            "INSERT INTO `events` (`id`, `name`) VALUES (1, 'a'), (2, 'b')",
        ]


class TestQueryCache:
    @pytest.fixture
    def cached_connection(self, make_connection):
        return make_connection(query_cache=RedisQueryCache(fakeredis.FakeRedis(decode_responses=True)))

    def test_second_identical_query_is_served_from_cache(self, cached_connection, transport, envelope, caplog):
        transport.reply_json(envelope([{"id": 1}], totals={"id": 9}))

        first = cached_connection.create_command("SELECT id FROM events").cache(60)
        assert first.query_all() == [{"id": 1}]

        second = cached_connection.create_command("SELECT id FROM events").cache(60)
        with caplog.at_level(logging.INFO, logger="ckdb.command"):
            assert second.query_all() == [{"id": 1}]

        assert len(transport.requests) == 1
        assert second.totals() == {"id": 9}
        assert any(
            getattr(r, "sql", "").endswith("; [Query result read from cache]") for r in caplog.records
        )

    def test_no_cache_skips_the_cache(self, cached_connection, transport, envelope):
        transport.reply_json(envelope([{"id": 1}]))
        transport.reply_json(envelope([{"id": 2}]))

        cached_connection.create_command("SELECT id FROM events").cache(60).query_all()
        rows = cached_connection.create_command("SELECT id FROM events").no_cache().query_all()

        assert rows == [{"id": 2}]
        assert len(transport.requests) == 2

    def test_disabled_cache(self, make_connection, transport, envelope):
        cache = RedisQueryCache(fakeredis.FakeRedis(decode_responses=True))
        conn = make_connection(query_cache=cache, enable_query_cache=False)
        transport.reply_json(envelope([{"id": 1}]))
        transport.reply_json(envelope([{"id": 1}]))

        conn.create_command("SELECT id FROM events").cache(60).query_all()
        conn.create_command("SELECT id FROM events").cache(60).query_all()

        assert len(transport.requests) == 2


class TestShare:
    def test_shared_result_populates_the_follower(self, connection, transport, envelope):
        shared = envelope([{"id": 5}], totals={"id": 5})
        connection.share = lambda key, func, ttl: ShareResult(shared, ShareStatus.CHANNEL)

        command = connection.create_command("SELECT id FROM events").share(5)

        assert command.query_all() == [{"id": 5}]
        assert command.totals() == {"id": 5}
        assert transport.requests == []

    def test_share_disabled_by_default(self, connection, transport, envelope):
        transport.reply_json(envelope([{"id": 1}]))
        calls = []
        connection.share = lambda *args: calls.append(args)

        connection.create_command("SELECT id FROM events").query_all()

        assert calls == []

    def test_origin_goes_to_the_server(self, connection, transport, envelope):
        transport.reply_json(envelope([{"id": 1}]))

        assert connection.create_command("SELECT id FROM events").share(5).query_all() == [{"id": 1}]
        assert len(transport.requests) == 1


class TestDownload:
    def test_download_to_memory(self, connection, transport):
        transport.reply_text("1,a\n2,b\n")

        assert connection.create_command("SELECT id, name FROM events").download() == "1,a\n2,b\n"
        assert transport.sql == ["SELECT id, name FROM events FORMAT CSV"]

    def test_download_to_file(self, connection, transport, tmp_path):
        transport.download_body = b"1,a\n"

        target = connection.create_command("SELECT id, name FROM events").download(str(tmp_path))

        assert target.endswith(".csv")
        assert os.path.dirname(target) == str(tmp_path)
        with open(target, "rb") as fp:
            assert fp.read() == b"1,a\n"

    def test_download_resumes_a_partial_file(self, connection, transport, tmp_path):
        raw_sql = "SELECT id, name FROM events FORMAT CSV"
        digest = CacheKeys.digest(["ckdb.Command", connection.dsn, connection.username, raw_sql])
        partial = tmp_path / f"{digest}.download"
        partial.write_bytes(b"1,a\n")
        transport.download_body = b"2,b\n"

        target = connection.create_command("SELECT id, name FROM events").download(str(tmp_path))

        assert transport.requests[0]["offset"] == 4
        assert not partial.exists()
        with open(target, "rb") as fp:
            assert fp.read() == b"1,a\n2,b\n"

    def test_failed_download_removes_the_partial_file(self, connection, transport, tmp_path):
        raw_sql = "SELECT id FROM events FORMAT CSV"
        digest = CacheKeys.digest(["ckdb.Command", connection.dsn, connection.username, raw_sql])
        partial = tmp_path / f"{digest}.download"
        partial.write_bytes(b"1\n")
        transport.reply_text("Code: 159. Timeout exceeded", status=500)

        with pytest.raises(QueryError, match="Download error"):
            connection.create_command("SELECT id FROM events").download(str(tmp_path))

        assert not partial.exists()

    def test_completed_download_is_reused(self, connection, transport, tmp_path):
        transport.download_body = b"1\n"
        command = connection.create_command("SELECT id FROM events")

        first = command.download(str(tmp_path))
        second = command.download(str(tmp_path))

        assert first == second
        assert len(transport.requests) == 1


class TestFileInserts:
    def test_insert_json_rows(self, connection, transport):
        rows = "\n".join(json.dumps(r) for r in ({"id": 1}, {"id": 2}))

        assert connection.create_command().insert_json_rows("events", rows) is True

        request = transport.requests[0]
        assert request["headers"]["Content-Type"] == "application/x-ndjson"
        assert "FORMAT+JSONEachRow" in request["query"]
        assert request["body"] == rows

    def test_insert_file_defaults_to_all_table_columns(self, connection, transport, tmp_path):
        data = tmp_path / "rows.csv"
        data.write_text("1,'a'\n")

        connection.create_command().insert_file("events", file=str(data))

        request = transport.requests[0]
        assert request["body"] == "1,'a'\n"
        assert "FORMAT+CSV" in request["query"]
        assert "%60tags%60" in request["query"]

    def test_batch_insert_files(self, connection, transport, tmp_path):
        files = []
        for i in range(3):
            path = tmp_path / f"part{i}.csv"
            path.write_text(f"{i},'n{i}'\n")
            files.append(str(path))

        results = connection.create_command().batch_insert_files("events", ["id", "name"], files)

        assert results == [True, True, True]
        assert sorted(transport.sql) == ["0,'n0'\n", "1,'n1'\n", "2,'n2'\n"]

    @pytest.mark.asyncio
    async def test_abatch_insert_files_times_out(self, connection, transport, tmp_path):
        path = tmp_path / "slow.csv"
        path.write_text("1\n")
        original_post = transport.post

        def slow_post(*args, **kwargs):
            time.sleep(0.3)
            return original_post(*args, **kwargs)

        transport.post = slow_post

        with pytest.raises(QueryError, match="timed out"):
            await connection.create_command().abatch_insert_files("events", ["id"], [str(path)], timeout=0.01)
