import json
import os

import pytest

from ckdb.batch_insert import BatchInsert, BatchInsertCsv, BatchInsertJsonRows, _to_epoch
from ckdb.exceptions import NotSupportedError


class TestBatchInsert:
    def test_values_are_coerced_per_column_type(self, connection, transport):
        batch = BatchInsert("events", connection)
        batch.add_columns(["id", "clicks", "created", "name", "note", "scores", "amount"])
        batch.add_row([1, "true", None, None, None, ["1", "2"], "false"])
        batch.add_row([2, "false", "2024-01-01 00:00:00", "x", "y", [], 2.5])

        assert batch.execute() == 2
        assert transport.sql == [
            "INSERT INTO `events` (`id`, `clicks`, `created`, `name`, `note`, `scores`, `amount`) "
            "VALUES (1, 1, 0, '', NULL, [1,2], 0), (2, 0, 1704067200, 'x', 'y', [], 2.5)"
        ]

    def test_string_arrays_are_single_quoted(self, connection):
        batch = BatchInsert("events", connection)
        batch.add_columns(["tags"])
        batch.add_row([["a", "b"]])

        assert batch.sql() == "INSERT INTO `events` (`tags`) VALUES (['a', 'b'])"

    def test_unknown_column(self, connection):
        batch = BatchInsert("events", connection)
        batch.add_columns(["id", "mystery"])
        batch.add_row([1, None])
        batch.add_row([2, "x"])

        assert batch.sql().endswith("VALUES (1, NULL), (2, 'x')")

    def test_unchecked_rows_are_written_as_given(self, connection):
        batch = BatchInsert("events", connection)
        batch.add_columns(["id", "name"])
        batch.add_row([1, "'raw'"], check_fields=False)

        assert batch.sql().endswith("VALUES (1, 'raw')")

    def test_empty_batch(self, connection, transport):
        batch = BatchInsert("events", connection)

        assert batch.add_row([]) is False
        assert batch.add_columns([]) is False
        assert batch.execute() == 0
        assert transport.requests == []

    def test_clear_data(self, connection, transport):
        batch = BatchInsert("events", connection)
        batch.add_columns(["id"])
        batch.add_row([1])
        batch.clear_data()
        batch.add_row([2])

        assert batch.execute() == 1
        assert transport.sql == ["INSERT INTO `events` (`id`) VALUES (2)"]


@pytest.mark.parametrize(
    "value, expected",
    [
        ("2024-01-01 00:00:00", 1704067200),
        ("2024-01-01", 1704067200),
        ("2024-01-01T01:00:00+01:00", 1704067200),
        ("1700000000", 1700000000),
        ("not a date", 0),
    ],
)
def test_to_epoch(value, expected):
    assert _to_epoch(value) == expected


class TestBatchInsertCsv:
    def test_rows_are_staged_and_uploaded(self, connection, transport, tmp_path):
        with BatchInsertCsv("events", "batch-1.tmp", connection, cache_dir=str(tmp_path)) as batch:
            batch.add_columns(["id", "name"])
            batch.add_row([1, "a,b"])
            batch.add_row([2, "c"])
            staged = batch.file_name

            assert staged == os.path.join(str(tmp_path), "batch-1.csv")
            assert batch.execute() == 2

        request = transport.requests[0]
        assert request["body"] == "1,'a,b'\r\n2,c\r\n"
        assert "FORMAT+CSV" in request["query"]
        assert not os.path.exists(staged)

    def test_clear_data_truncates_the_file(self, connection, transport, tmp_path):
        batch = BatchInsertCsv("events", "batch-2", connection, cache_dir=str(tmp_path))
        batch.add_columns(["id"])
        batch.add_row([1])
        batch.clear_data()
        batch.add_row([2])
        batch.execute()
        batch.close()

        assert transport.sql == ["2\r\n"]

    def test_empty_batch_sends_nothing(self, connection, transport, tmp_path):
        batch = BatchInsertCsv("events", "batch-3", connection, cache_dir=str(tmp_path))

        assert batch.execute() == 0
        assert transport.requests == []
        batch.close()


class TestBatchInsertJsonRows:
    def test_rows_become_json_lines(self, connection, transport):
        batch = BatchInsertJsonRows("events", connection)
        batch.add_row({"id": 1, "name": "é"})
        batch.add_row({"id": 2, "name": "b"})

        assert batch.execute() == 2
        request = transport.requests[0]
        assert request["headers"]["Content-Type"] == "application/x-ndjson"
        assert [json.loads(line) for line in request["body"].split("\n")] == [
            {"id": 1, "name": "é"},
            {"id": 2, "name": "b"},
        ]

    def test_columns_are_not_supported(self, connection):
        with pytest.raises(NotSupportedError):
            BatchInsertJsonRows("events", connection).add_columns(["id"])

    def test_empty_batch(self, connection, transport):
        assert BatchInsertJsonRows("events", connection).execute() == 0
        assert transport.requests == []
