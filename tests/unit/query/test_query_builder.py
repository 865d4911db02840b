import pytest

from ckdb.constants import ColumnType
from ckdb.exceptions import ConfigurationError
from ckdb.expression import Expression
from ckdb.query import Query
from ckdb.schema.builder import ColumnSchemaBuilder


def test_select_without_conditions_omits_where_and_prewhere(connection, builder):
    sql, params = builder.build(Query(connection).from_("events").where({}).pre_where(""))

    assert sql == "SELECT * FROM `events`"
    assert params == {}


def test_prewhere_comes_before_where(connection, builder):
    query = (
        Query(connection)
        .from_("events")
        .pre_where({"id": 5})
        .where(["and", [">", "amount", 1], {"name": "x"}])
    )

    sql, params = builder.build(query)

    assert sql == (
        "SELECT * FROM `events` PREWHERE `id`=:qp0 "
        "WHERE (`amount` > :qp1) AND (`name`=:qp2)"
    )
    assert params == {":qp0": 5, ":qp1": 1, ":qp2": "x"}


def test_sample_follows_from(connection, builder):
    sql, _ = builder.build(Query(connection).from_("events").sample(0.1).where({"id": 1}))

    assert sql == "SELECT * FROM `events` SAMPLE 0.1 WHERE `id`=:qp0"
    assert builder.build_sample(0.5) == " SAMPLE 0.5"
    assert builder.build_sample(1000) == " SAMPLE 1000"
    assert builder.build_sample(None) == ""


def test_clause_order_with_totals_and_limit_by(connection, builder):
    query = (
        Query(connection)
        .select(["name", "count() AS c"])
        .from_("events")
        .group_by("name")
        .with_totals()
        .having([">", "c", 1])
        .order_by({"c": "DESC"})
        .limit_by(1, ["name"])
        .limit(10)
    )

    sql, params = builder.build(query)

    assert sql == (
        "SELECT `name`, count() AS c FROM `events` GROUP BY `name` WITH TOTALS "
        "HAVING `c` > :qp0 ORDER BY `c` DESC LIMIT 1 BY name LIMIT 10"
    )
    assert params == {":qp0": 1}


@pytest.mark.parametrize(
    "limit, offset, expected",
    [
        (10, 20, "LIMIT 20,10"),
        (10, None, "LIMIT 10"),
        (10, 0, "LIMIT 10"),
        (None, None, ""),
        (None, 5, "LIMIT 5,18446744073709551615"),
    ],
)
def test_build_limit(builder, limit, offset, expected):
    assert builder.build_limit(limit, offset) == expected


def test_order_by_ascending_has_no_suffix(connection, builder):
    sql, _ = builder.build(Query(connection).from_("events").order_by("name, created DESC"))

    assert sql == "SELECT * FROM `events` ORDER BY `name`, `created` DESC"


def test_order_by_expression_carries_params(connection, builder):
    query = Query(connection).from_("events").order_by(Expression("dist(x, :p)", {":p": 3}))

    sql, params = builder.build(query)

    assert sql.endswith("ORDER BY dist(x, :p)")
    assert params[":p"] == 3


def test_union_numbers_params_across_both_queries(connection, builder):
    first = Query(connection).select("id").from_("a").where({"x": 1})
    second = Query(connection).select("id").from_("b").where({"y": 2})

    sql, params = builder.build(first.union(second, all=True))

    assert sql == (
        "SELECT `id` FROM `a` WHERE `x`=:qp0 UNION ALL SELECT `id` FROM `b` WHERE `y`=:qp1"
    )
    assert params == {":qp0": 1, ":qp1": 2}


def test_join_with_aliases(connection, builder):
    query = (
        Query(connection)
        .from_({"e": "events"})
        .left_join({"u": "users"}, "u.id = e.user_id")
    )

    sql, _ = builder.build(query)

    assert sql == "SELECT * FROM `events` `e` LEFT JOIN `users` `u` ON u.id = e.user_id"


def test_select_distinct_with_alias(connection, builder):
    sql, _ = builder.build(Query(connection).select("name AS n").distinct().from_("events"))

    assert sql == "SELECT DISTINCT `name` AS `n` FROM `events`"


class TestConditions:
    def test_in_with_several_values(self, builder):
        params = {}
        assert builder.build_condition(["in", "id", [1, 2, 3]], params) == "`id` IN (:qp0, :qp1, :qp2)"
        assert params == {":qp0": 1, ":qp1": 2, ":qp2": 3}

    def test_in_with_single_value_becomes_equality(self, builder):
        assert builder.build_condition(["in", "id", [7]], {}) == "`id`=:qp0"
        assert builder.build_condition(["not in", "id", [7]], {}) == "`id`<>:qp0"

    def test_empty_in(self, builder):
        assert builder.build_condition(["in", "id", []], {}) == "0=1"
        assert builder.build_condition(["not in", "id", []], {}) == ""

    def test_in_with_null(self, builder):
        assert (
            builder.build_condition(["not in", "id", [1, None]], {})
            == "`id`<>:qp0 AND `id` IS NOT NULL"
        )
        assert builder.build_condition(["in", "id", [1, None]], {}) == "(`id`=:qp0 OR `id` IS NULL)"

    def test_in_subquery(self, connection, builder):
        sub = Query(connection).select("id").from_("clicks").where({"day": "2024-01-01"})
        params = {}

        condition = builder.build_condition(["in", "id", sub], params)

        assert condition == "`id` IN (SELECT `id` FROM `clicks` WHERE `day`=:qp0)"
        assert params == {":qp0": "2024-01-01"}

    def test_composite_in(self, builder):
        params = {}
        condition = builder.build_condition(
            ["in", ["id", "name"], [{"id": 1, "name": "a"}, {"id": 2, "name": "b"}]], params
        )
        assert condition == "(`id`, `name`) IN ((:qp0, :qp1), (:qp2, :qp3))"

    def test_hash_condition(self, builder):
        params = {}
        condition = builder.build_condition({"id": [1, 2], "note": None, "name": "x"}, params)
        assert condition == "(`id` IN (:qp0, :qp1)) AND (`note` IS NULL) AND (`name`=:qp2)"

    def test_like_escapes_and_wraps(self, builder):
        params = {}
        assert builder.build_condition(["like", "name", "ab%"], params) == "`name` LIKE :qp0"
        assert params == {":qp0": "%ab\\%%"}

    def test_or_like(self, builder):
        condition = builder.build_condition(["or like", "name", ["a", "b"]], {})
        assert condition == "`name` LIKE :qp0 OR `name` LIKE :qp1"

    def test_between_and_not(self, builder):
        params = {}
        condition = builder.build_condition(["not", ["between", "clicks", 1, 5]], params)
        assert condition == "NOT (`clicks` BETWEEN :qp0 AND :qp1)"
        assert params == {":qp0": 1, ":qp1": 5}

    def test_single_part_conjunction_is_not_wrapped(self, builder):
        assert builder.build_condition(["and", {"id": 1}, ""], {}) == "`id`=:qp0"

    def test_simple_operator_with_none(self, builder):
        assert builder.build_condition(["!=", "note", None], {}) == "`note` != NULL"

    def test_expression_params_are_merged(self, builder):
        params = {}
        condition = builder.build_condition(
            Expression("created > now() - INTERVAL :d DAY", {"d": 7}), params
        )
        assert condition == "created > now() - INTERVAL :d DAY"
        assert params == {":d": 7}

    def test_exists(self, connection, builder):
        sub = Query(connection).from_("clicks")
        assert builder.build_condition(["exists", sub], {}) == "EXISTS (SELECT * FROM `clicks`)"

    def test_unknown_condition_type(self, builder):
        with pytest.raises(TypeError):
            builder.build_condition(42, {})


class TestWrites:
    def test_insert_renders_bigint_as_literal(self, builder):
        params = {}
        sql = builder.insert("events", {"id": "12345678901234567890", "name": "n"}, params)

        assert sql == "INSERT INTO `events` (`id`, `name`) VALUES (12345678901234567890, :qp0)"
        assert params == {":qp0": "n"}

    def test_insert_select(self, connection, builder):
        query = Query(connection).select(["id", "name"]).from_("staging")

        sql = builder.insert("events", query, {})

        assert sql == "INSERT INTO `events` (`id`, `name`) SELECT `id`, `name` FROM `staging`"

    def test_batch_insert_renders_literals(self, builder):
        sql = builder.batch_insert(
            "events",
            ["id", "name", "amount", "note"],
            [[1, "a'b", 1.5, None], [2, "c", False, "x"]],
        )

        assert sql == (
            "INSERT INTO `events` (`id`, `name`, `amount`, `note`) "
            "VALUES (1, 'a\\'b', 1.5, NULL), (2, 'c', 0, 'x')"
        )

    def test_batch_insert_without_rows(self, builder):
        assert builder.batch_insert("events", ["id"], []) == ""

    def test_update_is_a_mutation(self, builder):
        params = {}
        sql = builder.update("events", {"name": "x", "clicks": "5"}, {"id": 1}, params)

        assert sql == "ALTER TABLE `events` UPDATE `name`=:qp0, `clicks`=:qp1 WHERE `id`=:qp2"
        assert params == {":qp0": "x", ":qp1": 5, ":qp2": 1}

    def test_update_without_condition_hits_every_row(self, builder):
        assert builder.update("events", {"name": "x"}, "", {}) == (
            "ALTER TABLE `events` UPDATE `name`=:qp0 WHERE 1"
        )

    def test_delete_is_a_mutation(self, builder):
        params = {}
        sql = builder.delete("events", ["in", "id", [1, 2]], params)

        assert sql == "ALTER TABLE `events` DELETE WHERE `id` IN (:qp0, :qp1)"
        assert builder.delete("events", None, {}) == "ALTER TABLE `events` DELETE WHERE 1"


class TestDdl:
    def test_create_table_requires_engine_options(self, builder):
        with pytest.raises(ConfigurationError, match="Need set specific settings for engine table"):
            builder.create_table("t", {"id": "bigint"})

    def test_create_table(self, builder):
        sql = builder.create_table(
            "t", {"id": "bigint", "name": "string"}, "ENGINE = MergeTree ORDER BY id"
        )

        assert sql == "CREATE TABLE `t` (\n\t`id` Int64,\n\t`name` String\n) ENGINE = MergeTree ORDER BY id"

    def test_add_and_drop_column(self, builder):
        assert builder.add_column("t", "c", ColumnType.DATE) == "ALTER TABLE `t` ADD COLUMN `c` Date"
        assert builder.drop_column("t", "c") == "ALTER TABLE `t` DROP COLUMN `c`"

    @pytest.mark.parametrize(
        "column_type, expected",
        [
            ("bigint", "Int64"),
            ("string", "String"),
            ("Uinteger", "UInt32"),
            ("integer DEFAULT 3", "Int32 DEFAULT 3"),
            ("Nullable(String)", "Nullable(String)"),
            ("LowCardinality(String)", "LowCardinality(String)"),
        ],
    )
    def test_get_column_type(self, builder, column_type, expected):
        assert builder.get_column_type(column_type) == expected

    def test_get_column_type_from_schema_builder(self, builder):
        column = ColumnSchemaBuilder(ColumnType.INTEGER).unsigned().default_value(0)

        assert builder.get_column_type(column) == "UInt32 DEFAULT 0"


class TestLiteral:
    def test_scalars(self, builder):
        assert builder.literal(None) == "NULL"
        assert builder.literal(True) == "1"
        assert builder.literal(2.0) == "2"
        assert builder.literal(0.25) == "0.25"
        assert builder.literal("it's") == "'it\\'s'"

    def test_containers(self, builder):
        assert builder.literal([1, "a"]) == "[1, 'a']"
        assert builder.literal({"k": 1}) == "{'k': 1}"
