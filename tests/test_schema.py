"""
Schema and generation plan validation tests.
"""

import random

import pytest

from query_bench.errors import SchemaError
from query_bench.schema import (
    Choice,
    Column,
    ForeignKey,
    GenerationPlan,
    KeySpace,
    Prefixed,
    RandomInt,
    RoundRobin,
    SchemaSpec,
    Sequential,
    Skewed,
    TablePlan,
    TableSpec,
    derive_seed,
    sampling_policy,
)


def table(name, *extra_columns, fks=(), pk_policy=None):
    columns = (Column("id", "INTEGER", pk_policy or Sequential()),) + tuple(extra_columns)
    return TableSpec(name=name, columns=columns, primary_key="id", foreign_keys=tuple(fks))


class TestSchemaValidation:

    def test_valid_chain(self):
        schema = SchemaSpec(tables=(
            table("a"),
            table("b", Column("a_id"), fks=[ForeignKey("a_id", "a")]),
            table("c", Column("b_id"), Column("a_id"),
                  fks=[ForeignKey("b_id", "b"), ForeignKey("a_id", "a")]),
        ))
        assert schema.topological_order() == ["a", "b", "c"]
        assert schema.children("a") == ["b", "c"]
        assert schema.table("c").parents == ["b", "a"]

    def test_undefined_table(self):
        with pytest.raises(SchemaError, match="undefined table 'missing'"):
            SchemaSpec(tables=(table("b", Column("x_id"), fks=[ForeignKey("x_id", "missing")]),))

    def test_forward_reference_is_a_cycle(self):
        with pytest.raises(SchemaError, match="not defined earlier"):
            SchemaSpec(tables=(
                table("b", Column("a_id"), fks=[ForeignKey("a_id", "a")]),
                table("a"),
            ))

    def test_self_reference_rejected(self):
        with pytest.raises(SchemaError, match="not defined earlier"):
            SchemaSpec(tables=(table("a", Column("parent_id"), fks=[ForeignKey("parent_id", "a")]),))

    def test_undefined_referenced_column(self):
        with pytest.raises(SchemaError, match="undefined column 'a.nope'"):
            SchemaSpec(tables=(
                table("a"),
                table("b", Column("a_id"), fks=[ForeignKey("a_id", "a", ref_column="nope")]),
            ))

    def test_reference_must_target_primary_key(self):
        with pytest.raises(SchemaError, match="primary key"):
            SchemaSpec(tables=(
                table("a", Column("code", "INTEGER", RandomInt())),
                table("b", Column("a_code"), fks=[ForeignKey("a_code", "a", ref_column="code")]),
            ))

    def test_fk_column_must_exist(self):
        with pytest.raises(SchemaError, match="not a column of 'b'"):
            SchemaSpec(tables=(table("a"), table("b", fks=[ForeignKey("a_id", "a")])))

    def test_primary_key_needs_key_policy(self):
        with pytest.raises(SchemaError, match="key policy"):
            SchemaSpec(tables=(table("a", pk_policy=RandomInt()),))

    def test_column_without_policy(self):
        with pytest.raises(SchemaError, match="has no policy"):
            SchemaSpec(tables=(table("a", Column("value")),))

    def test_duplicate_table(self):
        with pytest.raises(SchemaError, match="Duplicate table"):
            SchemaSpec(tables=(table("a"), table("a")))


class TestGenerationPlan:

    def test_zero_row_parent_with_sampling_child(self, customers_orders_schema):
        plan = GenerationPlan.build(customers_orders_schema, {"customers": 0, "orders": 10})
        with pytest.raises(SchemaError, match="zero planned rows"):
            plan.validate(customers_orders_schema)

    def test_zero_row_parent_and_zero_row_child_is_fine(self, customers_orders_schema):
        plan = GenerationPlan.build(customers_orders_schema, {"customers": 0, "orders": 0})
        plan.validate(customers_orders_schema)

    def test_missing_table_plan(self, customers_orders_schema):
        with pytest.raises(SchemaError, match="No row count planned"):
            GenerationPlan.build(customers_orders_schema, {"customers": 10})

    def test_sampling_for_non_fk_column(self, customers_orders_schema):
        plan = GenerationPlan(tables={
            "customers": TablePlan(10, 1),
            "orders": TablePlan(10, 2, {"amount": RoundRobin()}),
        })
        with pytest.raises(SchemaError, match="not a foreign key"):
            plan.validate(customers_orders_schema)

    def test_seeds_are_stable_and_distinct(self, customers_orders_schema):
        plan = GenerationPlan.build(customers_orders_schema, {"customers": 1, "orders": 1}, seed=7)
        again = GenerationPlan.build(customers_orders_schema, {"customers": 1, "orders": 1}, seed=7)
        assert plan["customers"].seed == again["customers"].seed == derive_seed(7, "customers")
        assert plan["customers"].seed != plan["orders"].seed

    def test_unknown_sampling_policy(self):
        with pytest.raises(SchemaError, match="Unknown sampling policy"):
            sampling_policy("zipf")


class TestPolicies:

    def test_key_space_membership(self):
        keys = KeySpace("t", Sequential(start=10, step=5), 3)
        assert list(keys) == [10, 15, 20]
        assert 15 in keys
        assert 25 not in keys
        assert 12 not in keys

    def test_prefixed_key_space(self):
        keys = KeySpace("t", Prefixed("c_"), 3)
        assert list(keys) == ["c_1", "c_2", "c_3"]
        assert "c_3" in keys
        assert "c_4" not in keys
        assert "x_1" not in keys

    def test_skewed_stays_in_range(self):
        rng = random.Random(1)
        policy = Skewed(hot_fraction=0.1, hot_weight=0.9)
        picks = [policy.pick(i, 100, rng) for i in range(2000)]
        assert all(0 <= p < 100 for p in picks)
        hot = sum(1 for p in picks if p < 10)
        assert hot > 1500, f"expected most picks in the hot set, got {hot}"

    def test_choice_requires_values(self):
        with pytest.raises(SchemaError):
            Choice(values=())

    def test_sequential_needs_non_zero_step(self):
        with pytest.raises(SchemaError, match="non-zero step"):
            Sequential(step=0)
        keys = KeySpace("t", Sequential(start=10, step=-2), 3)
        assert list(keys) == [10, 8, 6]
        assert 8 in keys
