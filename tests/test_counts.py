"""
Tests for count partitioning and grouping.
"""

import pytest

from core.calculations.counts import (
    count_statistics,
    distinct_operator_ids,
    ensure_counts,
    group_by_key,
    item_key,
    item_names,
    operator_key,
    operator_machine_key,
    partition_counts,
)

from conftest import HOUR, count


@pytest.fixture
def mixed_counts():
    return [
        count(0, operator_id=7, name="Towel"),
        count(10, operator_id=7, item_id=2, name="Sheet"),
        count(20, operator_id=8, name="Towel", misfeed=True),
        count(30, operator_id=-1, name="Towel"),
        count(40, operator_id=None, name="Towel"),
    ]


class TestPartition:

    def test_valid_requires_assigned_operator(self, mixed_counts):
        partition = partition_counts(mixed_counts)

        assert [c.timestamp for c in partition.valid] == [0, 10]
        assert [c.timestamp for c in partition.misfeed] == [20]
        assert partition.total == 3

    def test_unassigned_misfeed_still_counted(self):
        partition = partition_counts([count(0, operator_id=-1, misfeed=True)])

        assert len(partition.misfeed) == 1
        assert partition.valid == []

    def test_none_is_empty(self):
        assert partition_counts(None).total == 0

    def test_rejects_non_counts(self):
        with pytest.raises(TypeError):
            ensure_counts([{"timestamp": 0}])
        with pytest.raises(TypeError):
            ensure_counts(42)


class TestGrouping:

    @pytest.mark.parametrize("key_fn", [operator_machine_key, item_key, operator_key])
    def test_every_count_lands_in_one_group(self, mixed_counts, key_fn):
        groups = group_by_key(mixed_counts, key_fn)

        assert sum(len(g) for g in groups.values()) == len(mixed_counts)

    def test_none_key_is_kept(self, mixed_counts):
        groups = group_by_key(mixed_counts, operator_key)

        assert [c.timestamp for c in groups[None]] == [40]

    def test_item_key_separates_same_name_different_id(self):
        groups = group_by_key([count(0, item_id=1), count(1, item_id=2)], item_key)

        assert len(groups) == 2

    def test_group_order_is_input_order(self, mixed_counts):
        groups = group_by_key(mixed_counts, item_key)

        assert [c.timestamp for c in groups[(1, "Towel")]] == [0, 20, 30, 40]


class TestStatistics:

    def test_count_statistics(self, mixed_counts):
        stats = count_statistics(mixed_counts, runtime_ms=HOUR)

        assert (stats.total, stats.valid, stats.misfeeds) == (5, 2, 1)
        assert stats.pph == pytest.approx(2.0)
        assert [(i.name, i.count) for i in stats.items] == [("Towel", 4), ("Sheet", 1)]
        assert [o.id for o in stats.operators] == [7, 8, -1]

    def test_pph_zero_without_runtime(self, mixed_counts):
        assert count_statistics(mixed_counts).pph == 0.0

    def test_item_names_first_seen(self, mixed_counts):
        assert item_names(mixed_counts) == "Towel, Sheet"

    def test_distinct_operator_ids_excludes_unassigned(self, mixed_counts):
        assert distinct_operator_ids(mixed_counts) == [7, 8]
