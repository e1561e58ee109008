"""Tests for culprit and special-role assignment."""

import random

import pytest

from casegen.pipeline.models import RoleAssignment
from casegen.pipeline.roles import assign


class TestAssign:

    def test_culprit_in_range(self):
        rng = random.Random(7)
        for n in range(1, 10):
            a = assign(n, rng=rng)
            assert 1 <= a.culprit_index <= n
            assert a.special_role_index is None

    def test_seeded_is_reproducible(self):
        assert assign(8, rng=random.Random(42)) == assign(8, rng=random.Random(42))

    def test_special_role_differs(self):
        rng = random.Random(3)
        for _ in range(50):
            a = assign(2, special_role_required=True, rng=rng)
            assert a.special_role_index != a.culprit_index

    def test_overlap_allowed_single_entity(self):
        a = assign(1, special_role_required=True, rng=random.Random(1), allow_overlap=True)
        assert a == RoleAssignment(culprit_index=1, special_role_index=1)

    def test_overlap_happens_sometimes(self):
        rng = random.Random(5)
        results = [assign(6, special_role_required=True, rng=rng, allow_overlap=True) for _ in range(200)]
        overlaps = sum(1 for a in results if a.special_role_index == a.culprit_index)
        assert 0 < overlaps < 200

    def test_ids(self):
        a = RoleAssignment(culprit_index=2, special_role_index=3)
        assert a.culprit_id == "entity-2"
        assert a.special_role_id == "entity-3"

    @pytest.mark.parametrize("count,special", [(0, False), (-1, False), (1, True)])
    def test_invalid(self, count, special):
        with pytest.raises(ValueError):
            assign(count, special_role_required=special, rng=random.Random(0))
