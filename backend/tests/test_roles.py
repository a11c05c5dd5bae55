"""
Role hierarchy tests.

Verifies:
- customer < staff < company_admin < super_admin
- Unknown roles (including None) satisfy nothing
- An unknown requirement admits nobody
"""

import pytest

from passcard.roles import (
    VALID_ROLES, UNKNOWN_RANK, rank, satisfies, is_valid_role, has_role, role_label,
)


class TestRank:

    def test_hierarchy_is_strictly_ordered(self):
        ranks = [rank(role) for role in ["customer", "staff", "company_admin", "super_admin"]]
        assert ranks == sorted(ranks)
        assert len(set(ranks)) == 4

    @pytest.mark.parametrize("role", [None, "", "admin", "SUPER_ADMIN", 3, ["staff"]])
    def test_unknown_roles_rank_minus_one(self, role):
        assert rank(role) == UNKNOWN_RANK
        assert not is_valid_role(role)


class TestSatisfies:

    @pytest.mark.parametrize("actual", VALID_ROLES)
    @pytest.mark.parametrize("required", VALID_ROLES)
    def test_matches_rank_comparison(self, actual, required):
        assert satisfies(actual, required) == (rank(actual) >= rank(required))

    @pytest.mark.parametrize("required", VALID_ROLES)
    def test_missing_role_satisfies_nothing(self, required):
        assert not satisfies(None, required)
        assert not satisfies("manager", required)

    @pytest.mark.parametrize("actual", VALID_ROLES)
    def test_unknown_requirement_fails_closed(self, actual):
        assert not satisfies(actual, "owner")
        assert not satisfies(actual, None)

    def test_monotonic(self):
        # Anything a role can do, every higher role can do
        for lower in VALID_ROLES:
            for higher in VALID_ROLES:
                if rank(higher) < rank(lower):
                    continue
                for required in VALID_ROLES:
                    if satisfies(lower, required):
                        assert satisfies(higher, required)


def test_has_role_is_exact():
    assert has_role("staff", ["staff", "company_admin"])
    assert not has_role("super_admin", ["staff"])
    assert not has_role(None, ["staff"])


def test_role_label():
    assert role_label("company_admin") == "company admin"
