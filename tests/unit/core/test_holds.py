"""Unit tests for the hold cache."""

import pytest
from fakes import FakeOperator
from nebulactl.core.holds import HoldCache
from nebulactl.models.package import PackageRef


class TestHoldCache:
    """Tests for HoldCache."""

    def test_queries_once(self) -> None:
        """Repeated reads reuse the cached answer."""
        operator = FakeOperator(held=[PackageRef("mesa")])
        cache = HoldCache(operator)

        assert cache.is_held(PackageRef("mesa")) is True
        assert cache.is_held(PackageRef("vim")) is False
        assert operator.held_queries == 1

    def test_invalidate_forces_requery(self) -> None:
        """After invalidation the next read queries again."""
        operator = FakeOperator(held=[PackageRef("mesa")])
        cache = HoldCache(operator)
        cache.held()

        cache.invalidate()
        assert cache.is_valid is False
        operator.held = []

        assert cache.held() == frozenset()
        assert operator.held_queries == 2

    def test_refresh(self) -> None:
        """refresh reloads immediately."""
        operator = FakeOperator(held=[PackageRef("linux6.6")])
        cache = HoldCache(operator)

        assert cache.refresh() == frozenset({PackageRef("linux6.6")})
        assert cache.is_valid is True

    def test_query_error_propagates(self) -> None:
        """Query failures are raised, not cached."""

        class Failing(FakeOperator):
            def list_held(self) -> list[PackageRef]:
                msg = "Failed to query held packages"
                raise RuntimeError(msg)

        cache = HoldCache(Failing())
        with pytest.raises(RuntimeError):
            cache.held()
        assert cache.is_valid is False
