"""LazyBundleRegistry 测试"""

from __future__ import annotations

import pytest

from assetbuild.core.exceptions import LazyBundleError
from assetbuild.core.lazy_bundles import LazyBundleRegistry


class TestLazyBundleRegistry:
    def test_add_bundle(self) -> None:
        reg = LazyBundleRegistry()
        bundle = reg.add("B", ["X", "Y"], ["E", "X"])
        assert bundle.internal_modules == ["X", "Y"]
        assert bundle.external_dependencies == ["E"]
        assert reg.bundle_of("X") == "B"
        assert len(reg) == 1

    def test_module_in_two_bundles_is_fatal(self) -> None:
        reg = LazyBundleRegistry()
        reg.add("B", ["X"], [])
        with pytest.raises(LazyBundleError, match="同时属于懒加载包"):
            reg.add("C", ["X"], [])

    def test_same_bundle_can_be_extended(self) -> None:
        reg = LazyBundleRegistry()
        reg.add("B", ["X"], ["E"])
        reg.add("B", ["X", "Y"], ["F"])
        assert reg.to_json()["B"] == {
            "internalModules": ["X", "Y"], "externalDependencies": ["E", "F"],
        }
        assert reg.to_map() == {"X": "B", "Y": "B"}

    def test_iteration_sorted(self) -> None:
        reg = LazyBundleRegistry()
        reg.add("Z", ["a"], [])
        reg.add("A", ["b"], [])
        assert [b.name for b in reg] == ["A", "Z"]
