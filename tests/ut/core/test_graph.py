"""依赖图与懒加载包循环检测测试"""

from __future__ import annotations

from assetbuild.core.graph import (
    DependencyGraph,
    check_lazy_bundles_for_cycles,
    collapse_bundle,
    find_bundle_cycles,
)
from assetbuild.core.models import LazyBundle


class TestDependencyGraph:
    def test_merge_unions_dependencies(self) -> None:
        g = DependencyGraph()
        g.merge("M/a", "M/a.js", ["M/b"])
        g.merge("M/a", None, ["M/b", "M/c"])
        assert g.links["M/a"] == ["M/b", "M/c"]
        assert g.nodes["M/a"] == {"amd": True, "path": "M/a.js"}

    def test_to_graph_sorted(self) -> None:
        g = DependencyGraph()
        g.merge("b", "b.js", [])
        g.merge("a", "a.js", [])
        assert list(g.to_graph()["nodes"]) == ["a", "b"]

    def test_closure_dependencies_first(self) -> None:
        g = DependencyGraph(links={"a": ["b", "c"], "b": ["c"], "c": []})
        assert g.closure(["a"]) == ["c", "b", "a"]

    def test_closure_tolerates_cycles(self) -> None:
        g = DependencyGraph(links={"a": ["b"], "b": ["a"]})
        assert sorted(g.closure(["a"])) == ["a", "b"]

    def test_merge_graph(self) -> None:
        g = DependencyGraph()
        g.merge_graph({"nodes": {"x": {"path": "x.js"}}, "links": {"x": ["y"]}})
        assert g.links == {"x": ["y"]}
        assert g.nodes["x"]["path"] == "x.js"


class TestCollapseBundle:
    """折叠视图不修改原图"""

    def test_collapse(self) -> None:
        links = {"X": ["E", "Y"], "Y": [], "E": ["X"], "Z": ["Y"]}
        bundle = LazyBundle("B", ["X", "Y"], ["E"])
        collapsed = collapse_bundle(links, bundle)
        assert collapsed["B"] == ["E"]
        assert collapsed["E"] == ["B"]
        assert collapsed["Z"] == ["B"]
        assert links["E"] == ["X"]


class TestFindBundleCycles:
    def test_direct_cycle(self) -> None:
        links = {"X": ["E"], "Y": [], "E": ["X"]}
        bundle = LazyBundle("B", ["X", "Y"], ["E"])
        assert find_bundle_cycles(links, bundle) == [["X", "E", "X"]]

    def test_transitive_cycle(self) -> None:
        links = {"Y": ["E"], "X": [], "E": ["F"], "F": ["X"]}
        bundle = LazyBundle("B", ["X", "Y"], ["E"])
        cycles = find_bundle_cycles(links, bundle)
        assert cycles == [["Y", "E", "F", "X"]]

    def test_no_cycle(self) -> None:
        links = {"X": ["E"], "E": ["F"], "F": []}
        bundle = LazyBundle("B", ["X"], ["E"])
        assert find_bundle_cycles(links, bundle) == []

    def test_cycle_not_through_bundle_ignored(self) -> None:
        links = {"X": ["E"], "E": ["F"], "F": ["E"]}
        bundle = LazyBundle("B", ["X"], ["E"])
        assert find_bundle_cycles(links, bundle) == []

    def test_check_all_bundles(self) -> None:
        links = {"X": ["E"], "E": ["X"], "P": ["Q"], "Q": []}
        result = check_lazy_bundles_for_cycles(links, [
            LazyBundle("B", ["X"], ["E"]),
            LazyBundle("C", ["P"], ["Q"]),
        ])
        assert result == {"B": [["X", "E", "X"]]}
