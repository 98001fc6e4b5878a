"""模块依赖图

nodes: {节点名: {"amd": True, "path": 产物相对路径}}
links: {节点名: [它依赖的节点名...]}

懒加载包的循环检测不修改规范图：collapse_bundle 返回把包内部模块
折叠为一个虚拟节点后的新邻接表，检测在这个视图上进行。
"""

from __future__ import annotations

import logging
from typing import Iterable

from assetbuild.core.models import LazyBundle

logger = logging.getLogger(__name__)


class DependencyGraph:
    """按节点名分片累积的依赖图，同一节点只会被一个文件任务写入"""

    def __init__(
        self,
        nodes: dict[str, dict] | None = None,
        links: dict[str, list[str]] | None = None,
    ) -> None:
        self.nodes: dict[str, dict] = dict(nodes or {})
        self.links: dict[str, list[str]] = {
            k: list(v) for k, v in (links or {}).items()
        }

    def merge(
        self, name: str, path: str | None, dependencies: Iterable[str],
        **attrs: object,
    ) -> None:
        """合并一个节点及其出边（重复调用时依赖取并集）"""
        if path is not None:
            node = {"amd": True, "path": path}
            node.update(attrs)
            self.nodes[name] = node
        deps = self.links.setdefault(name, [])
        for dep in dependencies:
            if dep not in deps:
                deps.append(dep)

    def merge_graph(self, other: dict) -> None:
        for name, node in other.get("nodes", {}).items():
            self.nodes[name] = dict(node)
        for name, deps in other.get("links", {}).items():
            self.merge(name, None, deps)

    def to_graph(self) -> dict[str, dict]:
        return {
            "nodes": {k: self.nodes[k] for k in sorted(self.nodes)},
            "links": {k: list(self.links[k]) for k in sorted(self.links)},
        }

    def closure(self, roots: Iterable[str]) -> list[str]:
        """roots 的传递依赖，依赖在前（后序遍历，显式工作栈）"""
        order: list[str] = []
        done: set[str] = set()
        entered: set[str] = set()
        for root in roots:
            stack: list[tuple[str, bool]] = [(root, False)]
            while stack:
                name, expanded = stack.pop()
                if expanded:
                    if name not in done:
                        done.add(name)
                        order.append(name)
                    continue
                if name in entered:
                    continue
                entered.add(name)
                stack.append((name, True))
                for dep in reversed(self.links.get(name, [])):
                    if dep not in entered:
                        stack.append((dep, False))
        return order


def collapse_bundle(
    links: dict[str, list[str]], bundle: LazyBundle,
) -> dict[str, list[str]]:
    """返回把包内部模块折叠为包名节点后的新邻接表

    内部模块的出边并入包节点（去掉指向包自身的边），其它节点指向
    内部模块的边改为指向包节点。原图不被修改。
    """
    internal = set(bundle.internal_modules)
    collapsed: dict[str, list[str]] = {}

    def _target(dep: str) -> str:
        return bundle.name if dep in internal else dep

    for name, deps in links.items():
        owner = bundle.name if name in internal else name
        targets = collapsed.setdefault(owner, [])
        for dep in deps:
            tgt = _target(dep)
            if owner == bundle.name and tgt == bundle.name:
                continue
            if tgt not in targets:
                targets.append(tgt)
    return collapsed


def find_bundle_cycles(
    links: dict[str, list[str]], bundle: LazyBundle,
) -> list[list[str]]:
    """检测经过包边界的循环依赖

    从包的每个外部依赖出发在折叠视图上深度优先遍历，记录当前路径；
    路径中出现重复节点即记录为一条完整循环，该分支不再继续。
    只保留经过包节点的循环，并把首尾的包节点替换为具体内部模块。
    """
    collapsed = collapse_bundle(links, bundle)
    cycles: list[list[str]] = []
    seen_cycles: set[tuple[str, ...]] = set()

    for external in sorted(bundle.external_dependencies):
        expanded: set[str] = set()
        stack: list[list[str]] = [[bundle.name, external]]
        while stack:
            path = stack.pop()
            node = path[-1]
            if node in expanded:
                continue
            expanded.add(node)
            for dep in reversed(collapsed.get(node, [])):
                if dep in path:
                    if dep == bundle.name:
                        cycle = tuple(path + [dep])
                        if cycle not in seen_cycles:
                            seen_cycles.add(cycle)
                            cycles.extend(_attribute(links, bundle, list(cycle)))
                    continue
                stack.append(path + [dep])
    return cycles


def _attribute(
    links: dict[str, list[str]], bundle: LazyBundle, cycle: list[str],
) -> list[list[str]]:
    """用原图的边找出闭合循环的具体内部模块"""
    internal = sorted(bundle.internal_modules)
    first_external = cycle[1]
    last_node = cycle[-2]
    starts = [m for m in internal if first_external in links.get(m, [])]
    ends = [m for m in internal if m in links.get(last_node, [])]
    if not starts:
        starts = [bundle.name]
    result = []
    for start in starts:
        end = start if start in ends else (ends[0] if ends else bundle.name)
        result.append([start, *cycle[1:-1], end])
    return result


def check_lazy_bundles_for_cycles(
    links: dict[str, list[str]], bundles: Iterable[LazyBundle],
) -> dict[str, list[list[str]]]:
    """对所有懒加载包做循环检测，返回 {包名: [循环序列...]}"""
    result: dict[str, list[list[str]]] = {}
    for bundle in bundles:
        cycles = find_bundle_cycles(links, bundle)
        if cycles:
            result[bundle.name] = cycles
            for seq in cycles:
                logger.error(
                    "懒加载包 %s 存在循环依赖: %s", bundle.name, " --> ".join(seq),
                )
    return result
