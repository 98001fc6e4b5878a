"""库打包

把库（模块根目录下的公开 AMD 模块）依赖的私有模块（路径中含 "_" 开头
目录的模块）直接内联进库文件:

- 每个私有模块变成一个带记忆化的懒工厂 <name>_func()，首次调用才求值
- 库的 exports.X = <引用私有模块的表达式> 改写为 getter，消费方不访问就不求值
- 私有模块依赖的外部模块保持运行时加载，作为库的新依赖追加
- 输出末尾带 exports._packedLibrary 标记，再次打包时直接跳过

私有模块源码缺失、跨库引用私有模块、循环依赖都是该库的致命错误。
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Callable

from assetbuild.core.amd import (
    AmdModule,
    Statement,
    StatementVisitor,
    bare_name,
    parse_define,
    plugins_of,
    rename_references,
    split_statements,
)
from assetbuild.core.exceptions import PackError
from assetbuild.utils.logger import build_context

logger = logging.getLogger(__name__)

PACKED_MARKER = "exports._packedLibrary = true;"

# 这些插件的依赖始终由运行时加载
_EXTERNAL_PLUGINS = frozenset(("css", "i18n", "native-css", "cdn", "preload", "remote"))
_TEMPLATE_PLUGINS = frozenset(("tmpl", "wml"))
_SPECIAL_DEPENDENCIES = frozenset(("require", "exports", "module"))
_SANITIZE = re.compile(r"[^\w$]")

SourceLoader = Callable[[str], "str | None"]


def is_private(name: str) -> bool:
    """模块路径的中间目录以 "_" 开头即为私有模块"""
    parts = bare_name(name).split("/")
    return any(p.startswith("_") for p in parts[1:-1])


def sanitize(name: str) -> str:
    """依赖名 -> 合法的 JS 变量名"""
    result = _SANITIZE.sub("_", name)
    return f"_{result}" if result[:1].isdigit() else result


def library_root(name: str) -> str:
    return bare_name(name).split("/", 1)[0]


@dataclass
class PackResult:
    name: str
    compiled: str
    dependencies: list[str] = field(default_factory=list)
    packed_modules: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def packed(self) -> bool:
        return bool(self.packed_modules)


@dataclass
class _PrivateModule:
    name: str
    depth: int
    amd: AmdModule


class ModulePacker:
    """库打包器

    Args:
        load_source: 私有模块名 -> 编译后源码，找不到返回 None
    """

    def __init__(self, load_source: SourceLoader) -> None:
        self.load_source = load_source

    def pack(self, library: str, text: str) -> PackResult:
        if PACKED_MARKER in text:
            logger.debug("库已打包，跳过: %s", library)
            return PackResult(name=library, compiled=text)

        amd = parse_define(text)
        if amd is None or not amd.has_factory:
            return PackResult(name=library, compiled=text)

        root = library_root(library)
        packable = [
            d for d in amd.dependencies if self._is_packable(d, root, library)
        ]
        if not packable:
            return PackResult(
                name=library, compiled=text, dependencies=list(amd.dependencies),
            )

        privates, externals = self._collect(library, root, packable)
        return self._render(library, amd, privates, externals)

    # ---- 依赖收集 ----

    def _is_packable(self, dep: str, root: str, library: str) -> bool:
        if dep in _SPECIAL_DEPENDENCIES or not is_private(dep):
            return False
        if set(plugins_of(dep)) & _EXTERNAL_PLUGINS:
            return False
        if library_root(dep) != root:
            raise PackError(
                f"库 {library} 引用了其它接口模块的私有模块: {dep}", library=library,
            )
        return True

    def _collect(
        self, library: str, root: str, packable: list[str],
    ) -> tuple[list[_PrivateModule], list[str]]:
        """工作栈遍历私有依赖树，收集全部错误后统一抛出"""
        errors: list[str] = []
        found: dict[str, _PrivateModule] = {}
        externals: list[str] = []
        stack: list[tuple[str, tuple[str, ...]]] = [
            (dep, (library,)) for dep in reversed(packable)
        ]
        while stack:
            dep, path = stack.pop()
            if dep in found:
                continue
            source = self.load_source(dep)
            if source is None:
                errors.append(f"私有模块源码不存在: {dep} (引用方: {path[-1]})")
                continue
            amd = parse_define(source)
            if amd is None:
                errors.append(f"私有模块不是 AMD 模块: {dep}")
                continue
            found[dep] = _PrivateModule(name=dep, depth=len(path), amd=amd)
            chain = path + (dep,)
            for sub in amd.dependencies:
                if sub in _SPECIAL_DEPENDENCIES:
                    continue
                if sub == library:
                    errors.append(f"私有模块 {dep} 反向依赖所在库 {library}")
                    continue
                try:
                    private = self._is_packable(sub, root, library)
                except PackError as exc:
                    errors.append(str(exc))
                    continue
                if not private:
                    if sub not in externals:
                        externals.append(sub)
                elif sub in chain:
                    errors.append(f"检测到循环依赖: {sub}, 父模块: {dep}")
                elif sub not in found:
                    stack.append((sub, chain))
        if errors:
            raise PackError(
                f"库 {library} 打包失败:\n  " + "\n  ".join(errors), library=library,
            )
        privates = sorted(found.values(), key=lambda m: (m.depth, m.name))
        return privates, externals

    # ---- 代码生成 ----

    def _render(
        self, library: str, amd: AmdModule,
        privates: list[_PrivateModule], externals: list[str],
    ) -> PackResult:
        private_names = {m.name for m in privates}
        warnings: list[str] = []

        # 保留的依赖与参数: 有参数名的依赖在前，其余在后
        pairs: list[tuple[str, str]] = []
        tail: list[str] = []
        replacements: dict[str, str] = {}
        for i, dep in enumerate(amd.dependencies):
            param = amd.params[i] if i < len(amd.params) else None
            if dep in private_names:
                if param:
                    replacements[param] = f"{sanitize(dep)}_func()"
                continue
            if param:
                pairs.append((dep, param))
            else:
                tail.append(dep)

        used = {p for _, p in pairs}
        known = {d for d, _ in pairs} | set(tail)
        added: list[tuple[str, str]] = []
        for dep in sorted(externals):
            if dep in known:
                continue
            param = sanitize(dep)
            counter = 1
            while param in used:
                param = f"{sanitize(dep)}_{counter}"
                counter += 1
            used.add(param)
            added.append((dep, param))
        pairs = added + pairs
        param_of = dict(pairs)

        factories = "\n".join(
            self._factory(m, private_names, param_of) for m in privates
        )

        body = rename_references(amd.body, replacements)
        rewriter = _LibraryRewriter(
            library, factories, set(replacements.values()), warnings,
        )
        new_body = rewriter.transform(body)
        if not rewriter.inserted:
            new_body = f"\n{factories}\n{new_body}"
        if not rewriter.es_module and not rewriter.returned:
            new_body += "\nvar exports = {};"
        new_body += f"\n{PACKED_MARKER}\nreturn exports;\n"

        dependencies = [d for d, _ in pairs] + tail
        params = [p for _, p in pairs]
        define = (
            f"define({json.dumps(amd.name or library)}, "
            f"{json.dumps(dependencies)}, "
            f"function({', '.join(params)}) {{{new_body}}});"
        )
        compiled = amd.text[:amd.define_start] + define + amd.text[amd.define_end:]
        for w in warnings:
            logger.warning("%s: %s", library, w)
        logger.info("库打包完成: %s (内联 %d 个私有模块)", library, len(privates))
        return PackResult(
            name=library, compiled=compiled, dependencies=dependencies,
            packed_modules=[m.name for m in privates], warnings=warnings,
        )

    @staticmethod
    def _factory(
        module: _PrivateModule, private_names: set[str], param_of: dict[str, str],
    ) -> str:
        var = sanitize(module.name)
        args = []
        for dep in module.amd.dependencies:
            if dep == "exports":
                args.append("exports")
            elif dep == "module":
                args.append(f"{{id: {json.dumps(module.name)}}}")
            elif dep == "require":
                args.append("require")
            elif dep in private_names:
                args.append(f"{sanitize(dep)}_func()")
            elif dep in param_of:
                args.append(param_of[dep])
            else:
                ref = sanitize(dep)
                args.append(f"typeof {ref} === 'undefined' ? null : {ref}")
        strict = "" if set(plugins_of(module.name)) & _TEMPLATE_PLUGINS else '"use strict";\n'
        return (
            f"var {var};\n"
            f"var {var}_func = function() {{\n"
            f"if (!{var}) {{\n"
            f"{var} = (function() {{\n"
            f"{strict}"
            f"var exports = {{}};\n"
            f"var result = ({module.amd.factory})({', '.join(args)});\n"
            f"if (result instanceof Function) {{ return result; }}\n"
            f"if (result && Object.getPrototypeOf(result) !== Object.prototype) "
            f"{{ return result; }}\n"
            f"for (var key in result) {{ if (Object.prototype.hasOwnProperty.call("
            f"result, key)) {{ exports[key] = result[key]; }} }}\n"
            f"return exports;\n"
            f"}})();\n"
            f"}}\n"
            f"return {var};\n"
            f"}};"
        )


class _LibraryRewriter(StatementVisitor):
    """库函数体改写: 在 "use strict" 之后插入私有模块工厂，处理 return 与导出"""

    def __init__(
        self, library: str, factories: str, private_calls: set[str],
        warnings: list[str],
    ) -> None:
        self.library = library
        self.factories = factories
        self.private_calls = private_calls
        self.warnings = warnings
        self.es_module = False
        self.inserted = False
        self.returned = False

    def transform(self, body: str) -> str:
        statements = split_statements(body)
        self.es_module = any(s.kind == "es_module_marker" for s in statements)
        if not self.es_module:
            self.warnings.append(
                "未找到 exports 变量，库的返回值将作为 exports 使用"
            )
        return "".join(self.visit(s) for s in statements)

    def visit_use_strict(self, statement: Statement) -> str:
        if self.inserted:
            return statement.text
        self.inserted = True
        return f"{statement.text}\n{self.factories}\n"

    def visit_return(self, statement: Statement) -> str:
        if self.es_module:
            if statement.expression != "exports":
                # 记错误后照常去掉 return，库仍以 exports 导出
                logger.error(
                    "库 %s 使用 exports 时顶层 return 必须返回 exports，实际为: %s",
                    self.library, statement.expression,
                    extra=build_context(library_root(self.library), f"{self.library}.js"),
                )
            return ""
        self.returned = True
        value = statement.expression or "{}"
        return f"\nvar exports = {value};"

    def visit_exports_assign(self, statement: Statement) -> str:
        if not any(c in statement.expression for c in self.private_calls):
            return statement.text
        name = statement.export_name
        return (
            f"\nObject.defineProperty(exports, {json.dumps(name)}, {{\n"
            f"get: function() {{\n"
            f"var result = {statement.expression};\n"
            f"if (typeof result === 'function' && result.prototype && "
            f"!result.prototype.hasOwnProperty('_moduleName')) {{\n"
            f"result.prototype._moduleName = {json.dumps(f'{self.library}:{name}')};\n"
            f"}}\n"
            f"return result;\n"
            f"}},\n"
            f"enumerable: true\n"
            f"}});"
        )
