"""AMD 模块源码扫描

不做完整的 JavaScript 解析：词法扫描识别字符串、注释、正则与括号层级，
足以定位 define(name, [deps], function(params) {body}) 的各个部分，
并把函数体切分为顶层语句交给 StatementVisitor 处理。
全部基于显式循环，不做递归下降。
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

_IDENT_START = re.compile(r"[A-Za-z_$]")
_IDENT_BODY = re.compile(r"[\w$]*")
_OPERATOR_CHARS = "=!<>+-*%&|^~"
# 最长匹配的多字符运算符，"exports.x=!0" 才能拆成 "=" 与 "!"
_OPERATOR = re.compile(
    r">>>=|===|!==|\*\*=|<<=|>>=|>>>|=>|==|!=|<=|>=|&&|\|\||\+\+|--"
    r"|\+=|-=|\*=|%=|&=|\|=|\^=|<<|>>|\*\*|[=!<>+\-*%&|^~]"
)

# 这些 token 之后出现的 "/" 是正则字面量而不是除号
_REGEX_PREFIX_PUNCT = frozenset("(,=:[!&|?{};+-*%<>~^")
_REGEX_PREFIX_WORDS = frozenset((
    "return", "typeof", "case", "do", "else", "in", "instanceof",
    "new", "delete", "void", "throw",
))

_BLOCK_STATEMENTS = frozenset((
    "function", "if", "for", "while", "try", "class", "switch", "do",
))
_BLOCK_CONTINUATIONS = frozenset(("else", "catch", "finally", "while"))
_DECLARATION_WORDS = frozenset(("var", "let", "const", "function", "class"))


@dataclass(frozen=True)
class Token:
    kind: str  # ident / string / template / number / punct / op / regex
    value: str
    start: int
    end: int


def tokenize(text: str) -> list[Token]:
    """词法扫描，跳过空白与注释"""
    tokens: list[Token] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch.isspace():
            i += 1
            continue
        if text.startswith("//", i):
            end = text.find("\n", i)
            i = n if end < 0 else end + 1
            continue
        if text.startswith("/*", i):
            end = text.find("*/", i + 2)
            i = n if end < 0 else end + 2
            continue
        if ch in "'\"":
            end = _scan_string(text, i)
            tokens.append(Token("string", text[i:end], i, end))
            i = end
            continue
        if ch == "`":
            end = _scan_template(text, i)
            tokens.append(Token("template", text[i:end], i, end))
            i = end
            continue
        if ch == "/":
            if _regex_allowed(tokens):
                end = _scan_regex(text, i)
                tokens.append(Token("regex", text[i:end], i, end))
            else:
                end = i + 2 if text.startswith("/=", i) else i + 1
                tokens.append(Token("op", text[i:end], i, end))
            i = end
            continue
        if _IDENT_START.match(ch):
            m = _IDENT_BODY.match(text, i + 1)
            end = m.end() if m else i + 1
            tokens.append(Token("ident", text[i:end], i, end))
            i = end
            continue
        if ch.isdigit():
            j = i + 1
            while j < n and (text[j].isalnum() or text[j] in "._"):
                j += 1
            tokens.append(Token("number", text[i:j], i, j))
            i = j
            continue
        if ch in _OPERATOR_CHARS:
            m = _OPERATOR.match(text, i)
            end = m.end() if m else i + 1
            tokens.append(Token("op", text[i:end], i, end))
            i = end
            continue
        tokens.append(Token("punct", ch, i, i + 1))
        i += 1
    return tokens


def _scan_string(text: str, i: int) -> int:
    quote = text[i]
    j = i + 1
    n = len(text)
    while j < n:
        c = text[j]
        if c == "\\":
            j += 2
            continue
        if c == quote or c == "\n":
            return j + 1
        j += 1
    return n


def _scan_template(text: str, i: int) -> int:
    j = i + 1
    depth = 0
    n = len(text)
    while j < n:
        c = text[j]
        if c == "\\":
            j += 2
            continue
        if depth == 0 and c == "`":
            return j + 1
        if text.startswith("${", j):
            depth += 1
            j += 2
            continue
        if depth > 0 and c == "{":
            depth += 1
        elif depth > 0 and c == "}":
            depth -= 1
        j += 1
    return n


def _scan_regex(text: str, i: int) -> int:
    j = i + 1
    in_class = False
    n = len(text)
    while j < n:
        c = text[j]
        if c == "\\":
            j += 2
            continue
        if c == "\n":
            return j
        if c == "[":
            in_class = True
        elif c == "]":
            in_class = False
        elif c == "/" and not in_class:
            j += 1
            while j < n and text[j].isalpha():
                j += 1
            return j
        j += 1
    return n


def _regex_allowed(tokens: list[Token]) -> bool:
    if not tokens:
        return True
    prev = tokens[-1]
    if prev.kind == "punct":
        return prev.value in _REGEX_PREFIX_PUNCT
    if prev.kind == "op":
        return True
    return prev.kind == "ident" and prev.value in _REGEX_PREFIX_WORDS


def string_value(token: Token) -> str:
    """字符串字面量的值（只处理常见转义）"""
    raw = token.value[1:-1]
    return raw.replace("\\'", "'").replace('\\"', '"').replace("\\\\", "\\")


def _matching(tokens: list[Token], index: int) -> int:
    """返回与 tokens[index] 处开括号配对的闭括号下标，找不到返回 -1"""
    pairs = {"(": ")", "[": "]", "{": "}"}
    opener = tokens[index].value
    closer = pairs[opener]
    depth = 0
    for j in range(index, len(tokens)):
        tok = tokens[j]
        if tok.kind != "punct":
            continue
        if tok.value == opener:
            depth += 1
        elif tok.value == closer:
            depth -= 1
            if depth == 0:
                return j
    return -1


# =========================================================================
# define() 定位
# =========================================================================

@dataclass
class AmdModule:
    """一次 define 调用的结构化视图，所有位置均为原文本偏移"""

    text: str
    name: str | None
    dependencies: list[str]
    params: list[str]
    define_start: int
    define_end: int
    factory_start: int = -1
    factory_end: int = -1
    body_start: int = -1
    body_end: int = -1

    @property
    def has_factory(self) -> bool:
        return self.body_start >= 0

    @property
    def body(self) -> str:
        return self.text[self.body_start:self.body_end] if self.has_factory else ""

    @property
    def factory(self) -> str:
        """工厂函数源码；非函数工厂（如对象字面量）包装为返回它的函数"""
        if self.factory_start < 0:
            return "function() { return undefined; }"
        fragment = self.text[self.factory_start:self.factory_end]
        if self.has_factory:
            return fragment
        return f"function() {{ return {fragment}; }}"


def parse_define(text: str) -> AmdModule | None:
    """定位第一个顶层 define 调用，不是 AMD 模块时返回 None"""
    tokens = tokenize(text)
    for i, tok in enumerate(tokens):
        if tok.kind != "ident" or tok.value != "define":
            continue
        if i > 0 and tokens[i - 1].kind == "punct" and tokens[i - 1].value == ".":
            continue
        if i + 1 >= len(tokens) or tokens[i + 1].value != "(":
            continue
        close = _matching(tokens, i + 1)
        if close < 0:
            return None
        return _parse_define_args(text, tokens, i, close)
    return None


def _parse_define_args(
    text: str, tokens: list[Token], start: int, close: int,
) -> AmdModule:
    j = start + 2
    name: str | None = None
    deps: list[str] = []
    if j < close and tokens[j].kind == "string":
        name = string_value(tokens[j])
        j += 1
        if tokens[j].value == ",":
            j += 1
    if j < close and tokens[j].value == "[":
        end = _matching(tokens, j)
        deps = [string_value(t) for t in tokens[j:end] if t.kind == "string"]
        j = end + 1
        if tokens[j].value == ",":
            j += 1

    define_end = tokens[close].end
    if close + 1 < len(tokens) and tokens[close + 1].value == ";":
        define_end = tokens[close + 1].end
    module = AmdModule(
        text=text, name=name, dependencies=deps, params=[],
        define_start=tokens[start].start, define_end=define_end,
    )
    if j >= close:
        return module

    module.factory_start = tokens[j].start
    module.factory_end = tokens[close - 1].end
    if tokens[j].kind == "ident" and tokens[j].value == "function":
        k = j + 1
        if tokens[k].kind == "ident":
            k += 1
        if tokens[k].value == "(":
            params_end = _matching(tokens, k)
            module.params = [
                t.value for t in tokens[k + 1:params_end] if t.kind == "ident"
            ]
            brace = params_end + 1
            body_close = _matching(tokens, brace)
            module.body_start = tokens[brace].end
            module.body_end = tokens[body_close].start
            module.factory_end = tokens[body_close].end
    return module


# =========================================================================
# 顶层语句与访问者
# =========================================================================

@dataclass
class Statement:
    """函数体中的一条顶层语句"""

    kind: str  # use_strict / es_module_marker / return / exports_assign / other
    text: str
    export_name: str = ""
    expression: str = ""
    tokens: list[Token] = field(default_factory=list, repr=False)


def split_statements(body: str) -> list[Statement]:
    """把函数体切分为顶层语句，语句间的空白并入下一条语句"""
    tokens = tokenize(body)
    statements: list[Statement] = []
    depth = 0
    first = 0
    cursor = 0
    i = 0
    while i < len(tokens):
        tok = tokens[i]
        if tok.kind == "punct" and tok.value in "([{":
            depth += 1
        elif tok.kind == "punct" and tok.value in ")]}":
            depth -= 1
        end_here = False
        if depth == 0 and tok.kind == "punct" and tok.value == ";":
            end_here = True
        elif depth == 0 and tok.kind == "punct" and tok.value == "}":
            head = tokens[first]
            nxt = tokens[i + 1] if i + 1 < len(tokens) else None
            is_block = head.value in _BLOCK_STATEMENTS or head.value == "{"
            continues = nxt is not None and (
                nxt.value in _BLOCK_CONTINUATIONS or nxt.value in ").,;("
                or nxt.kind == "op"
            )
            end_here = is_block and not continues
        if end_here:
            statements.append(
                _classify(body[cursor:tok.end], tokens[first:i + 1], cursor),
            )
            cursor = tok.end
            first = i + 1
        i += 1
    if first < len(tokens):
        statements.append(_classify(body[cursor:], tokens[first:], cursor))
    tail = body[cursor:] if first >= len(tokens) else ""
    if tail:
        statements.append(Statement(kind="other", text=tail))
    return statements


def _classify(text: str, toks: list[Token], base: int) -> Statement:
    """base 为 text 在函数体中的起始偏移（token 位置相对于函数体）"""
    values = [t.value for t in toks if t.value != ";"]
    expr_toks = toks[:-1] if toks and toks[-1].value == ";" else toks
    if len(values) == 1 and toks[0].kind == "string" and string_value(toks[0]) == "use strict":
        return Statement("use_strict", text, tokens=toks)
    if (
        len(values) >= 7 and values[:4] == ["Object", ".", "defineProperty", "("]
        and values[4] == "exports" and toks[6].kind == "string"
        and string_value(toks[6]) == "__esModule"
    ):
        return Statement("es_module_marker", text, tokens=toks)
    if values and values[0] == "return" and toks[0].kind == "ident":
        expression = ""
        if len(expr_toks) > 1:
            expression = text[expr_toks[1].start - base:expr_toks[-1].end - base]
        return Statement("return", text, expression=expression.strip(), tokens=toks)
    if (
        len(expr_toks) >= 5 and toks[0].value == "exports" and toks[1].value == "."
        and toks[2].kind == "ident" and toks[3].kind == "op" and toks[3].value == "="
    ):
        expression = text[expr_toks[4].start - base:expr_toks[-1].end - base]
        return Statement(
            "exports_assign", text, export_name=toks[2].value,
            expression=expression.strip(), tokens=toks,
        )
    return Statement("other", text, tokens=toks)


class StatementVisitor:
    """顶层语句访问者，visit_<kind> 返回替换文本"""

    def visit(self, statement: Statement) -> str:
        method = getattr(self, f"visit_{statement.kind}", self.generic_visit)
        return method(statement)

    def generic_visit(self, statement: Statement) -> str:
        return statement.text

    def transform(self, body: str) -> str:
        return "".join(self.visit(s) for s in split_statements(body))


def rename_references(text: str, replacements: dict[str, str]) -> str:
    """把标识符引用替换为新表达式

    跳过属性访问 (a.x)、对象键与标签 (x:)、声明 (var x / function x)。
    """
    if not replacements:
        return text
    tokens = tokenize(text)
    parts: list[str] = []
    cursor = 0
    for i, tok in enumerate(tokens):
        if tok.kind != "ident" or tok.value not in replacements:
            continue
        prev = tokens[i - 1] if i > 0 else None
        nxt = tokens[i + 1] if i + 1 < len(tokens) else None
        if prev is not None and prev.value == "." and prev.kind == "punct":
            continue
        if prev is not None and prev.kind == "ident" and prev.value in _DECLARATION_WORDS:
            continue
        if (
            nxt is not None and nxt.value == ":" and
            (prev is None or prev.value in ("{", ",", ";", "}"))
        ):
            continue
        parts.append(text[cursor:tok.start])
        parts.append(replacements[tok.value])
        cursor = tok.end
    parts.append(text[cursor:])
    return "".join(parts)


def bare_name(dependency: str) -> str:
    """去掉插件前缀与 ? 参数: "tmpl!optional!Lib/_a?x" -> "Lib/_a" """
    name = dependency.rsplit("!", 1)[-1]
    return name.split("?", 1)[0]


def plugins_of(dependency: str) -> list[str]:
    """依赖中的插件链，"?" 之后的部分视为真正的插件名"""
    result: list[str] = []
    for part in dependency.split("!")[:-1]:
        plugin = part.split("?", 1)[1] if "?" in part else part
        if plugin and plugin not in result:
            result.append(plugin)
    return result


def extract_routes(text: str) -> dict[str, dict[str, str | None]]:
    """*.routes.js 中以 "/" 开头的顶层路由键

    支持 module.exports = {...} 与 define 工厂中的 return {...}；
    值为字符串时记为 controller。
    """
    tokens = tokenize(text)
    start = -1
    for i, tok in enumerate(tokens):
        if tok.value == "exports" and i >= 2 and tokens[i - 2].value == "module":
            j = i + 1
            if j + 1 < len(tokens) and tokens[j].value == "=" and tokens[j + 1].value == "{":
                start = j + 1
                break
        if tok.kind == "ident" and tok.value == "return" and i + 1 < len(tokens):
            if tokens[i + 1].value == "{":
                start = i + 1
                break
    if start < 0:
        return {}
    end = _matching(tokens, start)
    routes: dict[str, dict[str, str | None]] = {}
    depth = 0
    for j in range(start + 1, end):
        tok = tokens[j]
        if tok.kind == "punct" and tok.value in "([{":
            depth += 1
        elif tok.kind == "punct" and tok.value in ")]}":
            depth -= 1
        if depth != 0 or tok.kind != "string" or tokens[j + 1].value != ":":
            continue
        if tokens[j - 1].value not in ("{", ","):
            continue
        url = string_value(tok)
        if not url.startswith("/"):
            continue
        value = tokens[j + 2] if j + 2 < end else None
        controller = string_value(value) if value is not None and value.kind == "string" else None
        routes[url] = {"controller": controller}
    return routes
