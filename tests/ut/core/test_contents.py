"""contents 清单与拆分测试"""

from __future__ import annotations

from assetbuild.core.contents import (
    build_contents,
    contents_js,
    contents_json_js,
    extract_preload_urls,
    first_segment,
    router_js,
    split_contents,
    split_module_dependencies,
    split_routes,
    static_templates,
)


def _contents() -> dict:
    return build_contents(
        release=True,
        modules={"A": "A", "B": "B"},
        components={"A/page": "A/page.js", "B/list": "B/list.js"},
        html_names={"js!A/page": "page.html"},
        requirejs_paths={"A": "A/"},
        dictionary={"A.some.key": True, "B.other": True},
        locales=["ru-RU"],
        default_locale="ru-RU",
        version="42",
        services={"auth": "/auth/service/"},
    )


class TestBuildContents:
    def test_fields(self) -> None:
        c = _contents()
        assert c["buildMode"] == "release"
        assert c["modules"] == {"A": {"path": "A"}, "B": {"path": "B"}}
        assert c["buildnumber"] == "42"
        assert c["availableLanguage"] == ["ru-RU"]

    def test_no_dictionary(self) -> None:
        c = build_contents(release=False, modules={}, components={}, html_names={})
        assert "dictionary" not in c
        assert c["buildMode"] == "debug"


class TestSplitContents:
    """每个分片只包含自己的键"""

    def test_dictionary_key_only_in_owner(self) -> None:
        c = _contents()
        a = split_contents(c, "A", "A")
        b = split_contents(c, "B", "B")
        assert "A.some.key" in a["dictionary"]
        assert "A.some.key" not in b["dictionary"]
        assert list(b["dictionary"]) == ["B.other"]

    def test_module_prefix_is_not_enough(self) -> None:
        c = build_contents(
            release=False, modules={"A": "A", "AB": "AB"}, components={},
            html_names={}, dictionary={"AB.key": True},
        )
        assert split_contents(c, "A", "A")["dictionary"] == {}

    def test_components_and_pages(self) -> None:
        shard = split_contents(_contents(), "A", "A")
        assert shard["jsModules"] == {"A/page": "A/page.js"}
        assert shard["htmlNames"] == {"js!A/page": "page.html"}
        assert shard["modules"] == {"A": {"path": "A"}}
        assert shard["services"] == {"auth": "/auth/service/"}

    def test_buildnumber_stub(self) -> None:
        shard = split_contents(_contents(), "B", "B")
        assert shard["buildnumber"] == "%{MODULE_VERSION_STUB=B}"
        assert shard["htmlNames"] == {}


class TestSplitMeta:
    def test_module_dependencies(self) -> None:
        graph = {
            "nodes": {
                "A/x": {"path": "A/x.js"},
                "A/gone": {"path": "A/gone.js"},
                "B/y": {"path": "B/y.js"},
            },
            "links": {"A/x": ["B/y"]},
        }
        shard = split_module_dependencies(graph, "A", lambda p: p != "A/gone.js")
        assert shard == {"links": {"A/x": ["B/y"]}, "nodes": {"A/x": {"path": "A/x.js"}}}

    def test_routes(self) -> None:
        routes = {"A/r.routes.js": {"/a": {}}, "B/r.routes.js": {"/b": {}}}
        assert list(split_routes(routes, "B")) == ["B/r.routes.js"]

    def test_first_segment(self) -> None:
        assert first_segment("/A/b/c.js") == "A"


class TestRenderers:
    def test_preload_urls(self) -> None:
        text = "<module><preload>'A/a', \"B/b\", 'A/a'</preload></module>"
        assert extract_preload_urls(text) == ["A/a", "B/b"]

    def test_router_later_file_wins(self) -> None:
        text = router_js({
            "M/b.routes.js": {"/b": {"controller": "C2"}},
            "M/a.routes.js": {"/a": {"controller": "C1"}, "/b": {"controller": "C1b"}},
        })
        assert text.startswith("define('router', [], function() {")
        assert '"/b": "C2"' in text
        assert '"/a": "C1"' in text

    def test_js_wrappers(self) -> None:
        assert contents_js({"b": 1, "a": 2}) == 'contents={"a": 2, "b": 1};'
        assert contents_json_js("A", {}).startswith("define('A/contents.json',[]")

    def test_static_templates(self) -> None:
        assert static_templates(["b.html", "a.html"], "A") == {
            "a.html": "A/a.html", "b.html": "A/b.html",
        }
