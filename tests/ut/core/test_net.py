"""网络工具测试"""

from __future__ import annotations

import json
import urllib.error
from unittest.mock import MagicMock, patch

import pytest

from assetbuild.core.exceptions import ValidationError
from assetbuild.utils.net import post_json, validate_url_scheme


class TestValidateUrlScheme:
    def test_http_ok(self) -> None:
        validate_url_scheme("http://localhost:8080/changes")

    def test_https_ok(self) -> None:
        validate_url_scheme("https://example.com/api")

    def test_file_rejected(self) -> None:
        with pytest.raises(ValidationError, match="不允许的 URL 协议"):
            validate_url_scheme("file:///etc/passwd")

    def test_context_in_error(self) -> None:
        with pytest.raises(ValidationError, match="hot reload"):
            validate_url_scheme("ftp://x", context="hot reload")


class TestPostJson:
    def test_success(self) -> None:
        resp = MagicMock()
        resp.__enter__.return_value = resp
        with patch("assetbuild.utils.net.urllib.request.urlopen", return_value=resp) as urlopen:
            assert post_json("http://localhost:1/changes", {"changed": ["a.js"]})
        req = urlopen.call_args[0][0]
        assert json.loads(req.data) == {"changed": ["a.js"]}
        assert req.get_method() == "POST"

    def test_unreachable(self) -> None:
        err = urllib.error.URLError("refused")
        with patch("assetbuild.utils.net.urllib.request.urlopen", side_effect=err):
            assert post_json("http://localhost:1/changes", {}) is False

    def test_bad_scheme(self) -> None:
        with pytest.raises(ValidationError):
            post_json("file:///x", {})
