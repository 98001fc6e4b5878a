"""网络工具 - URL 校验与热更新通知"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from urllib.parse import urlparse

from assetbuild.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

_ALLOWED_SCHEMES = frozenset(("http", "https"))


def validate_url_scheme(url: str, *, context: str = "") -> None:
    """校验 URL 仅使用 http/https

    Raises:
        ValidationError: URL scheme 不在白名单内
    """
    parsed = urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        label = f" ({context})" if context else ""
        raise ValidationError(
            f"不允许的 URL 协议 '{parsed.scheme}'{label}，仅支持 http/https: {url}"
        )


def post_json(url: str, payload: dict, *, timeout: int = 5) -> bool:
    """POST JSON 数据，网络失败只记录警告并返回 False"""
    validate_url_scheme(url, context="hot reload")
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    req = urllib.request.Request(
        url, data=body, method="POST",
        headers={"Content-Type": "application/json"},
    )
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:  # nosec B310
            resp.read()
        return True
    except urllib.error.HTTPError as e:
        logger.warning("热更新通知失败: HTTP %s %s", e.code, e.reason)
    except (urllib.error.URLError, OSError) as e:
        logger.warning("热更新服务不可达: %s", e)
    return False
