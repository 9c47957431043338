"""
主机标识校验。主机标识会写入 CN、请求名与私钥文件名。
"""

from __future__ import annotations

import re

from .errors import InvalidHostnameError

# RFC 1123 子域名：小写字母数字与 "-"，以 "." 分段
HOST_PATTERN = re.compile(r"[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*")
HOST_MAX_LENGTH = 253


def validate_host(host: str) -> str:
    """
    :raises InvalidHostnameError: 为空、过长，或不是 RFC 1123 子域名（含 "/"、".."、空白等）。
    """
    if host is None or not host.strip():
        raise InvalidHostnameError("主机标识不能为空")
    if len(host) > HOST_MAX_LENGTH:
        raise InvalidHostnameError(f"主机标识长度超过 {HOST_MAX_LENGTH}: {host[:32]}...")
    if not HOST_PATTERN.fullmatch(host):
        raise InvalidHostnameError(f"主机标识 {host!r} 不是合法的 RFC 1123 子域名")
    return host
