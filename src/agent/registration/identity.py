"""
组装并原子写入节点最终使用的连接配置。

公开接口：
- build_identity_config: 生成仅包含一个 cluster/user/context 的配置
- write_identity_config: 构造并原子替换目标文件
- load_identity_config: 从文件读取配置
"""

from __future__ import annotations

from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from .errors import PersistError
from .fileutil import atomic_write
from .schemas import (
    AuthInfo,
    Cluster,
    Context,
    IdentityConfig,
    NamedAuthInfo,
    NamedCluster,
    NamedContext,
    encode_data,
)

DEFAULT_CLUSTER_NAME = "default-cluster"
DEFAULT_AUTH_NAME = "default-auth"
DEFAULT_CONTEXT_NAME = "default-context"
DEFAULT_NAMESPACE = "default"


def build_identity_config(
    endpoint: str,
    ca_data: bytes | None,
    cert_pem: bytes | str,
    key_pem: bytes | str,
    insecure_skip_tls_verify: bool = False,
    ca_file: Path | str | None = None,
) -> IdentityConfig:
    """ca_file 非空时写入 CA 文件引用，否则内联 ca_data。"""
    return IdentityConfig(
        clusters=[
            NamedCluster(
                name=DEFAULT_CLUSTER_NAME,
                cluster=Cluster(
                    server=endpoint,
                    certificate_authority=str(ca_file) if ca_file else None,
                    certificate_authority_data=encode_data(ca_data) if ca_data and not ca_file else None,
                    insecure_skip_tls_verify=insecure_skip_tls_verify or None,
                ),
            )
        ],
        users=[
            NamedAuthInfo(
                name=DEFAULT_AUTH_NAME,
                user=AuthInfo(
                    client_certificate_data=encode_data(cert_pem),
                    client_key_data=encode_data(key_pem),
                ),
            )
        ],
        contexts=[
            NamedContext(
                name=DEFAULT_CONTEXT_NAME,
                context=Context(
                    cluster=DEFAULT_CLUSTER_NAME,
                    user=DEFAULT_AUTH_NAME,
                    namespace=DEFAULT_NAMESPACE,
                ),
            )
        ],
        current_context=DEFAULT_CONTEXT_NAME,
    )


def write_identity_config(
    endpoint: str,
    ca_data: bytes | None,
    cert_pem: bytes | str,
    key_pem: bytes | str,
    path: Path | str,
    insecure_skip_tls_verify: bool = False,
    ca_file: Path | str | None = None,
) -> IdentityConfig:
    """
    生成连接配置并原子写入 path（先写临时文件再 rename）。
    写入过程中崩溃时，读者只会看到旧文件或完整的新文件。
    :raises PersistError: 序列化或写入失败。
    """
    path = Path(path)
    identity = build_identity_config(endpoint, ca_data, cert_pem, key_pem, insecure_skip_tls_verify, ca_file)
    try:
        data = identity.model_dump_json(by_alias=True, exclude_none=True, indent=2).encode("utf-8")
        atomic_write(path, data + b"\n", mode=0o600)
    except (OSError, ValueError) as e:
        logger.error(f"写入身份配置 {path} 失败: {e}")
        raise PersistError(f"写入身份配置 {path} 失败: {e}") from e
    logger.info(f"身份配置已写入: {path}")
    return identity


def load_identity_config(path: Path | str) -> IdentityConfig:
    """
    读取连接配置文件（JSON，也是合法的 YAML）。
    :raises OSError: 文件无法读取。
    :raises ValueError: 内容不是合法的连接配置。
    """
    text = Path(path).read_text(encoding="utf-8")
    try:
        return IdentityConfig.model_validate_json(text)
    except ValidationError as e:
        raise ValueError(f"无效的连接配置 {path}: {e}") from e
