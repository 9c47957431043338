"""
节点私钥的加载与生成。

私钥以 PEM 格式保存在本地文件中，进程重启后复用；
仅在文件缺失或无法解析时重新生成。
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from loguru import logger

from .errors import KeyMaterialError
from .fileutil import atomic_write
from .host import validate_host

PrivateKey = Union[ec.EllipticCurvePrivateKey, rsa.RSAPrivateKey]

DEFAULT_RSA_KEY_SIZE = 2048
KEY_FILE_NAME_FORMAT = "enroll-client-{host}.key"


@dataclass(frozen=True)
class KeyMaterial:
    key: PrivateKey
    pem: bytes
    path: Path


def key_path_for_host(key_dir: Path | str, host: str) -> Path:
    """每个主机标识使用独立的私钥文件，避免共享文件系统上多个节点互相覆盖。

    :raises InvalidHostnameError: 主机标识非法，防止路径逃逸出 key_dir。
    """
    return Path(key_dir) / KEY_FILE_NAME_FORMAT.format(host=validate_host(host))


def generate_private_key(
    key_type: Literal["ec", "rsa"] = "ec", rsa_key_size: int = DEFAULT_RSA_KEY_SIZE
) -> PrivateKey:
    if key_type == "ec":
        return ec.generate_private_key(ec.SECP256R1())
    if key_type == "rsa":
        return rsa.generate_private_key(public_exponent=65537, key_size=rsa_key_size)
    raise KeyMaterialError(f"不支持的私钥类型: {key_type}")


def _serialize(key: PrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _parse(pem: bytes) -> PrivateKey | None:
    try:
        key = serialization.load_pem_private_key(pem, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        logger.warning(f"私钥文件无法解析，将重新生成: {e}")
        return None
    if not isinstance(key, (ec.EllipticCurvePrivateKey, rsa.RSAPrivateKey)):
        logger.warning(f"私钥类型 {type(key).__name__} 不受支持，将重新生成")
        return None
    return key


def load_or_create_key(
    path: Path | str,
    key_type: Literal["ec", "rsa"] = "ec",
    rsa_key_size: int = DEFAULT_RSA_KEY_SIZE,
) -> KeyMaterial:
    """
    加载已有私钥，或生成新私钥并以 0600 权限落盘。
    :param path: 私钥文件路径。
    :param key_type: 新生成私钥的类型（ec 为 P-256）。
    :param rsa_key_size: key_type 为 rsa 时的位数。
    :return: KeyMaterial，pem 与磁盘内容逐字节一致。
    :raises KeyMaterialError: 读取、生成或写入失败。
    """
    path = Path(path)
    if path.exists():
        try:
            pem = path.read_bytes()
        except OSError as e:
            raise KeyMaterialError(f"读取私钥文件 {path} 失败: {e}") from e
        key = _parse(pem)
        if key is not None:
            logger.debug(f"复用已有私钥: {path}")
            return KeyMaterial(key=key, pem=pem, path=path)

    try:
        key = generate_private_key(key_type, rsa_key_size)
        pem = _serialize(key)
    except KeyMaterialError:
        raise
    except Exception as e:
        raise KeyMaterialError(f"生成私钥失败: {e}") from e

    try:
        atomic_write(path, pem, mode=0o600)
    except OSError as e:
        logger.error(f"写入私钥文件 {path} 失败: {e}")
        raise KeyMaterialError(f"写入私钥文件 {path} 失败: {e}") from e

    logger.info(f"已生成新的 {key_type} 私钥: {path}")
    return KeyMaterial(key=key, pem=pem, path=path)
