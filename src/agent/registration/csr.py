"""
证书签名请求（CSR）的构造与公钥比对。
"""

from __future__ import annotations

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.x509.oid import NameOID
from loguru import logger

from .errors import CSREncodingError
from .host import validate_host
from .keys import PrivateKey

CSR_ORGANIZATION = "identity:hosts"
CSR_COMMON_NAME_FORMAT = "identity:host:{host}"
ENROLLMENT_NAME_FORMAT = "enroll-{host}"


def enrollment_name(host: str) -> str:
    return ENROLLMENT_NAME_FORMAT.format(host=validate_host(host))


def build_csr(host: str, key: PrivateKey) -> bytes:
    """
    使用给定私钥为主机构造 PEM 格式的 CSR。
    :param host: 主机标识，写入 CN。
    :param key: 用于签名的私钥。
    :return: PEM 编码的 CSR。
    :raises InvalidHostnameError: 主机标识非法。
    :raises CSREncodingError: 签名或编码失败。
    """
    validate_host(host)
    subject = x509.Name(
        [
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, CSR_ORGANIZATION),
            x509.NameAttribute(NameOID.COMMON_NAME, CSR_COMMON_NAME_FORMAT.format(host=host)),
        ]
    )
    try:
        csr = x509.CertificateSigningRequestBuilder().subject_name(subject).sign(key, hashes.SHA256())
        return csr.public_bytes(serialization.Encoding.PEM)
    except Exception as e:
        logger.error(f"为 {host} 生成 CSR 失败: {e}")
        raise CSREncodingError(f"为 {host} 生成 CSR 失败: {e}") from e


def _public_key_der(public_key) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def csr_matches_key(csr_pem: bytes | str, key: PrivateKey) -> bool:
    """判断 CSR 中的公钥是否属于给定私钥。无法解析时返回 False。"""
    if isinstance(csr_pem, str):
        csr_pem = csr_pem.encode("utf-8")
    try:
        csr = x509.load_pem_x509_csr(csr_pem)
    except ValueError:
        return False
    return _public_key_der(csr.public_key()) == _public_key_der(key.public_key())


def certificate_matches_key(cert_pem: bytes | str, key: PrivateKey) -> bool:
    """判断证书中的公钥是否属于给定私钥。无法解析时返回 False。"""
    if isinstance(cert_pem, str):
        cert_pem = cert_pem.encode("utf-8")
    try:
        cert = x509.load_pem_x509_certificate(cert_pem)
    except ValueError:
        return False
    return _public_key_der(cert.public_key()) == _public_key_der(key.public_key())
