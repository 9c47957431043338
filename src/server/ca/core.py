"""
CA 服务的核心逻辑实现。
包括注册请求的存储、开发用 CA 的加载/创建，以及使用该 CA 对 CSR 进行签名。
"""

import os
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    PrivateFormat,
    NoEncryption,
)
from cryptography.x509.oid import NameOID, ExtendedKeyUsageOID
from loguru import logger

from src.server.config import config
from .schemas import EnrollmentCreateRequest, EnrollmentResponse, EnrollmentState

# 注册请求存储（按请求名索引，生产环境建议用数据库）
ENROLLMENT_STORE: Dict[str, EnrollmentResponse] = {}
_UID_INDEX: Dict[str, str] = {}
_STORE_LOCK = threading.Lock()

_USAGE_TO_EKU = {
    "client auth": ExtendedKeyUsageOID.CLIENT_AUTH,
    "server auth": ExtendedKeyUsageOID.SERVER_AUTH,
}
_KEY_USAGES = {"digital signature", "key encipherment"}
SUPPORTED_USAGES = set(_USAGE_TO_EKU) | _KEY_USAGES


def create_or_get_enrollment(req: EnrollmentCreateRequest) -> Tuple[EnrollmentResponse, bool]:
    """
    按请求名创建注册请求；同名请求已存在时原样返回。
    :param req: 注册请求。
    :return: (请求资源, 是否新建)。
    """
    with _STORE_LOCK:
        existing = ENROLLMENT_STORE.get(req.name)
        if existing is not None:
            return existing.model_copy(), False
        enrollment = EnrollmentResponse(
            name=req.name,
            uid=str(uuid.uuid4()),
            state=EnrollmentState.PENDING,
            request=req.request,
            signer_name=req.signer_name,
            usages=list(req.usages),
            expiration_seconds=req.expiration_seconds,
        )
        ENROLLMENT_STORE[req.name] = enrollment
        _UID_INDEX[enrollment.uid] = req.name
        return enrollment.model_copy(), True


def get_enrollment(uid: str) -> EnrollmentResponse | None:
    with _STORE_LOCK:
        name = _UID_INDEX.get(uid)
        if name is None:
            return None
        return ENROLLMENT_STORE[name].model_copy()


def update_enrollment(uid: str, **changes) -> EnrollmentResponse:
    """
    更新注册请求的状态字段。
    :raises KeyError: 请求不存在。
    """
    with _STORE_LOCK:
        name = _UID_INDEX[uid]
        updated = ENROLLMENT_STORE[name].model_copy(update=changes)
        ENROLLMENT_STORE[name] = updated
        return updated.model_copy()


def clear_enrollments() -> None:
    with _STORE_LOCK:
        ENROLLMENT_STORE.clear()
        _UID_INDEX.clear()


def load_csr(csr_pem: str) -> x509.CertificateSigningRequest:
    """
    解析 PEM 格式的 CSR 并校验其自签名。
    :raises ValueError: 如果 CSR 无效。
    """
    try:
        csr = x509.load_pem_x509_csr(csr_pem.encode("utf-8"))
    except Exception as e:
        logger.warning(f"解析 CSR 失败: {e}")
        raise ValueError("无效的 CSR 格式")
    if not csr.is_signature_valid:
        raise ValueError("CSR 签名无效")
    return csr


def _get_dev_ca_dir() -> str:
    """
    获取开发用 CA 的存储目录。
    优先使用环境变量 DEV_CA_DIR，其次使用与当前模块同级的 dev_ca 目录。
    """
    return os.environ.get(
        "DEV_CA_DIR", os.path.join(os.path.dirname(__file__), "dev_ca")
    )


def _get_dev_ca_paths() -> Dict[str, str]:
    """返回 CA 私钥与证书文件的路径。"""
    ca_dir = _get_dev_ca_dir()
    return {
        "dir": ca_dir,
        "key": os.path.join(ca_dir, "ca_key.pem"),
        "cert": os.path.join(ca_dir, "ca_cert.pem"),
    }


def _load_or_create_dev_ca() -> tuple:
    """
    加载或创建开发用自签 CA。
    返回 (ca_private_key, ca_certificate)。
    """
    paths = _get_dev_ca_paths()
    os.makedirs(paths["dir"], exist_ok=True)

    key_path = paths["key"]
    cert_path = paths["cert"]

    if os.path.exists(key_path) and os.path.exists(cert_path):
        with open(key_path, "rb") as f:
            ca_key = serialization.load_pem_private_key(f.read(), password=None)
        with open(cert_path, "rb") as f:
            ca_cert = x509.load_pem_x509_certificate(f.read())
        return ca_key, ca_cert

    # 生成新的 CA 私钥与自签根证书
    ca_key = ec.generate_private_key(ec.SECP256R1())
    subject = x509.Name(
        [
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, config.ca_root_organization_name),
            x509.NameAttribute(NameOID.COMMON_NAME, config.ca_root_common_name),
        ]
    )
    now = datetime.now(timezone.utc)
    ca_cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(ca_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=1))
        .not_valid_after(now + timedelta(days=3650))
        .add_extension(x509.BasicConstraints(ca=True, path_length=0), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                key_encipherment=False,
                key_cert_sign=True,
                crl_sign=True,
                content_commitment=False,
                data_encipherment=False,
                key_agreement=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .sign(private_key=ca_key, algorithm=hashes.SHA256())
    )

    with open(key_path, "wb") as f:
        f.write(
            ca_key.private_bytes(
                encoding=Encoding.PEM,
                format=PrivateFormat.PKCS8,
                encryption_algorithm=NoEncryption(),
            )
        )
    os.chmod(key_path, 0o600)
    with open(cert_path, "wb") as f:
        f.write(ca_cert.public_bytes(Encoding.PEM))

    logger.info(f"已创建开发用 CA: {cert_path}")
    return ca_key, ca_cert


def get_ca_certificate_pem() -> str:
    _, ca_cert = _load_or_create_dev_ca()
    return ca_cert.public_bytes(Encoding.PEM).decode("utf-8")


def sign_csr_with_local_ca(csr_pem: str, expiration_seconds: int, usages: list[str]) -> str:
    """
    使用本地开发 CA 对 CSR 进行签名。
    :param csr_pem: PEM 格式的 CSR。
    :param expiration_seconds: 证书有效期（秒）。
    :param usages: 申请的密钥用途。
    :return: PEM 格式的证书。
    :raises ValueError / RuntimeError
    """
    try:
        ca_key, ca_cert = _load_or_create_dev_ca()
    except Exception as e:
        logger.error(f"加载/创建开发 CA 失败: {e}")
        raise RuntimeError("开发 CA 初始化失败")

    csr = load_csr(csr_pem)
    ekus = [_USAGE_TO_EKU[u] for u in usages if u in _USAGE_TO_EKU]

    now = datetime.now(timezone.utc)
    builder = (
        x509.CertificateBuilder()
        .subject_name(csr.subject)
        .issuer_name(ca_cert.subject)
        .public_key(csr.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=1))
        .not_valid_after(now + timedelta(seconds=expiration_seconds))
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                key_encipherment="key encipherment" in usages,
                key_cert_sign=False,
                crl_sign=False,
                content_commitment=False,
                data_encipherment=False,
                key_agreement=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
    )
    if ekus:
        builder = builder.add_extension(x509.ExtendedKeyUsage(ekus), critical=False)

    cert = builder.sign(private_key=ca_key, algorithm=hashes.SHA256())
    return cert.public_bytes(Encoding.PEM).decode("utf-8")
