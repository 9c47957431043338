"""
节点身份注册：私钥管理、CSR 构造、向 CA 提交并等待签发、写入连接配置。
"""

from .csr import build_csr, enrollment_name
from .enrollment import EnrollmentClient
from .errors import (
    CertificateMismatchError,
    CSREncodingError,
    EnrollmentCancelled,
    EnrollmentDenied,
    EnrollmentTimeout,
    InvalidHostnameError,
    KeyMaterialError,
    PersistError,
    RegistrationError,
    SubmissionError,
)
from .identity import write_identity_config
from .keys import KeyMaterial, load_or_create_key

__all__ = [
    "build_csr",
    "enrollment_name",
    "EnrollmentClient",
    "CertificateMismatchError",
    "CSREncodingError",
    "EnrollmentCancelled",
    "EnrollmentDenied",
    "EnrollmentTimeout",
    "InvalidHostnameError",
    "KeyMaterialError",
    "PersistError",
    "RegistrationError",
    "SubmissionError",
    "write_identity_config",
    "KeyMaterial",
    "load_or_create_key",
]
