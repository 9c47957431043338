"""
节点身份注册流程中使用的异常类型。

公开接口：
- RegistrationError: 所有注册异常的基类
- InvalidHostnameError: 主机标识为空或非法
- KeyMaterialError: 私钥生成、解析或落盘失败
- CSREncodingError: CSR 构造或签名失败
- SubmissionError: 向 CA 提交请求时的传输/鉴权失败
- EnrollmentDenied: CA 拒绝了注册请求（终态，不自动重试）
- EnrollmentTimeout: 截止时间内未进入终态（可重试）
- EnrollmentCancelled: 等待被调用方主动取消（可重试）
- CertificateMismatchError: 签发的证书与提交的私钥不匹配
- PersistError: 身份配置文件原子写入失败
- BootstrapConfigError: 引导配置无法读取或不完整
"""

from __future__ import annotations


class RegistrationError(RuntimeError):
    """注册流程异常基类。"""


class InvalidHostnameError(RegistrationError, ValueError):
    pass


class KeyMaterialError(RegistrationError):
    pass


class CSREncodingError(RegistrationError):
    pass


class SubmissionError(RegistrationError):
    """提交或查询注册请求失败。

    retryable 为 True 表示可以使用同一个请求名重新提交（网络错误、5xx、请求丢失）。
    """

    def __init__(self, message: str, *, retryable: bool = False, status_code: int | None = None):
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code


class EnrollmentDenied(RegistrationError):
    def __init__(self, request_name: str, reason: str | None = None):
        detail = f"注册请求 {request_name} 被拒绝"
        if reason:
            detail += f": {reason}"
        super().__init__(detail)
        self.request_name = request_name
        self.reason = reason


class EnrollmentTimeout(RegistrationError):
    def __init__(self, request_uid: str, timeout: float, message: str | None = None):
        super().__init__(message or f"等待注册请求 {request_uid} 签发证书超时（{timeout:g}s）")
        self.request_uid = request_uid
        self.timeout = timeout


class EnrollmentCancelled(EnrollmentTimeout):
    def __init__(self, request_uid: str, timeout: float):
        super().__init__(request_uid, timeout, f"等待注册请求 {request_uid} 被取消")


class CertificateMismatchError(RegistrationError):
    pass


class PersistError(RegistrationError):
    pass


class BootstrapConfigError(RegistrationError):
    pass
