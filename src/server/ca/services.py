"""
注册请求的业务逻辑层。
此模块封装了核心逻辑，提供更清晰的接口供路由层和管理员审批使用。
审批（approve / deny / issue）只以函数形式提供，不暴露为 HTTP 接口。
"""

from loguru import logger

from src.server.config import config
from . import core
from .schemas import EnrollmentCreateRequest, EnrollmentResponse, EnrollmentState


def create_enrollment_service(req: EnrollmentCreateRequest) -> tuple[EnrollmentResponse, bool]:
    """
    处理创建注册请求的业务逻辑（按名称幂等）。
    :param req: 注册请求。
    :return: (请求资源, 是否新建)。
    :raises ValueError: CSR 无效、用途不受支持或有效期越界。
    """
    core.load_csr(req.request)

    unsupported = [u for u in req.usages if u not in core.SUPPORTED_USAGES]
    if unsupported:
        raise ValueError(f"不支持的密钥用途: {', '.join(unsupported)}")

    if req.expiration_seconds is not None and not (
        config.min_expiration_seconds <= req.expiration_seconds <= config.max_expiration_seconds
    ):
        raise ValueError(
            f"有效期必须在 {config.min_expiration_seconds} 到 {config.max_expiration_seconds} 秒之间"
        )

    enrollment, created = core.create_or_get_enrollment(req)
    if created:
        logger.info(f"收到新的注册请求 {enrollment.name} (uid={enrollment.uid})")
    return enrollment, created


def get_enrollment_service(uid: str) -> EnrollmentResponse:
    """
    :raises LookupError: 请求不存在。
    """
    enrollment = core.get_enrollment(uid)
    if enrollment is None:
        raise LookupError(f"注册请求 {uid} 不存在")
    return enrollment


def approve_enrollment(uid: str, reason: str = "approved") -> EnrollmentResponse:
    """
    批准一个待处理的注册请求（尚未签发证书）。
    :raises LookupError: 请求不存在。
    :raises ValueError: 请求已被拒绝。
    """
    enrollment = get_enrollment_service(uid)
    if enrollment.state == EnrollmentState.DENIED:
        raise ValueError(f"注册请求 {enrollment.name} 已被拒绝，不能再批准")
    if enrollment.state != EnrollmentState.PENDING:
        return enrollment
    logger.info(f"批准注册请求 {enrollment.name}")
    return core.update_enrollment(uid, state=EnrollmentState.APPROVED, reason=reason)


def issue_enrollment(uid: str, certificate_pem: str | None = None) -> EnrollmentResponse:
    """
    为已批准的注册请求附加证书。未提供 certificate_pem 时用本地开发 CA 签发。
    :raises LookupError: 请求不存在。
    :raises ValueError: 请求尚未批准。
    :raises RuntimeError: 签发失败。
    """
    enrollment = get_enrollment_service(uid)
    if enrollment.state == EnrollmentState.ISSUED:
        return enrollment
    if enrollment.state != EnrollmentState.APPROVED:
        raise ValueError(f"注册请求 {enrollment.name} 尚未批准")
    if certificate_pem is None:
        certificate_pem = core.sign_csr_with_local_ca(
            enrollment.request,
            enrollment.expiration_seconds or config.max_expiration_seconds,
            enrollment.usages,
        )
    logger.info(f"注册请求 {enrollment.name} 已签发证书")
    return core.update_enrollment(uid, state=EnrollmentState.ISSUED, certificate=certificate_pem)


def approve_and_issue_enrollment(uid: str) -> EnrollmentResponse:
    approve_enrollment(uid)
    return issue_enrollment(uid)


def deny_enrollment(uid: str, reason: str = "denied") -> EnrollmentResponse:
    """
    拒绝一个尚未签发的注册请求。
    :raises LookupError: 请求不存在。
    :raises ValueError: 请求已签发。
    """
    enrollment = get_enrollment_service(uid)
    if enrollment.state == EnrollmentState.ISSUED:
        raise ValueError(f"注册请求 {enrollment.name} 已签发，不能再拒绝")
    logger.info(f"拒绝注册请求 {enrollment.name}: {reason}")
    return core.update_enrollment(uid, state=EnrollmentState.DENIED, reason=reason)
