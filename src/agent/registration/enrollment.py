"""
与 CA 服务交互的注册客户端：提交注册请求，并轮询等待审批与签发。

审批由外部参与者完成，耗时不可预期；客户端只负责在自身截止时间内
观察状态变化，超时或取消不会改动 CA 侧的请求，之后可用同一个
request_uid 继续等待，或用同一个请求名重新提交。
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Sequence

import httpx
from loguru import logger
from pydantic import ValidationError

from .csr import csr_matches_key
from .errors import EnrollmentCancelled, EnrollmentDenied, EnrollmentTimeout, SubmissionError
from .keys import PrivateKey
from .schemas import EnrollmentRequestCreate, EnrollmentRequestStatus, EnrollmentState, IssuedCertificate

ENROLLMENTS_PATH = "/v1/ca/enrollments"

CLIENT_AUTH_SIGNER = "cluster.io/client-auth"
USAGE_CLIENT_AUTH = "client auth"
# 与 kubeadm 默认值一致：一年
DEFAULT_EXPIRATION_SECONDS = 86400 * 365
# 等待证书签发的默认时长：一小时
DEFAULT_APPROVAL_TIMEOUT = 3600.0


def _error_detail(response: httpx.Response) -> str:
    try:
        return str(response.json().get("detail", response.text))
    except Exception:
        return response.text


class EnrollmentClient:
    """封装注册请求的提交与状态轮询。

    client 需要已经配置好 base_url 与引导凭据；测试中可以直接传入
    FastAPI 的 TestClient。
    """

    def __init__(
        self,
        client: httpx.Client,
        *,
        poll_interval: float = 1.0,
        max_poll_interval: float = 30.0,
        request_timeout: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._client = client
        self._poll_interval = poll_interval
        self._max_poll_interval = max(max_poll_interval, poll_interval)
        self._request_timeout = request_timeout
        self._clock = clock

    def _raise_for_response(self, response: httpx.Response, action: str) -> None:
        code = response.status_code
        if code < 400:
            return
        detail = _error_detail(response)
        if code in (401, 403):
            raise SubmissionError(f"{action}被拒绝（{code}）: {detail}", retryable=False, status_code=code)
        if code == 404:
            raise SubmissionError(f"{action}失败，请求不存在: {detail}", retryable=True, status_code=code)
        raise SubmissionError(f"{action}失败（{code}）: {detail}", retryable=code >= 500, status_code=code)

    def _parse_status(self, response: httpx.Response, action: str) -> EnrollmentRequestStatus:
        try:
            return EnrollmentRequestStatus.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise SubmissionError(f"{action}返回了无法识别的响应: {e}", retryable=True) from e

    def submit(
        self,
        csr_pem: bytes,
        name: str,
        signer_name: str,
        usages: Sequence[str],
        expiration_seconds: int | None,
        key: PrivateKey,
    ) -> tuple[str, str]:
        """
        以 name 为幂等键创建或复用注册请求。
        :return: (request_name, request_uid)
        :raises SubmissionError: 网络/鉴权失败，或同名请求属于其他私钥。
        """
        body = EnrollmentRequestCreate(
            name=name,
            request=csr_pem.decode("utf-8"),
            signer_name=signer_name,
            usages=list(usages),
            expiration_seconds=expiration_seconds,
        )
        try:
            response = self._client.post(
                ENROLLMENTS_PATH, json=body.model_dump(), timeout=self._request_timeout
            )
        except httpx.TransportError as e:
            raise SubmissionError(f"提交注册请求 {name} 时网络异常: {e}", retryable=True) from e
        self._raise_for_response(response, f"提交注册请求 {name} ")
        status = self._parse_status(response, f"提交注册请求 {name} ")

        # 复用已有请求时，必须确认它是用同一把私钥、同一个签名者提交的
        if status.name != name or status.signer_name != signer_name or not csr_matches_key(status.request, key):
            raise SubmissionError(
                f"已存在同名注册请求 {name}，但与当前私钥或签名者不匹配", retryable=False
            )

        if response.status_code == 201:
            logger.info(f"已创建注册请求 {status.name} (uid={status.uid})")
        else:
            logger.info(f"复用已存在的注册请求 {status.name} (uid={status.uid}, state={status.state.value})")
        return status.name, status.uid

    def get_status(self, request_uid: str, timeout: float | None = None) -> EnrollmentRequestStatus:
        """查询一次注册请求状态。"""
        try:
            response = self._client.get(
                f"{ENROLLMENTS_PATH}/{request_uid}",
                timeout=self._request_timeout if timeout is None else timeout,
            )
        except httpx.TransportError as e:
            raise SubmissionError(f"查询注册请求 {request_uid} 时网络异常: {e}", retryable=True) from e
        self._raise_for_response(response, f"查询注册请求 {request_uid} ")
        return self._parse_status(response, f"查询注册请求 {request_uid} ")

    def wait_for_approval(
        self,
        request_uid: str,
        timeout: float = DEFAULT_APPROVAL_TIMEOUT,
        cancel_event: threading.Event | None = None,
    ) -> IssuedCertificate:
        """
        轮询注册请求，直到签发、被拒绝、超时或被取消。
        :param request_uid: submit 返回的请求 ID。
        :param timeout: 本次等待的总时长（秒）。
        :param cancel_event: 置位后立即停止等待。
        :return: 已签发的证书。
        :raises EnrollmentDenied: 请求被拒绝。
        :raises EnrollmentTimeout: 截止时间内未签发。
        :raises EnrollmentCancelled: cancel_event 被置位。
        :raises SubmissionError: 请求不存在或遇到不可重试的错误。
        """
        stop = cancel_event if cancel_event is not None else threading.Event()
        deadline = self._clock() + timeout
        interval = self._poll_interval
        last_state: EnrollmentState | None = None

        logger.info(f"等待客户端证书签发 (uid={request_uid}, timeout={timeout:g}s)")
        while True:
            if stop.is_set():
                raise EnrollmentCancelled(request_uid, timeout)
            remaining = deadline - self._clock()
            if remaining <= 0:
                raise EnrollmentTimeout(request_uid, timeout)

            try:
                status = self.get_status(request_uid, timeout=min(self._request_timeout, remaining))
            except SubmissionError as e:
                if e.status_code == 404 or not e.retryable:
                    raise
                interval = min(interval * 2, self._max_poll_interval)
                logger.warning(f"{e}，{interval:g}s 后重试")
            else:
                interval = self._poll_interval
                if status.state != last_state:
                    logger.info(f"注册请求 {status.name} 状态: {status.state.value}")
                    last_state = status.state
                if status.state == EnrollmentState.DENIED:
                    raise EnrollmentDenied(status.name, status.reason)
                if status.state in (EnrollmentState.APPROVED, EnrollmentState.ISSUED) and status.certificate:
                    return IssuedCertificate(
                        request_name=status.name,
                        request_uid=status.uid,
                        certificate_pem=status.certificate,
                    )

            remaining = deadline - self._clock()
            if remaining <= 0:
                raise EnrollmentTimeout(request_uid, timeout)
            if stop.wait(min(interval, remaining)):
                raise EnrollmentCancelled(request_uid, timeout)
