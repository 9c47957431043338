"""
测试 enrollment.py 模块：以参考 CA 服务为对端，外部审批通过服务层函数模拟。
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import httpx
import pytest
from cryptography.hazmat.primitives.asymmetric import ec

from src.agent.registration.csr import build_csr
from src.agent.registration.enrollment import (
    CLIENT_AUTH_SIGNER,
    DEFAULT_EXPIRATION_SECONDS,
    USAGE_CLIENT_AUTH,
    EnrollmentClient,
)
from src.agent.registration.errors import (
    EnrollmentCancelled,
    EnrollmentDenied,
    EnrollmentTimeout,
    SubmissionError,
)
from src.server.ca import core
from src.server.ca import services as ca_services
from src.server.config import config


@pytest.fixture
def key():
    return ec.generate_private_key(ec.SECP256R1())


def _submit(enrollment: EnrollmentClient, key, name: str = "enroll-node-1"):
    return enrollment.submit(
        build_csr("node-1", key),
        name,
        CLIENT_AUTH_SIGNER,
        [USAGE_CLIENT_AUTH],
        DEFAULT_EXPIRATION_SECONDS,
        key,
    )


def _status_body(state: str, certificate: str | None = None) -> dict:
    return {
        "name": "enroll-node-1",
        "uid": "uid-1",
        "state": state,
        "request": "csr",
        "signer_name": CLIENT_AUTH_SIGNER,
        "usages": [USAGE_CLIENT_AUTH],
        "certificate": certificate,
    }


def test_submit_is_idempotent(ca_client, key):
    """测试同一主机与私钥重复提交得到相同的请求名与 ID"""
    enrollment = EnrollmentClient(ca_client)
    first = _submit(enrollment, key)
    second = _submit(EnrollmentClient(ca_client), key)

    assert first == second
    assert first[0] == "enroll-node-1"
    assert len(core.ENROLLMENT_STORE) == 1


def test_concurrent_submits_create_one_request(ca_client, key):
    """测试同一主机并发提交只产生一个注册请求"""
    barrier = threading.Barrier(8)

    def submit(_):
        barrier.wait(timeout=5)
        return _submit(EnrollmentClient(ca_client), key)

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(submit, range(8)))

    assert set(results) == {results[0]}
    assert results[0][0] == "enroll-node-1"
    assert len(core.ENROLLMENT_STORE) == 1


def test_submit_same_name_different_key(ca_client, key):
    """测试同名请求属于其他私钥时拒绝复用"""
    enrollment = EnrollmentClient(ca_client)
    _submit(enrollment, key)

    with pytest.raises(SubmissionError, match="不匹配") as ei:
        _submit(enrollment, ec.generate_private_key(ec.SECP256R1()))
    assert ei.value.retryable is False
    assert len(core.ENROLLMENT_STORE) == 1


def test_submit_unauthorized(ca_client, key, monkeypatch):
    monkeypatch.setattr(config, "bootstrap_token", "s3cret")
    with pytest.raises(SubmissionError) as ei:
        _submit(EnrollmentClient(ca_client), key)
    assert ei.value.status_code == 401
    assert ei.value.retryable is False


def test_submit_transport_error_is_retryable(key):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = httpx.Client(transport=httpx.MockTransport(handler), base_url="http://ca")
    with pytest.raises(SubmissionError) as ei:
        _submit(EnrollmentClient(client), key)
    assert ei.value.retryable is True


def test_submit_server_error_is_retryable(key):
    client = httpx.Client(
        transport=httpx.MockTransport(lambda request: httpx.Response(503, json={"detail": "busy"})),
        base_url="http://ca",
    )
    with pytest.raises(SubmissionError, match="busy") as ei:
        _submit(EnrollmentClient(client), key)
    assert ei.value.retryable is True
    assert ei.value.status_code == 503


def test_wait_returns_issued_certificate(ca_client, key):
    enrollment = EnrollmentClient(ca_client, poll_interval=0.05)
    name, uid = _submit(enrollment, key)
    ca_services.approve_and_issue_enrollment(uid)

    issued = enrollment.wait_for_approval(uid, timeout=5)
    assert issued.request_name == name
    assert issued.request_uid == uid
    assert "BEGIN CERTIFICATE" in issued.certificate_pem


def test_wait_keeps_polling_while_approved_without_certificate(ca_client, key):
    """测试已批准但尚未签发时继续等待"""
    enrollment = EnrollmentClient(ca_client, poll_interval=0.05)
    _, uid = _submit(enrollment, key)
    ca_services.approve_enrollment(uid)

    timer = threading.Timer(0.3, ca_services.issue_enrollment, args=(uid,))
    timer.start()
    try:
        issued = enrollment.wait_for_approval(uid, timeout=5)
    finally:
        timer.cancel()
    assert "BEGIN CERTIFICATE" in issued.certificate_pem


def test_wait_denied_returns_immediately(ca_client, key):
    """测试被拒绝的请求立即失败，而不是等到超时"""
    enrollment = EnrollmentClient(ca_client, poll_interval=0.05)
    name, uid = _submit(enrollment, key)
    ca_services.deny_enrollment(uid, reason="unknown host")

    start = time.monotonic()
    with pytest.raises(EnrollmentDenied) as ei:
        enrollment.wait_for_approval(uid, timeout=30)
    assert time.monotonic() - start < 5
    assert ei.value.request_name == name
    assert ei.value.reason == "unknown host"


def test_wait_timeout_is_bounded_and_resumable(ca_client, key):
    """测试超时在期限附近返回，且之后可以继续等待同一个请求"""
    enrollment = EnrollmentClient(ca_client, poll_interval=0.05)
    _, uid = _submit(enrollment, key)

    start = time.monotonic()
    with pytest.raises(EnrollmentTimeout) as ei:
        enrollment.wait_for_approval(uid, timeout=0.3)
    elapsed = time.monotonic() - start
    assert 0.3 <= elapsed < 1.5
    assert ei.value.request_uid == uid

    # 超时不改变 CA 侧状态
    assert ca_services.get_enrollment_service(uid).state.value == "Pending"

    ca_services.approve_and_issue_enrollment(uid)
    issued = enrollment.wait_for_approval(uid, timeout=5)
    assert issued.request_uid == uid


def test_wait_cancelled(ca_client, key):
    enrollment = EnrollmentClient(ca_client, poll_interval=0.05)
    _, uid = _submit(enrollment, key)
    cancel = threading.Event()
    timer = threading.Timer(0.2, cancel.set)
    timer.start()

    start = time.monotonic()
    with pytest.raises(EnrollmentCancelled) as ei:
        enrollment.wait_for_approval(uid, timeout=30, cancel_event=cancel)
    assert time.monotonic() - start < 5
    # 取消属于可重试的超时类错误
    assert isinstance(ei.value, EnrollmentTimeout)
    assert core.get_enrollment(uid) is not None


def test_wait_retries_transient_errors():
    """测试轮询过程中的网络错误与 5xx 被重试，不直接抛出"""
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            raise httpx.ConnectError("connection reset", request=request)
        if calls["n"] == 2:
            return httpx.Response(502, json={"detail": "bad gateway"})
        if calls["n"] == 3:
            return httpx.Response(200, json=_status_body("Pending"))
        return httpx.Response(200, json=_status_body("Issued", "-----BEGIN CERTIFICATE-----\n"))

    client = httpx.Client(transport=httpx.MockTransport(handler), base_url="http://ca")
    enrollment = EnrollmentClient(client, poll_interval=0.01, max_poll_interval=0.05)
    issued = enrollment.wait_for_approval("uid-1", timeout=5)

    assert calls["n"] == 4
    assert issued.certificate_pem == "-----BEGIN CERTIFICATE-----\n"


def test_wait_transient_errors_do_not_extend_deadline():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = httpx.Client(transport=httpx.MockTransport(handler), base_url="http://ca")
    enrollment = EnrollmentClient(client, poll_interval=0.05, max_poll_interval=10)

    start = time.monotonic()
    with pytest.raises(EnrollmentTimeout):
        enrollment.wait_for_approval("uid-1", timeout=0.5)
    assert time.monotonic() - start < 2


def test_wait_unknown_request(ca_client):
    enrollment = EnrollmentClient(ca_client, poll_interval=0.05)
    with pytest.raises(SubmissionError) as ei:
        enrollment.wait_for_approval("not-exists", timeout=5)
    assert ei.value.status_code == 404
    assert ei.value.retryable is True


def test_wait_unauthorized_is_not_retried():
    client = httpx.Client(
        transport=httpx.MockTransport(lambda request: httpx.Response(403, json={"detail": "forbidden"})),
        base_url="http://ca",
    )
    with pytest.raises(SubmissionError) as ei:
        EnrollmentClient(client, poll_interval=0.01).wait_for_approval("uid-1", timeout=5)
    assert ei.value.status_code == 403
