"""
节点身份引导的业务流程层。
串联 私钥 → CSR → 提交/等待签发 → 写入连接配置，供入口脚本调用。
"""

from __future__ import annotations

import os
import ssl
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

import httpx
from cryptography import x509
from loguru import logger

from .csr import build_csr, certificate_matches_key, enrollment_name
from .enrollment import USAGE_CLIENT_AUTH, EnrollmentClient
from .errors import (
    BootstrapConfigError,
    CertificateMismatchError,
    EnrollmentCancelled,
    EnrollmentTimeout,
    SubmissionError,
)
from .host import validate_host
from .identity import load_identity_config, write_identity_config
from .keys import KeyMaterial, load_or_create_key
from .schemas import BootstrapProfile, IdentityConfig, decode_data

if TYPE_CHECKING:
    from src.agent.config import AgentSettings


def _read_reference(base_dir: Path, data: str | None, file_ref: str | None) -> tuple[bytes | None, Path | None]:
    """*-data 优先；否则读取文件引用，相对路径按引导配置所在目录解析。"""
    if data:
        return decode_data(data), None
    if not file_ref:
        return None, None
    file_path = Path(file_ref).expanduser()
    if not file_path.is_absolute():
        file_path = base_dir / file_path
    file_path = file_path.resolve()
    return file_path.read_bytes(), file_path


def load_bootstrap_profile(path: Path | str | None) -> BootstrapProfile:
    """
    读取外部提供的引导配置（与 IdentityConfig 同结构），取 current-context 对应的连接信息。
    证书与私钥可以内联（*-data），也可以引用文件。该文件只读不写。
    :raises BootstrapConfigError: 未配置、无法读取、引用的文件不存在或内容不完整。
    """
    if path is None:
        raise BootstrapConfigError("未配置引导连接配置路径 (ENROLL_BOOTSTRAP_CONFIG_PATH)")
    base_dir = Path(path).parent
    try:
        cluster, user = load_identity_config(path).resolve()
        ca_data, ca_file = _read_reference(base_dir, cluster.certificate_authority_data, cluster.certificate_authority)
        client_cert_pem, _ = _read_reference(base_dir, user.client_certificate_data, user.client_certificate)
        client_key_pem, _ = _read_reference(base_dir, user.client_key_data, user.client_key)
    except (OSError, ValueError) as e:
        raise BootstrapConfigError(f"读取引导连接配置 {path} 失败: {e}") from e
    if bool(client_cert_pem) != bool(client_key_pem):
        raise BootstrapConfigError(f"引导连接配置 {path} 中的客户端证书与私钥必须同时提供")
    return BootstrapProfile(
        server=cluster.server,
        ca_file=ca_file,
        ca_data=ca_data,
        insecure_skip_tls_verify=bool(cluster.insecure_skip_tls_verify),
        token=user.token,
        client_cert_pem=client_cert_pem,
        client_key_pem=client_key_pem,
    )


def _ssl_context(profile: BootstrapProfile) -> ssl.SSLContext | bool:
    if profile.insecure_skip_tls_verify:
        return False
    if profile.ca_data:
        ctx = ssl.create_default_context(cadata=profile.ca_data.decode("utf-8"))
    else:
        ctx = ssl.create_default_context()
    if profile.client_cert_pem and profile.client_key_pem:
        # load_cert_chain 只接受文件路径；证书加载进上下文后立即删除临时目录
        with tempfile.TemporaryDirectory() as tmpdir:
            cert_path = os.path.join(tmpdir, "client.crt")
            key_path = os.path.join(tmpdir, "client.key")
            with open(cert_path, "wb") as f:
                f.write(profile.client_cert_pem)
            with open(key_path, "wb") as f:
                f.write(profile.client_key_pem)
            ctx.load_cert_chain(cert_path, key_path)
    return ctx


def build_bootstrap_client(profile: BootstrapProfile, timeout: float = 10.0) -> httpx.Client:
    """用引导凭据构造访问 CA 服务的 HTTP 客户端。"""
    headers = {"Authorization": f"Bearer {profile.token}"} if profile.token else None
    try:
        verify = _ssl_context(profile)
    except (ssl.SSLError, OSError, ValueError) as e:
        raise BootstrapConfigError(f"引导连接的 TLS 配置无效: {e}") from e
    return httpx.Client(base_url=profile.server, headers=headers, verify=verify, timeout=timeout)


def existing_identity_is_valid(path: Path, key_material: KeyMaterial) -> bool:
    """已有连接配置中的客户端证书仍然有效，且属于当前私钥。"""
    if not path.exists():
        return False
    try:
        _, user = load_identity_config(path).resolve()
        if not user.client_certificate_data:
            return False
        cert_pem = decode_data(user.client_certificate_data)
        if not certificate_matches_key(cert_pem, key_material.key):
            return False
        cert = x509.load_pem_x509_certificate(cert_pem)
    except (OSError, ValueError) as e:
        logger.warning(f"已有身份配置 {path} 无法使用，将重新注册: {e}")
        return False
    return cert.not_valid_after_utc > datetime.now(timezone.utc)


def bootstrap_identity(
    settings: "AgentSettings",
    http_client: httpx.Client | None = None,
    cancel_event: threading.Event | None = None,
) -> IdentityConfig:
    """
    执行完整的节点身份引导流程。
    :param settings: 代理配置。
    :param http_client: 已配置好的 CA 客户端；为 None 时根据引导配置创建。
    :param cancel_event: 置位后中止等待签发，已提交的请求保持不变。
    :return: 写入磁盘的 IdentityConfig。
    :raises RegistrationError: 各类失败，见 errors 模块。
    """
    host = validate_host(settings.host_name)
    key_material = load_or_create_key(settings.key_path, settings.key_type, settings.rsa_key_size)

    # 已注册的节点不再需要引导配置
    if existing_identity_is_valid(settings.identity_config_path, key_material):
        logger.info(f"身份配置 {settings.identity_config_path} 已存在且有效，跳过注册")
        return load_identity_config(settings.identity_config_path)

    profile = load_bootstrap_profile(settings.bootstrap_config_path)
    csr_pem = build_csr(host, key_material.key)
    name = enrollment_name(host)
    logger.info(f"为主机 {host} 创建注册请求 {name}")

    own_client = http_client is None
    client = build_bootstrap_client(profile, settings.request_timeout) if own_client else http_client
    try:
        enrollment = EnrollmentClient(
            client,
            poll_interval=settings.poll_interval,
            max_poll_interval=settings.max_poll_interval,
            request_timeout=settings.request_timeout,
        )

        def _submit() -> str:
            _, uid = enrollment.submit(
                csr_pem,
                name,
                settings.signer_name,
                [USAGE_CLIENT_AUTH],
                settings.expiration_seconds,
                key_material.key,
            )
            return uid

        uid = _submit()
        attempt = 0
        while True:
            attempt += 1
            try:
                issued = enrollment.wait_for_approval(uid, settings.approval_timeout, cancel_event)
                break
            except EnrollmentCancelled:
                raise
            except EnrollmentTimeout as e:
                if attempt >= settings.max_wait_attempts:
                    raise
                logger.warning(f"{e}，继续等待（第 {attempt + 1}/{settings.max_wait_attempts} 次）")
            except SubmissionError as e:
                if e.status_code != 404 or attempt >= settings.max_wait_attempts:
                    raise
                logger.warning(f"注册请求 {name} 已不存在，使用同一请求名重新提交")
                uid = _submit()
    finally:
        if own_client:
            client.close()

    if not certificate_matches_key(issued.certificate_pem, key_material.key):
        logger.error(f"注册请求 {issued.request_name} 返回的证书与本地私钥不匹配")
        raise CertificateMismatchError(f"注册请求 {issued.request_name} 返回的证书与本地私钥不匹配")

    return write_identity_config(
        profile.server,
        profile.ca_data,
        issued.certificate_pem,
        key_material.pem,
        settings.identity_config_path,
        insecure_skip_tls_verify=profile.insecure_skip_tls_verify,
        ca_file=profile.ca_file,
    )
