"""
文件功能：
    定义节点注册流程中使用的数据模型（Pydantic）。

公开接口：
    - EnrollmentState: 注册请求在 CA 侧的状态
    - EnrollmentRequestCreate: 提交给 CA 的注册请求体
    - EnrollmentRequestStatus: CA 返回的注册请求资源
    - IssuedCertificate: 已签发的客户端证书
    - IdentityConfig: 最终写入磁盘的连接配置（kubeconfig 结构）
    - BootstrapProfile: 引导阶段访问 CA 所用的连接信息

内部方法：
    无
"""

from __future__ import annotations

import base64
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class EnrollmentState(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    DENIED = "Denied"
    ISSUED = "Issued"


class EnrollmentRequestCreate(BaseModel):
    """提交给 CA 的注册请求。"""

    name: str = Field(description="由主机标识确定性生成的请求名")
    request: str = Field(description="PEM 格式的 CSR")
    signer_name: str = Field(description="负责签发的集群签名者")
    usages: list[str] = Field(default_factory=list, description="申请的密钥用途")
    expiration_seconds: int | None = Field(default=None, description="申请的证书有效期（秒）")


class EnrollmentRequestStatus(BaseModel):
    """CA 侧注册请求资源的当前视图。"""

    name: str
    uid: str
    state: EnrollmentState
    request: str = Field(description="PEM 格式的 CSR")
    signer_name: str
    usages: list[str] = Field(default_factory=list)
    expiration_seconds: int | None = None
    certificate: str | None = Field(default=None, description="签发后的 PEM 证书")
    reason: str | None = Field(default=None, description="批准或拒绝的原因")


class IssuedCertificate(BaseModel):
    request_name: str
    request_uid: str
    certificate_pem: str


class Cluster(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    server: str
    certificate_authority: str | None = Field(default=None, alias="certificate-authority", description="CA 证书文件路径")
    certificate_authority_data: str | None = Field(default=None, alias="certificate-authority-data")
    insecure_skip_tls_verify: bool | None = Field(default=None, alias="insecure-skip-tls-verify")


class AuthInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    client_certificate: str | None = Field(default=None, alias="client-certificate", description="客户端证书文件路径")
    client_certificate_data: str | None = Field(default=None, alias="client-certificate-data")
    client_key: str | None = Field(default=None, alias="client-key", description="客户端私钥文件路径")
    client_key_data: str | None = Field(default=None, alias="client-key-data")
    token: str | None = None


class Context(BaseModel):
    cluster: str
    user: str
    namespace: str | None = None


class NamedCluster(BaseModel):
    name: str
    cluster: Cluster


class NamedAuthInfo(BaseModel):
    name: str
    user: AuthInfo


class NamedContext(BaseModel):
    name: str
    context: Context


class IdentityConfig(BaseModel):
    """kubeconfig 结构的连接配置。

    *-data 字段保存 Base64 编码的 PEM，与 kubeconfig 约定一致。
    """

    model_config = ConfigDict(populate_by_name=True)

    api_version: str = Field(default="v1", alias="apiVersion")
    kind: str = "Config"
    clusters: list[NamedCluster] = Field(default_factory=list)
    users: list[NamedAuthInfo] = Field(default_factory=list)
    contexts: list[NamedContext] = Field(default_factory=list)
    current_context: str = Field(default="", alias="current-context")

    def resolve(self) -> tuple[Cluster, AuthInfo]:
        """返回 current-context 指向的 cluster 与 user。

        :raises ValueError: current-context 或其引用的条目不存在。
        """
        context = next((c.context for c in self.contexts if c.name == self.current_context), None)
        if context is None:
            raise ValueError(f"current-context {self.current_context!r} 不存在")
        cluster = next((c.cluster for c in self.clusters if c.name == context.cluster), None)
        if cluster is None:
            raise ValueError(f"cluster {context.cluster!r} 不存在")
        user = next((u.user for u in self.users if u.name == context.user), None)
        if user is None:
            raise ValueError(f"user {context.user!r} 不存在")
        return cluster, user


class BootstrapProfile(BaseModel):
    """从引导配置中解析出的低信任连接信息，只用于访问 CA 服务。"""

    server: str
    ca_file: Path | None = Field(default=None, description="CA 证书文件的绝对路径，写入最终配置时保持文件引用")
    ca_data: bytes | None = None
    insecure_skip_tls_verify: bool = False
    token: str | None = None
    client_cert_pem: bytes | None = None
    client_key_pem: bytes | None = None


def encode_data(pem: bytes | str) -> str:
    if isinstance(pem, str):
        pem = pem.encode("utf-8")
    return base64.b64encode(pem).decode("utf-8")


def decode_data(data: str) -> bytes:
    return base64.b64decode(data)
