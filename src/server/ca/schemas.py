"""
注册请求资源的数据模型定义。
"""

from enum import Enum

from pydantic import BaseModel, Field


class EnrollmentState(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    DENIED = "Denied"
    ISSUED = "Issued"


class EnrollmentCreateRequest(BaseModel):
    """
    节点提交注册请求时的数据模型。
    """
    name: str = Field(min_length=1)
    request: str  # PEM 格式的 CSR
    signer_name: str = Field(min_length=1)
    usages: list[str] = Field(default_factory=list)
    expiration_seconds: int | None = None


class EnrollmentResponse(BaseModel):
    """
    服务端返回的注册请求资源。
    """
    name: str
    uid: str
    state: EnrollmentState
    request: str
    signer_name: str
    usages: list[str] = Field(default_factory=list)
    expiration_seconds: int | None = None
    certificate: str | None = None  # PEM 格式，签发后才有
    reason: str | None = None
