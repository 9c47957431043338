"""
CA 服务的配置加载模块：支持 .env 与环境变量（CA_ 前缀）。
公开接口：
- Config: 读取配置的设置类
- config: Config 的单例实例
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Config(BaseSettings):
    ca_root_common_name: str = "Enrollment Development Root CA"
    ca_root_organization_name: str = "identity:ca"
    bootstrap_token: str | None = Field(default=None, description="提交注册请求所需的引导令牌，为空时不校验")
    min_expiration_seconds: int = 600
    max_expiration_seconds: int = 86400 * 365

    model_config = SettingsConfigDict(
        env_prefix="CA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


config = Config()
