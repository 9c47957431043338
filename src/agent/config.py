"""
节点代理的配置加载模块：支持 .env、环境变量（ENROLL_ 前缀）、工作目录 config.json（或 CONFIG_FILE 指定）多来源合并。
公开接口：
- AgentSettings: 读取配置的设置类
内部方法：
- AgentSettings.settings_customise_sources: 自定义配置来源顺序
"""

from __future__ import annotations

import json
import os
import socket
from pathlib import Path
from typing import Any, Dict, Literal, Tuple

from loguru import logger
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from src.agent.registration.enrollment import (
    CLIENT_AUTH_SIGNER,
    DEFAULT_APPROVAL_TIMEOUT,
    DEFAULT_EXPIRATION_SECONDS,
)
from src.agent.registration.keys import DEFAULT_RSA_KEY_SIZE, key_path_for_host

_DEFAULT_HOME = Path.home() / ".enroll"


class JsonFileSettingsSource(PydanticBaseSettingsSource):
    """从工作目录的 config.json（或 CONFIG_FILE 指定路径）加载配置的自定义 Source。"""

    def __init__(self, settings_cls):
        super().__init__(settings_cls)
        self._data: Dict[str, Any] | None = None

    def _load(self) -> None:
        if self._data is not None:
            return
        cfg_path = os.environ.get("CONFIG_FILE")
        path = Path(cfg_path) if cfg_path else Path.cwd() / "config.json"
        if not path.exists():
            self._data = {}
            return
        try:
            with path.open("r", encoding="utf-8") as f:
                data = json.load(f)
            self._data = data if isinstance(data, dict) else {}
        except (OSError, ValueError) as e:
            logger.warning(f"读取配置文件 {path} 失败，已忽略: {e}")
            self._data = {}

    def __call__(self) -> Dict[str, Any]:
        self._load()
        return dict(self._data or {})

    def get_field_value(self, field, field_name):  # type: ignore[override]
        """为满足抽象基类要求，按字段名返回字段值。"""
        self._load()
        data = self._data or {}
        if field_name in data:
            return data[field_name], field_name, False
        return None, field_name, False


class AgentSettings(BaseSettings):
    host_name: str = Field(default_factory=socket.gethostname, description="节点的主机标识")
    key_dir: Path = Field(default=_DEFAULT_HOME, description="私钥文件所在目录")
    key_type: Literal["ec", "rsa"] = "ec"
    rsa_key_size: int = DEFAULT_RSA_KEY_SIZE
    identity_config_path: Path = Field(default=_DEFAULT_HOME / "config", description="最终连接配置的路径")
    bootstrap_config_path: Path | None = Field(default=None, description="引导连接配置的路径")

    signer_name: str = CLIENT_AUTH_SIGNER
    expiration_seconds: int = DEFAULT_EXPIRATION_SECONDS
    approval_timeout: float = DEFAULT_APPROVAL_TIMEOUT
    poll_interval: float = 1.0
    max_poll_interval: float = 30.0
    request_timeout: float = 10.0
    max_wait_attempts: int = 1

    model_config = SettingsConfigDict(
        env_prefix="ENROLL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("approval_timeout", "poll_interval", "max_poll_interval", "request_timeout")
    @classmethod
    def positive_seconds(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("时长必须为正数")
        return value

    @field_validator("max_wait_attempts")
    @classmethod
    def at_least_one_attempt(cls, value: int) -> int:
        return max(1, value)

    @property
    def key_path(self) -> Path:
        return key_path_for_host(self.key_dir, self.host_name)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """自定义配置来源顺序：入参 > 环境变量 > .env > config.json > secrets。"""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            JsonFileSettingsSource(settings_cls),
            file_secret_settings,
        )
