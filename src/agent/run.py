#!/usr/bin/env python
"""
节点代理入口：完成身份引导后退出，按失败类型返回不同的退出码。
"""

import os
import signal
import sys
import threading
from pathlib import Path

from dotenv import load_dotenv
from loguru import logger
from pydantic import ValidationError

from src.agent.config import AgentSettings
from src.agent.registration.errors import (
    BootstrapConfigError,
    CertificateMismatchError,
    CSREncodingError,
    EnrollmentDenied,
    EnrollmentTimeout,
    InvalidHostnameError,
    KeyMaterialError,
    PersistError,
    SubmissionError,
)
from src.agent.registration.services import bootstrap_identity

EXIT_OK = 0
EXIT_INVALID_HOST = 2
EXIT_LOCAL_FAILURE = 3
EXIT_DENIED = 4
EXIT_TIMEOUT = 5
EXIT_SUBMISSION = 6


def main() -> int:
    load_dotenv(Path.cwd() / ".env")
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    logger.remove()
    logger.add(sys.stderr, level=log_level)

    try:
        settings = AgentSettings()
    except ValidationError as e:
        logger.error(f"代理配置无效: {e}")
        return EXIT_LOCAL_FAILURE
    logger.info(f"节点代理启动，主机标识: {settings.host_name}")

    cancel_event = threading.Event()

    def _on_signal(signum, _frame):
        logger.warning(f"收到信号 {signum}，停止等待证书签发")
        cancel_event.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    try:
        bootstrap_identity(settings, cancel_event=cancel_event)
    except InvalidHostnameError as e:
        logger.error(f"主机标识无效: {e}")
        return EXIT_INVALID_HOST
    except (KeyMaterialError, CSREncodingError, PersistError, BootstrapConfigError, CertificateMismatchError) as e:
        logger.error(f"本地资源错误: {e}")
        return EXIT_LOCAL_FAILURE
    except EnrollmentDenied as e:
        logger.error(f"注册被拒绝: {e}")
        return EXIT_DENIED
    except EnrollmentTimeout as e:
        logger.error(f"{e}；重新运行将复用已保存的私钥与请求名")
        return EXIT_TIMEOUT
    except SubmissionError as e:
        logger.error(f"提交注册请求失败: {e}")
        return EXIT_SUBMISSION

    logger.info(f"节点身份已就绪: {settings.identity_config_path}")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
