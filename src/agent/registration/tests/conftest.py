import pytest
from fastapi.testclient import TestClient

from src.server.ca import core
from src.server.main import app


@pytest.fixture(autouse=True)
def isolated_ca(tmp_path, monkeypatch):
    """每个测试使用独立的开发 CA 目录与空的注册请求存储。"""
    monkeypatch.setenv("DEV_CA_DIR", str(tmp_path / "dev_ca"))
    core.clear_enrollments()
    yield
    core.clear_enrollments()


@pytest.fixture
def ca_client():
    """指向参考 CA 服务的 HTTP 客户端（TestClient 本身就是 httpx.Client）。"""
    with TestClient(app) as client:
        yield client
