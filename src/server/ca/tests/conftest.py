import pytest

from src.server.ca import core


@pytest.fixture(autouse=True)
def isolated_ca(tmp_path, monkeypatch):
    """每个测试使用独立的开发 CA 目录与空的注册请求存储。"""
    monkeypatch.setenv("DEV_CA_DIR", str(tmp_path / "dev_ca"))
    core.clear_enrollments()
    yield
    core.clear_enrollments()
