"""
FastAPI 应用入口点：开发与测试用的注册 CA 服务。
"""

from fastapi import FastAPI
from loguru import logger

from src.server.ca.router import router as ca_router
from src.server.config import config

app = FastAPI(title="Node Enrollment Certificate Authority Service")

# 包含注册请求资源的路由
app.include_router(ca_router, prefix="/v1")

logger.info(f"config: {config.model_dump_json(indent=4, exclude={'bootstrap_token'})}")
