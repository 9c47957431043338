from __future__ import annotations

import secrets

from fastapi import HTTPException, Request, status

from src.server.config import config


def verify_bootstrap_token(input_token: str | None) -> bool:
    expected = config.bootstrap_token
    if not expected:
        return True
    # constant-time compare
    return secrets.compare_digest(expected, input_token or "")


def require_bootstrap_token(request: Request) -> None:
    """校验 Authorization: Bearer <token>；未配置 CA_BOOTSTRAP_TOKEN 时放行。"""
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer":
        token = ""
    if not verify_bootstrap_token(token):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
