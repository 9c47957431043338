#!/usr/bin/env python
import os
from pathlib import Path

import uvicorn
from dotenv import load_dotenv
from loguru import logger

if __name__ == "__main__":
    logger.info("Enrollment CA Service, start running!")
    load_dotenv(Path.cwd() / ".env")
    log_level = os.getenv("LOG_LEVEL", "INFO").lower()

    uvicorn.run(
        "src.server.main:app",
        host=os.getenv("CA_HOST", "0.0.0.0"),
        port=int(os.getenv("CA_PORT", "8000")),
        log_level=log_level,
    )
