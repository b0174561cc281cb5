#!/usr/bin/env python
import os
import sys
from pathlib import Path

import uvicorn
from dotenv import load_dotenv
from loguru import logger


def main() -> None:
    load_dotenv(Path.cwd() / ".env")

    from src.server.config import config

    log_level = config.log_level.upper()
    logger.remove()
    logger.add(sys.stderr, level=log_level)
    logger.info("Self-signed certificate service, start running!")
    logger.info(f"当前应用环境：{os.getenv('APP_ENV')}")

    uvicorn.run(
        "src.server.main:app",
        host=config.host,
        port=config.port,
        reload=os.getenv("APP_ENV") == "development",
        log_level=log_level.lower(),
    )


if __name__ == "__main__":
    main()
