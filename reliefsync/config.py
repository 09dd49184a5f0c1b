# file: reliefsync/config.py

import os
import logging
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

API_URL = os.getenv("RELIEF_API_URL", "http://localhost:5000/api")
SOCKET_URL = os.getenv("RELIEF_SOCKET_URL", "http://localhost:5000")
AUTH_HEADER = os.getenv("RELIEF_AUTH_HEADER", "x-auth-token")
API_TOKEN = os.getenv("RELIEF_API_TOKEN")
HTTP_TIMEOUT = float(os.getenv("RELIEF_HTTP_TIMEOUT", "10"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


class Settings(BaseModel):
    api_url: str = API_URL
    socket_url: str = SOCKET_URL
    auth_header: str = AUTH_HEADER
    api_token: Optional[str] = API_TOKEN
    http_timeout: float = Field(default=HTTP_TIMEOUT, gt=0)
    log_level: str = LOG_LEVEL


def get_settings(**overrides) -> Settings:
    """
    Returns settings read from the environment, with explicit keyword
    overrides taking precedence (used by tests and the watcher script).
    """
    return Settings(**overrides)


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
