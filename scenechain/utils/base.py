import logging
from typing import Any, Optional

from pydantic import BaseModel

from scenechain.utils.logging_setup import configure_logging


class ServiceResponse(BaseModel):
    success: bool
    message: Optional[str] = None
    content: Optional[Any] = None

    class Config:
        extra = "allow"


def setup_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)
