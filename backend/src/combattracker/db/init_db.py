from __future__ import annotations

from . import models  # noqa: F401  регистрирует таблицы в Base.metadata
from .base import Base
from .session import engine


def init_db() -> None:
    Base.metadata.create_all(bind=engine)
