from __future__ import annotations

import logging
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()


class Settings(BaseModel):
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./combattracker.sqlite3")

    # топик = prefix + encounter_id
    broadcast_topic_prefix: str = os.getenv(
        "BROADCAST_TOPIC_PREFIX", "combat-tracker:encounter:"
    )
    save_debounce_seconds: float = float(os.getenv("SAVE_DEBOUNCE_SECONDS", "0.25"))

    death_showcase_seconds: float = float(os.getenv("DEATH_SHOWCASE_SECONDS", "4.2"))
    showcase_dir: str = os.getenv("SHOWCASE_DIR", "./.showcase")

    log_level: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
