import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


@dataclass(frozen=True)
class Settings:
    """Runtime settings, read from the environment."""
    db_user: Optional[str] = None
    db_password: Optional[str] = None
    db_name: Optional[str] = None
    db_host: Optional[str] = None
    db_port: str = "5432"
    room_ttl_seconds: int = 2 * 60 * 60
    conflict_retries: int = 3
    ai_move_delay: float = 0.5
    room_purge_interval: float = 300.0
    ai_game_idle_seconds: int = 60 * 60
    log_level: str = "INFO"
    port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            db_user=os.getenv("POSTGRES_USER"),
            db_password=os.getenv("POSTGRES_PASSWORD"),
            db_name=os.getenv("POSTGRES_DB"),
            db_host=os.getenv("POSTGRES_URL"),
            db_port=os.getenv("POSTGRES_PORT", "5432"),
            room_ttl_seconds=int(os.getenv("ROOM_TTL_SECONDS", 2 * 60 * 60)),
            conflict_retries=int(os.getenv("CONFLICT_RETRIES", 3)),
            ai_move_delay=float(os.getenv("AI_MOVE_DELAY", 0.5)),
            room_purge_interval=float(os.getenv("ROOM_PURGE_INTERVAL", 300)),
            ai_game_idle_seconds=int(os.getenv("AI_GAME_IDLE_SECONDS", 60 * 60)),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            port=int(os.getenv("PORT", 8000)),
        )

    @property
    def use_postgres(self) -> bool:
        return bool(self.db_host)

    @property
    def dsn(self) -> str:
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"


@lru_cache()
def get_settings() -> Settings:
    return Settings.from_env()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
