"""ticketflow settings."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./ticketflow.db"
    api_host: str = "0.0.0.0"
    api_port: int = 8010
    rules_dir: str = "./rules"
    default_ticket_status: str = "open"
    default_ticket_priority: str = "medium"
    automation_max_depth: int = 2
    sweep_interval_seconds: float = 300.0
    sweep_batch_size: int = 500
    sweep_skip_statuses: list[str] = Field(default_factory=lambda: ["closed"])
    seed_rules_on_startup: bool = True

    class Config:
        env_file = ".env"
        env_prefix = "TICKETFLOW_"
        extra = "ignore"

    @property
    def rules_dir_path(self) -> Path:
        return Path(self.rules_dir).expanduser().resolve()


settings = Settings()
