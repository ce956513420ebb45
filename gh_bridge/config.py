"""
Configuration loading and validation.

Loads bridge configuration from YAML file with environment variable resolution
for secrets (webhook secret and bot token are never stored in config files).
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator


class GitHubConfig(BaseModel):
    base_url: str = "https://github.com/"
    api_url: str = "https://api.github.com"
    webhook_secret_env: str = "GITHUB_WEBHOOK_SECRET"
    organization: str = ""
    enable_private_repos: bool = False
    enable_webhook_event_logging: bool = False
    request_timeout_seconds: int = 30

    @field_validator("base_url")
    @classmethod
    def _trailing_slash(cls, value: str) -> str:
        return value if value.endswith("/") else value + "/"

    @field_validator("organization")
    @classmethod
    def _lower_org(cls, value: str) -> str:
        return value.strip().lower()

    @property
    def webhook_secret(self) -> str:
        return os.environ.get(self.webhook_secret_env, "")

    @property
    def organization_locked(self) -> bool:
        return bool(self.organization)


class ChatConfig(BaseModel):
    url: str = "http://localhost:8065"
    bot_user_id: str = "github-bot"
    bot_token_env: str = "CHAT_BOT_TOKEN"
    verify_tls: bool = True
    request_timeout_seconds: int = 30

    @property
    def bot_token(self) -> str | None:
        return os.environ.get(self.bot_token_env)


class StoreConfig(BaseModel):
    backend: Literal["sqlite", "redis"] = "sqlite"
    db_path: str = "./data/bridge_kv.db"
    redis_url: str = "redis://localhost:6379/0"


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 9000


class LoggingConfig(BaseModel):
    level: str = "info"
    format: Literal["json", "text"] = "json"


class MetricsConfig(BaseModel):
    enabled: bool = True


class BridgeConfig(BaseModel):
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    chat: ChatConfig = Field(default_factory=ChatConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)


def load_config(path: str | Path) -> BridgeConfig:
    """Load and validate bridge configuration from a YAML file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    return BridgeConfig.model_validate(raw)
