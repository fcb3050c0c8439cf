"""
Configuration loading and validation.

Loads relay configuration from YAML file with environment variable resolution
for secrets (webhook secret and chat token are never stored in config files).
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field


class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8090
    user_id_header: str = "Mattermost-User-Id"


class StoreConfig(BaseModel):
    backend: Literal["sqlite", "redis", "memory"] = "sqlite"
    db_path: str = "./data/jira_relay.db"
    redis_url: str = "redis://localhost:6379/0"
    key: str = "jirasub"
    compare_and_set: bool = True
    max_attempts: int = Field(default=10, ge=1)


class MatchingConfig(BaseModel):
    # "ignore" keeps subscriptions without an events filter out of dispatch.
    wildcard_events: Literal["match_all", "ignore"] = "match_all"


class ChatConfig(BaseModel):
    url: str = "http://localhost:8065"
    token_env: str = "JIRA_RELAY_CHAT_TOKEN"
    bot_username: str = ""
    verify_tls: bool = True
    request_timeout_seconds: int = 30

    @property
    def token(self) -> str | None:
        return os.environ.get(self.token_env)


class WebhookConfig(BaseModel):
    secret_env: str = "JIRA_RELAY_WEBHOOK_SECRET"

    @property
    def secret(self) -> str | None:
        return os.environ.get(self.secret_env)


class LoggingConfig(BaseModel):
    level: str = "info"
    format: Literal["json", "text"] = "json"


class MetricsConfig(BaseModel):
    enabled: bool = True


class RelayConfig(BaseModel):
    server: ServerConfig = Field(default_factory=ServerConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    chat: ChatConfig = Field(default_factory=ChatConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)


def load_config(path: str | Path) -> RelayConfig:
    """Load and validate relay configuration from a YAML file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    return RelayConfig.model_validate(raw)
