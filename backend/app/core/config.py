"""
Application configuration utilities.

This module defines the ``Settings`` class used throughout the service for
environment variables, the ``ReminderPolicy`` model holding the business
rules stored in ``configs/settings.yaml``, and helpers to read and write
those YAML files.
"""

from __future__ import annotations

import os
import shutil
import string
import tempfile
from functools import lru_cache
from typing import Any, Dict, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_MESSAGE_TEMPLATE = (
    "Olá {name}! 😊\n\n"
    "Notamos que você costuma pedir água a cada *{interval_days} dias*.\n\n"
    "Gostaria de solicitar um novo galão? 💧\n\n"
    "Responda *SIM* para confirmar!"
)
TEMPLATE_FIELDS = ("name", "interval_days")


class Settings(BaseSettings):
    """Configuration loaded from environment variables or a .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # API server configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: str = ""

    # Auth and rate limiting for the HTTP surface
    api_token: str | None = None
    rate_limit_per_min: int = 60

    db_url: str = "sqlite:///./water_delivery.db"
    config_dir: str = "configs"

    # Daily sweep trigger (APScheduler) started with the app
    enable_scheduler: bool = False

    # Messaging gateway
    gateway_mode: Literal["cloud_api", "dry_run"] = "cloud_api"
    whatsapp_api_url: str = "https://graph.facebook.com/v18.0"
    whatsapp_api_token: str | None = None
    whatsapp_phone_number_id: str | None = None
    gateway_timeout_seconds: float = 15.0


class ReminderPolicy(BaseModel):
    """Business rules governing prediction, due detection and dispatch."""

    averaging_policy: Literal["simple", "weighted"] = "simple"
    lead_time_days: int = Field(1, ge=0, le=30)
    sweep_hour: int = Field(9, ge=0, le=23)
    sweep_minute: int = Field(0, ge=0, le=59)
    timezone: str = "America/Sao_Paulo"
    max_concurrent_sends: int = Field(4, ge=1, le=64)
    dispatch_retries: int = Field(0, ge=0, le=5)
    message_template: str = DEFAULT_MESSAGE_TEMPLATE

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown time zone: {value!r}") from exc
        return value

    @field_validator("message_template")
    @classmethod
    def _check_placeholders(cls, value: str) -> str:
        message = "message_template may only use the {name} and {interval_days} placeholders"
        try:
            fields = [field for _, field, _, _ in string.Formatter().parse(value) if field is not None]
            value.format(name="", interval_days=0)
        except (KeyError, IndexError, ValueError) as exc:
            raise ValueError(message) from exc
        # Attribute and index lookups ({name.__class__}, {name[0]}) are rejected too.
        if any(field not in TEMPLATE_FIELDS for field in fields):
            raise ValueError(message)
        return value


@lru_cache(maxsize=None)
def get_settings() -> Settings:
    """Return a cached instance of ``Settings``.

    Using a cache ensures that environment variables are only read once.
    """
    return Settings()


def load_yaml(file_path: str) -> dict:
    """Load a YAML file from the given path and return its contents.

    If the file does not exist, an empty dictionary is returned.
    """
    if not os.path.exists(file_path):
        return {}
    with open(file_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return data if isinstance(data, dict) else {}


def safe_write_yaml(path: str, payload: Dict[str, Any]) -> None:
    """Write ``payload`` to ``path`` through a temporary file in the same directory."""

    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(prefix=".tmp-", suffix=".yaml", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            yaml.safe_dump(payload, handle, sort_keys=False, allow_unicode=True)
        shutil.move(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)


def policy_path(config_root: str) -> str:
    return os.path.join(config_root, "settings.yaml")


def load_reminder_policy(config_root: str = "configs") -> ReminderPolicy:
    """Read ``settings.yaml`` under ``config_root`` into a ``ReminderPolicy``.

    Missing keys fall back to the model defaults; unknown keys are ignored.
    """
    raw = load_yaml(policy_path(config_root))
    known = {key: value for key, value in raw.items() if key in ReminderPolicy.model_fields and value is not None}
    return ReminderPolicy.model_validate(known)
