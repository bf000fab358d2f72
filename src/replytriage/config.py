"""Configuration management for replytriage."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator

DEFAULT_GEMINI_ENDPOINT = (
    "https://generativelanguage.googleapis.com/v1beta/models/"
    "gemini-1.5-flash:generateContent"
)


class ImapConfig(BaseModel):
    """Gmail IMAP configuration."""

    host: str = "imap.gmail.com"
    port: int = 993
    username: str
    password: str = Field(default="", repr=False)
    password_env: str | None = None
    timeout: int = 30
    folder: str = Field(
        default="[Gmail]/All Mail",
        description="Folder searched with X-GM-RAW; All Mail covers every label",
    )

    def get_password(self) -> str:
        """Return the password, falling back to the configured environment variable."""
        if self.password:
            return self.password
        if self.password_env:
            value = os.environ.get(self.password_env)
            if value:
                return value
        raise ValueError(
            f"No IMAP password configured for {self.username} "
            f"(set imap.password or imap.password_env)"
        )


class GeminiConfig(BaseModel):
    """Generation service configuration."""

    endpoint: str = DEFAULT_GEMINI_ENDPOINT
    api_key: str = Field(default="", repr=False)
    api_key_env: str | None = "GEMINI_API_KEY"
    timeout: float = 30.0
    max_body_chars: int = Field(default=8000, ge=1)

    def get_api_key(self) -> str:
        """Return the API key, falling back to the configured environment variable."""
        if self.api_key:
            return self.api_key
        if self.api_key_env:
            value = os.environ.get(self.api_key_env)
            if value:
                return value
        raise ValueError("No generation service API key configured (set gemini.api_key or gemini.api_key_env)")

    @property
    def has_api_key(self) -> bool:
        try:
            self.get_api_key()
        except ValueError:
            return False
        return True


class LabelsConfig(BaseModel):
    """Label names used by the pipeline."""

    inclusion: str = Field(default="Triage", min_length=1)
    processed: str = Field(default="Processed", min_length=1)
    to_respond: str = Field(default="ToRespond", min_length=1)

    @field_validator("inclusion", "processed", "to_respond")
    @classmethod
    def no_double_quotes(cls, value: str) -> str:
        """Gmail search has no escape for quotes inside a label term."""
        if '"' in value:
            raise ValueError(f"label name must not contain double quotes: {value!r}")
        return value


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    log_file: str | None = None
    audit_file: str | None = "audit.jsonl"


class Config(BaseModel):
    """Main configuration."""

    imap: ImapConfig
    gemini: GeminiConfig = Field(default_factory=lambda: GeminiConfig())
    labels: LabelsConfig = Field(default_factory=lambda: LabelsConfig())
    logging: LoggingConfig = Field(default_factory=lambda: LoggingConfig())
    batch_size: int = Field(default=5, ge=1, le=100)
    dry_run: bool = False


def load_config(config_path: str | Path) -> Config:
    """Load configuration from YAML file."""
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    return Config(**data)
