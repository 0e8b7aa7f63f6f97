"""Defaults and settings overrides for eml2doc."""

import json
import logging
import os
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, field_validator

from .correlation import RetryPolicy

logger = logging.getLogger(__name__)

# ── Settings file ──
ENV_SETTINGS_PATH = "EML2DOC_SETTINGS"
DEFAULT_SETTINGS_FILE = "eml2doc_settings.json"

# ── Outlook ──
OUTLOOK_PROGID = "Outlook.Application"

# OlSaveAsType values accepted by MailItem.SaveAs
SAVE_FORMATS = {
    "txt": 0,
    "rtf": 1,
    "msg": 3,
    "doc": 4,
    "html": 5,
    "msg_unicode": 9,
    "mhtml": 10,
}
DEFAULT_SAVE_FORMAT = "doc"

# ── Polling ──
MAX_ATTEMPTS = 100
RETRY_DELAY_SECONDS = 0.0
BACKOFF_FACTOR = 1.0
MAX_DELAY_SECONDS = 5.0

# ── Files ──
TEMP_SUFFIX = ".eml"
ACTIVITY_LOG = "eml2doc_activity.log"


class ConversionSettings(BaseModel):
    max_attempts: int = Field(MAX_ATTEMPTS, ge=1)
    retry_delay_seconds: float = Field(RETRY_DELAY_SECONDS, ge=0)
    backoff_factor: float = Field(BACKOFF_FACTOR, ge=1)
    max_delay_seconds: float = Field(MAX_DELAY_SECONDS, ge=0)
    save_format: str = DEFAULT_SAVE_FORMAT
    outlook_progid: str = Field(OUTLOOK_PROGID, min_length=1)
    temp_dir: str | None = None
    log_file: str | None = ACTIVITY_LOG

    @field_validator("save_format")
    @classmethod
    def _known_save_format(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in SAVE_FORMATS:
            raise ValueError(f"unknown save format {value!r}")
        return value

    @property
    def save_format_code(self) -> int:
        return SAVE_FORMATS[self.save_format]

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            delay_seconds=self.retry_delay_seconds,
            backoff_factor=self.backoff_factor,
            max_delay_seconds=self.max_delay_seconds,
        )


def resolve_settings_path(path=None) -> Path:
    if path:
        return Path(path)
    env_path = os.environ.get(ENV_SETTINGS_PATH, "").strip()
    if env_path:
        return Path(env_path)
    return Path.cwd() / DEFAULT_SETTINGS_FILE


def _accept_overrides(base: dict, overrides: dict, source: str) -> dict:
    """Validate each override on its own; bad keys are dropped, not fatal."""
    accepted = dict(base)
    for key, value in overrides.items():
        if key not in ConversionSettings.model_fields:
            logger.warning("OVERRIDE_REJECT key=%s reason=not_allowed source=%s", key, source)
            continue
        try:
            ConversionSettings.model_validate({**accepted, key: value})
        except ValidationError:
            logger.warning("OVERRIDE_REJECT key=%s reason=invalid_value source=%s", key, source)
            continue
        logger.info("OVERRIDE_ACCEPT key=%s value=%s source=%s", key, value, source)
        accepted[key] = value
    return accepted


def load_settings(path=None) -> ConversionSettings:
    """Load settings from JSON, falling back to defaults on any problem."""
    settings_path = resolve_settings_path(path)
    if not settings_path.exists():
        logger.debug("SETTINGS_MISSING path=%s", settings_path)
        return ConversionSettings()

    try:
        with open(settings_path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("SETTINGS_CORRUPT path=%s error=%s", settings_path, e)
        return ConversionSettings()

    if not isinstance(raw, dict):
        logger.warning("OVERRIDE_REJECT reason=not_object path=%s", settings_path)
        return ConversionSettings()

    accepted = _accept_overrides({}, raw, str(settings_path))
    return ConversionSettings.model_validate(accepted)


def apply_cli_overrides(settings: ConversionSettings, **values) -> ConversionSettings:
    overrides = {key: value for key, value in values.items() if value is not None}
    if not overrides:
        return settings
    accepted = _accept_overrides(settings.model_dump(), overrides, "cli")
    return ConversionSettings.model_validate(accepted)
