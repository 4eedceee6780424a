from __future__ import annotations

import json
import logging
import re
import sys
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError, ConfigTemplateCreated

logger = logging.getLogger("claw_bridge.config")

PLACEHOLDER_API_KEY = "YOUR_API_KEY_HERE"
DEFAULT_DASHBOARD_URL = "https://claw-settings.replit.app"

# Backoff/reporting presets and runtime tags of the two bridge variants.
# Fields set explicitly (init kwargs or CLAW_BRIDGE_* env) are never
# overridden by a preset.
PROFILE_PRESETS: dict[str, dict[str, Any]] = {
    "native": {
        "runtime_tag": "vps-baileys",
        "reconnect_base_seconds": 3.0,
        "reconnect_cap_seconds": 60.0,
        "status_interval_seconds": 20.0,
    },
    "home": {
        "runtime_tag": "home-bot",
        "reconnect_base_seconds": 5.0,
        "reconnect_cap_seconds": 300.0,
        "status_interval_seconds": 30.0,
    },
}


class BridgeConfig(BaseModel):
    """Operator-edited connection config, immutable once loaded."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True, extra="ignore")

    dashboard_url: str
    api_key: str
    bot_name: str = "OpenClaw AI"
    auto_restart: bool = True
    dashboard_url_prod: str = ""
    phone_number: str = ""
    use_pairing_code: bool = False
    socks_proxy: str = ""

    @field_validator("dashboard_url", "dashboard_url_prod", mode="after")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @field_validator("phone_number", mode="after")
    @classmethod
    def _digits_only(cls, value: str) -> str:
        return re.sub(r"[^0-9]", "", value)

    def dashboard_urls(self) -> list[str]:
        """Primary dashboard URL first, then the secondary one if distinct."""
        urls = [self.dashboard_url]
        if self.dashboard_url_prod and self.dashboard_url_prod != self.dashboard_url:
            urls.append(self.dashboard_url_prod)
        return urls

    def masked_api_key(self) -> str:
        return f"{self.api_key[:8]}..." if len(self.api_key) > 8 else "***"


def default_template() -> dict[str, Any]:
    return {
        "dashboardUrl": DEFAULT_DASHBOARD_URL,
        "apiKey": PLACEHOLDER_API_KEY,
        "botName": "OpenClaw AI",
        "autoRestart": True,
        "phoneNumber": "",
        "usePairingCode": False,
    }


def write_template(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(default_template(), indent=2) + "\n", encoding="utf-8")
    return path


def load_config(path: Path) -> BridgeConfig:
    """Load the JSON config file.

    Raises:
        ConfigTemplateCreated: the file did not exist and a template was written.
        ConfigError: the file is unreadable, malformed, or still holds the
            placeholder API key.
    """
    path = Path(path)
    if not path.exists():
        write_template(path)
        raise ConfigTemplateCreated(path)

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Could not read {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a JSON object")

    if not raw.get("dashboardUrl") or not raw.get("apiKey") or raw.get("apiKey") == PLACEHOLDER_API_KEY:
        raise ConfigError(f"Set dashboardUrl and apiKey in {path}")

    try:
        return BridgeConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"Invalid config in {path}: {exc}") from exc


def load_or_exit(path: Path) -> BridgeConfig:
    """Load the config or terminate the process with a diagnostic."""
    try:
        config = load_config(path)
    except ConfigTemplateCreated as exc:
        print(str(exc), file=sys.stderr)
        raise SystemExit(0) from exc
    except ConfigError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc
    logger.info("Dashboard: %s", config.dashboard_url)
    logger.info("Pairing mode: %s", "pairing code" if config.use_pairing_code else "QR code")
    return config


class BridgeSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="claw_bridge_",
        extra="ignore",
        env_file=".env",
    )

    config_path: Path = Path("config.json")
    auth_dir: Path = Path("auth_state")
    adapter: str = ""
    runtime_tag: str = "vps-baileys"
    log_level: str = "INFO"

    profile: Literal["native", "home"] = "native"
    reconnect_base_seconds: float = 3.0
    reconnect_growth: float = 1.5
    reconnect_cap_seconds: float = 60.0
    restart_required_delay_seconds: float = 1.0

    start_timeout_seconds: float = 45.0
    max_pairing_cycles: int = 5
    qr_image_width: int = 300

    keepalive_interval_seconds: float = 25.0
    keepalive_dead_factor: float = 3.0

    status_interval_seconds: float = 20.0
    status_timeout_seconds: float = 8.0
    status_endpoint: str = "/api/whatsapp/home-bot-status"

    message_endpoint: str = "/api/whatsapp/home-bot-message"
    backend_timeout_seconds: float = 120.0
    fallback_reply: str = "Sorry, I'm having trouble connecting to the AI service. Please try again."
    empty_reply: str = "I couldn't generate a response."

    ledger_capacity: int = 500
    ledger_trim_to: int = 250

    @model_validator(mode="after")
    def _apply_profile(self) -> BridgeSettings:
        for name, value in PROFILE_PRESETS[self.profile].items():
            if name not in self.model_fields_set:
                setattr(self, name, value)
        return self

    @model_validator(mode="after")
    def _check_ledger_bounds(self) -> BridgeSettings:
        if not 0 < self.ledger_trim_to <= self.ledger_capacity:
            raise ValueError("ledger_trim_to must be between 1 and ledger_capacity")
        return self

    def lock_path(self) -> Path:
        return Path(self.auth_dir).with_suffix(".lock")
