import json

import pytest
from pydantic import ValidationError

from claw_bridge.config import (
    PLACEHOLDER_API_KEY,
    BridgeConfig,
    BridgeSettings,
    load_config,
    load_or_exit,
)
from claw_bridge.errors import ConfigError, ConfigTemplateCreated


def _write(path, payload):
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_missing_config_writes_template(tmp_path):
    path = tmp_path / "config.json"

    with pytest.raises(ConfigTemplateCreated):
        load_config(path)

    template = json.loads(path.read_text(encoding="utf-8"))
    assert template["apiKey"] == PLACEHOLDER_API_KEY
    assert template["autoRestart"] is True
    assert template["usePairingCode"] is False


def test_placeholder_api_key_is_rejected(tmp_path):
    path = _write(tmp_path / "config.json", {"dashboardUrl": "https://dash.example.com", "apiKey": PLACEHOLDER_API_KEY})

    with pytest.raises(ConfigError, match="Set dashboardUrl and apiKey"):
        load_config(path)


@pytest.mark.parametrize("content", ["{not json", "[1, 2, 3]"])
def test_malformed_config_is_rejected(tmp_path, content):
    path = tmp_path / "config.json"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(ConfigError):
        load_config(path)


def test_valid_config_is_parsed_from_camel_case(tmp_path):
    path = _write(
        tmp_path / "config.json",
        {
            "dashboardUrl": "https://dash.example.com/",
            "apiKey": "sk-live-abcdef123456",
            "botName": "Claw",
            "autoRestart": False,
            "dashboardUrlProd": "https://prod.example.com",
            "phoneNumber": "+1 (555) 123-4567",
            "usePairingCode": True,
            "unknownField": 1,
        },
    )

    config = load_config(path)

    assert config.dashboard_url == "https://dash.example.com"
    assert config.dashboard_urls() == ["https://dash.example.com", "https://prod.example.com"]
    assert config.bot_name == "Claw"
    assert config.auto_restart is False
    assert config.phone_number == "15551234567"
    assert config.use_pairing_code is True
    assert config.masked_api_key() == "sk-live-..."


def test_config_defaults():
    config = BridgeConfig(dashboard_url="https://dash.example.com", api_key="sk-test-1234567890")

    assert config.bot_name == "OpenClaw AI"
    assert config.auto_restart is True
    assert config.dashboard_urls() == ["https://dash.example.com"]


def test_load_or_exit_codes(tmp_path, capsys):
    path = tmp_path / "config.json"

    with pytest.raises(SystemExit) as created:
        load_or_exit(path)
    assert created.value.code == 0
    assert "Created" in capsys.readouterr().err

    with pytest.raises(SystemExit) as invalid:
        load_or_exit(path)
    assert invalid.value.code == 1
    assert "ERROR" in capsys.readouterr().err


def test_settings_profile_presets_yield_to_explicit_values(monkeypatch):
    monkeypatch.setenv("claw_bridge_profile", "home")
    monkeypatch.setenv("claw_bridge_reconnect_cap_seconds", "120")

    settings = BridgeSettings()

    assert settings.reconnect_base_seconds == 5.0
    assert settings.reconnect_cap_seconds == 120.0
    assert settings.status_interval_seconds == 30.0
    assert settings.runtime_tag == "home-bot"


def test_native_profile_defaults():
    settings = BridgeSettings()

    assert settings.reconnect_base_seconds == 3.0
    assert settings.runtime_tag == "vps-baileys"
    assert settings.reconnect_cap_seconds == 60.0
    assert settings.keepalive_interval_seconds == 25.0
    assert settings.max_pairing_cycles == 5
    assert settings.ledger_capacity == 500
    assert settings.ledger_trim_to == 250


def test_ledger_bounds_are_validated():
    with pytest.raises(ValidationError):
        BridgeSettings(ledger_capacity=10, ledger_trim_to=20)


def test_lock_path_sits_next_to_auth_dir(tmp_path):
    settings = BridgeSettings(auth_dir=tmp_path / "auth_state")

    assert settings.lock_path() == tmp_path / "auth_state.lock"


def test_explicit_runtime_tag_beats_profile_preset():
    settings = BridgeSettings(profile="home", runtime_tag="lab-bot")

    assert settings.runtime_tag == "lab-bot"
    assert settings.reconnect_base_seconds == 5.0
