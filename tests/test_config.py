"""Tests for niftyalerts.config — environment variable loading and validation."""

import pytest

from niftyalerts.config import Config, load_config

_ALL_VARS = [
    "UPSTOX_API_KEY",
    "UPSTOX_API_SECRET",
    "FEED_AUTH_URL",
    "FEED_WS_URL",
    "INDEX_SYMBOL",
    "OPTION_EXPIRY_CODE",
    "STRIKE_STEP",
    "SUBSCRIPTION_BAND",
    "OPTION_CHAIN_BAND",
    "RECONNECT_INTERVAL_SECONDS",
    "MAX_RECONNECT_ATTEMPTS",
    "HEARTBEAT_INTERVAL_SECONDS",
    "HEARTBEAT_TIMEOUT_SECONDS",
    "SIGNAL_THRESHOLD",
    "SIGNAL_COOLDOWN_SECONDS",
    "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_API_URL",
    "TWILIO_ACCOUNT_SID",
    "TWILIO_AUTH_TOKEN",
    "TWILIO_FROM_NUMBER",
    "TWILIO_WHATSAPP",
    "SMTP_HOST",
    "SMTP_PORT",
    "SMTP_USERNAME",
    "SMTP_PASSWORD",
    "SMTP_FROM",
    "SMTP_USE_TLS",
    "DB_PATH",
    "LOG_LEVEL",
    "HTTP_PORT",
    "STRATEGY_USER_ID",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Ensure pipeline env vars are cleared between tests."""
    for var in _ALL_VARS:
        monkeypatch.delenv(var, raising=False)


def _set_required(monkeypatch):
    monkeypatch.setenv("UPSTOX_API_KEY", "key-123")
    monkeypatch.setenv("UPSTOX_API_SECRET", "secret-456")


def _load(tmp_path) -> Config:
    # Non-existent env file so a developer's .env never leaks into tests
    return load_config(env_path=str(tmp_path / "nonexistent.env"))


class TestLoadConfig:
    def test_loads_required_vars(self, monkeypatch, tmp_path):
        _set_required(monkeypatch)
        cfg = _load(tmp_path)
        assert cfg.upstox_api_key == "key-123"
        assert cfg.upstox_api_secret == "secret-456"

    def test_defaults(self, monkeypatch, tmp_path):
        _set_required(monkeypatch)
        cfg = _load(tmp_path)
        assert cfg.index_symbol == "NSE:NIFTY50"
        assert cfg.reconnect_interval_seconds == 5.0
        assert cfg.max_reconnect_attempts == 10
        assert cfg.heartbeat_interval_seconds == 15.0
        assert cfg.heartbeat_timeout_seconds == 30.0
        assert cfg.signal_threshold == 70
        assert cfg.signal_cooldown_seconds == 900.0
        assert cfg.option_chain_band == 500
        assert cfg.db_path == "data/niftyalerts.db"
        assert cfg.log_level == "INFO"
        assert cfg.http_port == 4000
        assert cfg.strategy_user_id == "system"
        assert cfg.twilio_whatsapp is True
        assert cfg.smtp_use_tls is True

    def test_missing_vars_are_all_named(self, monkeypatch, tmp_path):
        with pytest.raises(ValueError, match="UPSTOX_API_KEY, UPSTOX_API_SECRET"):
            _load(tmp_path)

    def test_missing_secret_only(self, monkeypatch, tmp_path):
        monkeypatch.setenv("UPSTOX_API_KEY", "key-123")
        with pytest.raises(ValueError, match="UPSTOX_API_SECRET"):
            _load(tmp_path)

    def test_overrides(self, monkeypatch, tmp_path):
        _set_required(monkeypatch)
        monkeypatch.setenv("SIGNAL_THRESHOLD", "80")
        monkeypatch.setenv("SIGNAL_COOLDOWN_SECONDS", "60")
        monkeypatch.setenv("TWILIO_WHATSAPP", "false")
        monkeypatch.setenv("OPTION_EXPIRY_CODE", "25JUN")
        cfg = _load(tmp_path)
        assert cfg.signal_threshold == 80
        assert cfg.signal_cooldown_seconds == 60.0
        assert cfg.twilio_whatsapp is False
        assert cfg.option_expiry_code == "25JUN"


class TestChannelFlags:
    def test_all_channels_disabled_by_default(self, monkeypatch, tmp_path):
        _set_required(monkeypatch)
        cfg = _load(tmp_path)
        assert cfg.telegram_enabled is False
        assert cfg.messaging_enabled is False
        assert cfg.email_enabled is False

    def test_channels_enabled_with_credentials(self, monkeypatch, tmp_path):
        _set_required(monkeypatch)
        monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "bot-token")
        monkeypatch.setenv("TWILIO_ACCOUNT_SID", "AC123")
        monkeypatch.setenv("TWILIO_AUTH_TOKEN", "tw-token")
        monkeypatch.setenv("TWILIO_FROM_NUMBER", "+14155238886")
        monkeypatch.setenv("SMTP_HOST", "smtp.example.com")
        monkeypatch.setenv("SMTP_FROM", "alerts@example.com")
        cfg = _load(tmp_path)
        assert cfg.telegram_enabled is True
        assert cfg.messaging_enabled is True
        assert cfg.email_enabled is True

    def test_messaging_needs_sender_number(self, monkeypatch, tmp_path):
        _set_required(monkeypatch)
        monkeypatch.setenv("TWILIO_ACCOUNT_SID", "AC123")
        monkeypatch.setenv("TWILIO_AUTH_TOKEN", "tw-token")
        cfg = _load(tmp_path)
        assert cfg.messaging_enabled is False
