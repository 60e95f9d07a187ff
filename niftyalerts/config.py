"""NiftyAlerts — application configuration.

Loads .env variables into a typed config object.
Validates required variables on startup.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv


_REQUIRED_VARS = [
    "UPSTOX_API_KEY",
    "UPSTOX_API_SECRET",
]


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    upstox_api_key: str
    upstox_api_secret: str
    feed_auth_url: str
    feed_ws_url: str
    index_symbol: str
    option_expiry_code: str  # e.g. "25JUN"; empty disables option subscriptions
    strike_step: int
    subscription_band: int  # points either side of the underlying
    option_chain_band: int
    reconnect_interval_seconds: float
    max_reconnect_attempts: int
    heartbeat_interval_seconds: float
    heartbeat_timeout_seconds: float
    signal_threshold: int
    signal_cooldown_seconds: float
    telegram_bot_token: str
    telegram_api_url: str
    twilio_account_sid: str
    twilio_auth_token: str
    twilio_from_number: str
    twilio_whatsapp: bool
    smtp_host: str
    smtp_port: int
    smtp_username: str
    smtp_password: str
    smtp_from: str
    smtp_use_tls: bool
    db_path: str
    log_level: str
    http_port: int
    strategy_user_id: str

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token)

    @property
    def messaging_enabled(self) -> bool:
        """Twilio needs the SID, the auth token and a sender number."""
        return bool(
            self.twilio_account_sid
            and self.twilio_auth_token
            and self.twilio_from_number
        )

    @property
    def email_enabled(self) -> bool:
        return bool(self.smtp_host and (self.smtp_from or self.smtp_username))


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the missing variable when a
    required variable is absent.
    """
    load_dotenv(dotenv_path=env_path)

    missing = [v for v in _REQUIRED_VARS if not os.environ.get(v)]
    if missing:
        raise ValueError(
            f"Missing required environment variable(s): {', '.join(missing)}"
        )

    return Config(
        upstox_api_key=os.environ["UPSTOX_API_KEY"],
        upstox_api_secret=os.environ["UPSTOX_API_SECRET"],
        feed_auth_url=os.environ.get(
            "FEED_AUTH_URL", "https://api.upstox.com/v2/login"
        ),
        feed_ws_url=os.environ.get("FEED_WS_URL", "wss://api.upstox.com/v2/feed"),
        index_symbol=os.environ.get("INDEX_SYMBOL", "NSE:NIFTY50"),
        option_expiry_code=os.environ.get("OPTION_EXPIRY_CODE", ""),
        strike_step=int(os.environ.get("STRIKE_STEP", "50")),
        subscription_band=int(os.environ.get("SUBSCRIPTION_BAND", "250")),
        option_chain_band=int(os.environ.get("OPTION_CHAIN_BAND", "500")),
        reconnect_interval_seconds=float(
            os.environ.get("RECONNECT_INTERVAL_SECONDS", "5")
        ),
        max_reconnect_attempts=int(os.environ.get("MAX_RECONNECT_ATTEMPTS", "10")),
        heartbeat_interval_seconds=float(
            os.environ.get("HEARTBEAT_INTERVAL_SECONDS", "15")
        ),
        heartbeat_timeout_seconds=float(
            os.environ.get("HEARTBEAT_TIMEOUT_SECONDS", "30")
        ),
        signal_threshold=int(os.environ.get("SIGNAL_THRESHOLD", "70")),
        signal_cooldown_seconds=float(
            os.environ.get("SIGNAL_COOLDOWN_SECONDS", "900")
        ),
        telegram_bot_token=os.environ.get("TELEGRAM_BOT_TOKEN", ""),
        telegram_api_url=os.environ.get("TELEGRAM_API_URL", "https://api.telegram.org"),
        twilio_account_sid=os.environ.get("TWILIO_ACCOUNT_SID", ""),
        twilio_auth_token=os.environ.get("TWILIO_AUTH_TOKEN", ""),
        twilio_from_number=os.environ.get("TWILIO_FROM_NUMBER", ""),
        twilio_whatsapp=_env_bool("TWILIO_WHATSAPP", "true"),
        smtp_host=os.environ.get("SMTP_HOST", ""),
        smtp_port=int(os.environ.get("SMTP_PORT", "587")),
        smtp_username=os.environ.get("SMTP_USERNAME", ""),
        smtp_password=os.environ.get("SMTP_PASSWORD", ""),
        smtp_from=os.environ.get("SMTP_FROM", ""),
        smtp_use_tls=_env_bool("SMTP_USE_TLS", "true"),
        db_path=os.environ.get("DB_PATH", "data/niftyalerts.db"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        http_port=int(os.environ.get("HTTP_PORT", "4000")),
        strategy_user_id=os.environ.get("STRATEGY_USER_ID", "system"),
    )
