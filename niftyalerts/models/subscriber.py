"""Subscriber-owned records read by the pipeline.

Both are owned by the account-settings side of the product; the pipeline
only reads alert configs and reads/writes strategy settings.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class AlertConfig:
    """Per-subscriber delivery preferences.

    Empty filter lists mean "allow everything".
    """

    user_id: str
    telegram_enabled: bool = False
    telegram_chat_id: str = ""
    whatsapp_enabled: bool = False
    whatsapp_number: str = ""
    email_enabled: bool = True
    email_address: str = ""
    min_confidence: int = 70
    strategy_filters: list[str] = field(default_factory=list)
    option_type_filters: list[str] = field(default_factory=list)  # "CE" / "PE"


@dataclass(frozen=True)
class StrategySettings:
    """Persisted enable flag and parameter overrides for one strategy."""

    user_id: str
    strategy_name: str
    is_enabled: bool = True
    parameters: dict = field(default_factory=dict)
