"""Subscriber repositories — alert_configs and strategy_settings tables."""

import json
import sqlite3
from typing import Optional

from niftyalerts.models.subscriber import AlertConfig, StrategySettings
from niftyalerts.repos.db import get_connection


def _row_to_alert_config(row: sqlite3.Row) -> AlertConfig:
    return AlertConfig(
        user_id=row["user_id"],
        telegram_enabled=bool(row["telegram_enabled"]),
        telegram_chat_id=row["telegram_chat_id"],
        whatsapp_enabled=bool(row["whatsapp_enabled"]),
        whatsapp_number=row["whatsapp_number"],
        email_enabled=bool(row["email_enabled"]),
        email_address=row["email_address"],
        min_confidence=row["min_confidence"],
        strategy_filters=json.loads(row["strategy_filters"] or "[]"),
        option_type_filters=json.loads(row["option_type_filters"] or "[]"),
    )


class AlertConfigRepo:
    """Data access layer for subscriber alert configurations."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def get_all(self) -> list[AlertConfig]:
        """Return every subscriber's alert configuration."""
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM alert_configs ORDER BY user_id"
            ).fetchall()
            return [_row_to_alert_config(r) for r in rows]
        finally:
            conn.close()

    def upsert(self, config: AlertConfig) -> None:
        """Insert or replace the alert configuration for ``config.user_id``."""
        conn = get_connection(self._db_path)
        try:
            conn.execute(
                """
                INSERT INTO alert_configs
                    (user_id, telegram_enabled, telegram_chat_id,
                     whatsapp_enabled, whatsapp_number, email_enabled,
                     email_address, min_confidence, strategy_filters,
                     option_type_filters, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, datetime('now'))
                ON CONFLICT (user_id) DO UPDATE SET
                    telegram_enabled = excluded.telegram_enabled,
                    telegram_chat_id = excluded.telegram_chat_id,
                    whatsapp_enabled = excluded.whatsapp_enabled,
                    whatsapp_number = excluded.whatsapp_number,
                    email_enabled = excluded.email_enabled,
                    email_address = excluded.email_address,
                    min_confidence = excluded.min_confidence,
                    strategy_filters = excluded.strategy_filters,
                    option_type_filters = excluded.option_type_filters,
                    updated_at = excluded.updated_at
                """,
                (
                    config.user_id, int(config.telegram_enabled),
                    config.telegram_chat_id, int(config.whatsapp_enabled),
                    config.whatsapp_number, int(config.email_enabled),
                    config.email_address, config.min_confidence,
                    json.dumps(config.strategy_filters),
                    json.dumps(config.option_type_filters),
                ),
            )
            conn.commit()
        finally:
            conn.close()


class StrategySettingsRepo:
    """Data access layer for per-user strategy settings."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def get(self, user_id: str, strategy_name: str) -> Optional[StrategySettings]:
        """Return the stored settings, or ``None`` when nothing was saved."""
        conn = get_connection(self._db_path)
        try:
            row = conn.execute(
                """
                SELECT * FROM strategy_settings
                WHERE user_id = ? AND strategy_name = ?
                """,
                (user_id, strategy_name),
            ).fetchone()
            if row is None:
                return None
            return StrategySettings(
                user_id=row["user_id"],
                strategy_name=row["strategy_name"],
                is_enabled=bool(row["is_enabled"]),
                parameters=json.loads(row["parameters"] or "{}"),
            )
        finally:
            conn.close()

    def upsert(self, settings: StrategySettings) -> None:
        """Insert or replace the settings row for (user, strategy)."""
        conn = get_connection(self._db_path)
        try:
            conn.execute(
                """
                INSERT INTO strategy_settings
                    (user_id, strategy_name, is_enabled, parameters, updated_at)
                VALUES (?, ?, ?, ?, datetime('now'))
                ON CONFLICT (user_id, strategy_name) DO UPDATE SET
                    is_enabled = excluded.is_enabled,
                    parameters = excluded.parameters,
                    updated_at = excluded.updated_at
                """,
                (
                    settings.user_id, settings.strategy_name,
                    int(settings.is_enabled), json.dumps(settings.parameters),
                ),
            )
            conn.commit()
        finally:
            conn.close()
