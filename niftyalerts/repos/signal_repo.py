"""Trade-signal repository — SQLite CRUD for the trade_signals table."""

import json
import sqlite3
from datetime import datetime
from typing import Optional

from niftyalerts.repos.db import get_connection
from niftyalerts.strategy.models import IndicatorResult, TradeSignal


def _indicators_to_json(indicators: list[IndicatorResult]) -> str:
    return json.dumps(
        [
            {"name": i.name, "value": i.value, "timestamp": i.timestamp.isoformat()}
            for i in indicators
        ]
    )


def _indicators_from_json(raw: str) -> list[IndicatorResult]:
    return [
        IndicatorResult(
            name=item["name"],
            value=item["value"],
            timestamp=datetime.fromisoformat(item["timestamp"]),
        )
        for item in json.loads(raw or "[]")
    ]


def _row_to_signal(row: sqlite3.Row) -> TradeSignal:
    return TradeSignal(
        id=row["id"],
        strategy_name=row["strategy_name"],
        signal_type=row["signal_type"],
        instrument=row["instrument"],
        entry_price=row["entry_price"],
        target_price=row["target_price"],
        stop_loss_price=row["stop_loss_price"],
        confidence=row["confidence"],
        reasoning=row["reasoning"],
        indicators=_indicators_from_json(row["indicators"]),
        timestamp=(
            datetime.fromisoformat(row["timestamp"]) if row["timestamp"] else None
        ),
        expiry_date=row["expiry_date"],
        strike_price=row["strike_price"],
        option_type=row["option_type"],
        underlying_value=row["underlying_value"],
    )


class SignalRepo:
    """Data access layer for synthesized trade signals.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def insert_signal(self, signal: TradeSignal) -> None:
        """Insert a trade signal. Each signal id is written once."""
        conn = get_connection(self._db_path)
        try:
            conn.execute(
                """
                INSERT INTO trade_signals
                    (id, strategy_name, signal_type, instrument, entry_price,
                     target_price, stop_loss_price, confidence, reasoning,
                     indicators, timestamp, expiry_date, strike_price,
                     option_type, underlying_value)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    signal.id, signal.strategy_name, signal.signal_type,
                    signal.instrument, signal.entry_price, signal.target_price,
                    signal.stop_loss_price, signal.confidence, signal.reasoning,
                    _indicators_to_json(signal.indicators),
                    signal.timestamp.isoformat() if signal.timestamp else None,
                    signal.expiry_date, signal.strike_price, signal.option_type,
                    signal.underlying_value,
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def get_signal(self, signal_id: str) -> Optional[TradeSignal]:
        """Return the signal with *signal_id*, or ``None``."""
        conn = get_connection(self._db_path)
        try:
            row = conn.execute(
                "SELECT * FROM trade_signals WHERE id = ?", (signal_id,)
            ).fetchone()
            return _row_to_signal(row) if row else None
        finally:
            conn.close()

    def get_signals(
        self,
        limit: int = 20,
        strategy_name: Optional[str] = None,
    ) -> list[TradeSignal]:
        """Return recent signals, newest first."""
        conn = get_connection(self._db_path)
        try:
            if strategy_name:
                rows = conn.execute(
                    """
                    SELECT * FROM trade_signals WHERE strategy_name = ?
                    ORDER BY timestamp DESC LIMIT ?
                    """,
                    (strategy_name, limit),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM trade_signals ORDER BY timestamp DESC LIMIT ?",
                    (limit,),
                ).fetchall()
            return [_row_to_signal(r) for r in rows]
        finally:
            conn.close()
