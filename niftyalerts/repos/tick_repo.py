"""Tick repository — SQLite CRUD for the index_ticks and option_ticks tables."""

import sqlite3
from datetime import datetime
from typing import Optional

from niftyalerts.feed.models import IndexTick, OptionTick
from niftyalerts.repos.db import get_connection


def _row_to_index_tick(row: sqlite3.Row) -> IndexTick:
    return IndexTick(
        symbol=row["symbol"],
        price=row["price"],
        change=row["change"],
        change_percent=row["change_percent"],
        high=row["high"],
        low=row["low"],
        open=row["open"],
        close=row["close"],
        volume=row["volume"],
        timestamp=datetime.fromisoformat(row["timestamp"]),
    )


def _row_to_option_tick(row: sqlite3.Row) -> OptionTick:
    return OptionTick(
        symbol=row["symbol"],
        strike_price=row["strike_price"],
        expiry_date=row["expiry_date"],
        option_type=row["option_type"],
        last_price=row["last_price"],
        change=row["change"],
        change_percent=row["change_percent"],
        volume=row["volume"],
        open_interest=row["open_interest"],
        open_interest_change=row["open_interest_change"],
        implied_volatility=row["implied_volatility"],
        bid_price=row["bid_price"],
        ask_price=row["ask_price"],
        underlying_value=row["underlying_value"],
        timestamp=datetime.fromisoformat(row["timestamp"]),
    )


class TickRepo:
    """Data access layer for persisted ticks.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    # ── Write ────────────────────────────────────────────────────────────

    def insert_index_tick(self, tick: IndexTick) -> int:
        """Insert an index tick and return its row ``id``."""
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                INSERT INTO index_ticks
                    (symbol, price, change, change_percent, high, low,
                     open, close, volume, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    tick.symbol, tick.price, tick.change, tick.change_percent,
                    tick.high, tick.low, tick.open, tick.close, tick.volume,
                    tick.timestamp.isoformat(),
                ),
            )
            conn.commit()
            return cur.lastrowid
        finally:
            conn.close()

    def insert_option_tick(self, tick: OptionTick) -> int:
        """Insert an option tick and return its row ``id``."""
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                INSERT INTO option_ticks
                    (symbol, strike_price, expiry_date, option_type,
                     last_price, change, change_percent, volume,
                     open_interest, open_interest_change, implied_volatility,
                     bid_price, ask_price, underlying_value, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    tick.symbol, tick.strike_price, tick.expiry_date,
                    tick.option_type, tick.last_price, tick.change,
                    tick.change_percent, tick.volume, tick.open_interest,
                    tick.open_interest_change, tick.implied_volatility,
                    tick.bid_price, tick.ask_price, tick.underlying_value,
                    tick.timestamp.isoformat(),
                ),
            )
            conn.commit()
            return cur.lastrowid
        finally:
            conn.close()

    # ── Read ─────────────────────────────────────────────────────────────

    def get_latest_index_tick(self) -> Optional[IndexTick]:
        """Return the most recent index tick, or ``None``."""
        conn = get_connection(self._db_path)
        try:
            row = conn.execute(
                "SELECT * FROM index_ticks ORDER BY timestamp DESC, id DESC LIMIT 1"
            ).fetchone()
            return _row_to_index_tick(row) if row else None
        finally:
            conn.close()

    def get_option_chain(
        self,
        expiry_date: str,
        lower_strike: float,
        upper_strike: float,
        limit: int = 100,
    ) -> list[OptionTick]:
        """Return the newest option ticks for *expiry_date* within the strike range."""
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                """
                SELECT * FROM option_ticks
                WHERE expiry_date = ? AND strike_price BETWEEN ? AND ?
                ORDER BY timestamp DESC, id DESC
                LIMIT ?
                """,
                (expiry_date, lower_strike, upper_strike, limit),
            ).fetchall()
            return [_row_to_option_tick(r) for r in rows]
        finally:
            conn.close()

    def get_recent_index_ticks(self, limit: int = 100) -> list[IndexTick]:
        """Return up to *limit* recent index ticks, oldest-first."""
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM index_ticks ORDER BY timestamp DESC, id DESC LIMIT ?",
                (limit,),
            ).fetchall()
            return [_row_to_index_tick(r) for r in reversed(rows)]
        finally:
            conn.close()

    def get_recent_option_ticks(self, limit: int = 500) -> list[OptionTick]:
        """Return up to *limit* recent option ticks, oldest-first."""
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM option_ticks ORDER BY timestamp DESC, id DESC LIMIT ?",
                (limit,),
            ).fetchall()
            return [_row_to_option_tick(r) for r in reversed(rows)]
        finally:
            conn.close()
