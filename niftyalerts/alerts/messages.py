"""Human-readable alert text for trade signals."""

import html

from niftyalerts.strategy.models import BUY, TradeSignal


def risk_reward(signal: TradeSignal) -> str:
    """Reward per unit of risk, one decimal (``"1.7"``); ``"n/a"`` without risk."""
    risk = signal.entry_price - signal.stop_loss_price
    if risk == 0:
        return "n/a"
    return f"{abs((signal.target_price - signal.entry_price) / risk):.1f}"


def format_alert_message(signal: TradeSignal) -> str:
    direction = "🟢 BUY" if signal.signal_type == BUY else "🔴 SELL"
    when = signal.timestamp.strftime("%d %b %Y %H:%M:%S") if signal.timestamp else "-"

    lines = [
        "🔔 TRADE ALERT! 🔔",
        "",
        f"{direction} {signal.instrument}",
        "",
        f"Entry: ₹{signal.entry_price:.2f}",
        f"Target: ₹{signal.target_price:.2f}",
        f"Stop Loss: ₹{signal.stop_loss_price:.2f}",
        f"Risk:Reward: 1:{risk_reward(signal)}",
        "",
        f"Confidence: {signal.confidence}%",
        f"Strategy: {signal.strategy_name}",
        f"Time: {when}",
        "",
        "Reasoning:",
        signal.reasoning,
    ]
    return "\n".join(lines) + "\n"


def email_subject(signal: TradeSignal) -> str:
    return f"{signal.signal_type} Alert: {signal.instrument}"


def email_html(message: str) -> str:
    body = html.escape(message).replace("\n", "<br>")
    return (
        '<div style="font-family: Arial, sans-serif; padding: 20px; line-height: 1.5;">'
        f"{body}</div>"
    )
