"""AlertDispatcher — fans a trade signal out to every matching subscriber.

For each subscriber config the signal must pass three gates (minimum
confidence, strategy allow-list, option-type allow-list).  Delivery on
each enabled channel is attempted independently; a failing channel is
logged and never blocks the other channels or subscribers.  Nothing is
retried.
"""

import logging
from typing import Optional

from niftyalerts.alerts.channels import (
    AlertChannel,
    EmailChannel,
    SmtpEmailSender,
    TelegramChannel,
    TwilioMessagingChannel,
)
from niftyalerts.alerts.messages import format_alert_message
from niftyalerts.config import Config
from niftyalerts.events import EventBus, EventType
from niftyalerts.models.subscriber import AlertConfig
from niftyalerts.repos.store import PipelineStore
from niftyalerts.strategy.models import TradeSignal

logger = logging.getLogger("niftyalerts.alerts")


def passes_gates(signal: TradeSignal, config: AlertConfig) -> bool:
    """Apply the three subscriber gates in order, logging the first rejection."""
    if signal.confidence < config.min_confidence:
        logger.debug(
            "Signal %s below min confidence %d for user %s",
            signal.id, config.min_confidence, config.user_id,
        )
        return False
    if config.strategy_filters and signal.strategy_name not in config.strategy_filters:
        logger.debug(
            "Strategy %s filtered out for user %s", signal.strategy_name, config.user_id,
        )
        return False
    if config.option_type_filters and signal.option_type not in config.option_type_filters:
        logger.debug(
            "Option type %s filtered out for user %s", signal.option_type, config.user_id,
        )
        return False
    return True


class AlertDispatcher:
    """Delivers ``TradeSignal`` alerts to subscribers.

    Args:
        store: Source of subscriber ``AlertConfig`` records.
        telegram: Chat-bot channel, or ``None`` when not configured.
        messaging: SMS/WhatsApp channel, or ``None`` when not configured.
        email: Email channel, or ``None`` when not configured.
        bus: Optional bus receiving ``ALERT_SENT`` after each signal.
    """

    def __init__(
        self,
        store: PipelineStore,
        telegram: Optional[AlertChannel] = None,
        messaging: Optional[AlertChannel] = None,
        email: Optional[AlertChannel] = None,
        bus: Optional[EventBus] = None,
    ) -> None:
        self._store = store
        self._telegram = telegram
        self._messaging = messaging
        self._email = email
        self._bus = bus

    @classmethod
    def from_config(
        cls,
        config: Config,
        store: PipelineStore,
        bus: Optional[EventBus] = None,
    ) -> "AlertDispatcher":
        """Build channels for every provider whose credentials are present."""
        telegram = messaging = email = None
        if config.telegram_enabled:
            telegram = TelegramChannel(config.telegram_bot_token, config.telegram_api_url)
        else:
            logger.warning("Telegram bot token not configured. Telegram alerts disabled.")
        if config.messaging_enabled:
            messaging = TwilioMessagingChannel(
                config.twilio_account_sid,
                config.twilio_auth_token,
                config.twilio_from_number,
                whatsapp=config.twilio_whatsapp,
            )
        else:
            logger.warning("Twilio credentials not configured. Messaging alerts disabled.")
        if config.email_enabled:
            email = EmailChannel(
                SmtpEmailSender(
                    host=config.smtp_host,
                    port=config.smtp_port,
                    username=config.smtp_username,
                    password=config.smtp_password,
                    from_address=config.smtp_from,
                    use_tls=config.smtp_use_tls,
                )
            )
        else:
            logger.warning("SMTP not configured. Email alerts disabled.")
        return cls(store, telegram=telegram, messaging=messaging, email=email, bus=bus)

    async def process_signal(self, signal: TradeSignal) -> int:
        """Deliver *signal* to every eligible subscriber.

        Returns the number of successful channel deliveries.
        """
        try:
            configs = await self._store.find_alert_configs()
        except Exception as exc:
            logger.error("Error loading alert configs for signal %s: %s", signal.id, exc)
            return 0

        message = format_alert_message(signal)
        delivered = 0
        for config in configs:
            if not passes_gates(signal, config):
                continue
            delivered += await self._deliver(config, message, signal)

        logger.info(
            "Signal %s processed for %d subscriber(s), %d deliveries",
            signal.id, len(configs), delivered,
        )
        if self._bus is not None:
            self._bus.publish(EventType.ALERT_SENT, signal)
        return delivered

    async def _deliver(self, config: AlertConfig, message: str, signal: TradeSignal) -> int:
        attempts = []
        if config.telegram_enabled and config.telegram_chat_id:
            attempts.append(("telegram", self._telegram, config.telegram_chat_id))
        if config.whatsapp_enabled and config.whatsapp_number:
            attempts.append(("messaging", self._messaging, config.whatsapp_number))
        if config.email_enabled and config.email_address:
            attempts.append(("email", self._email, config.email_address))

        delivered = 0
        for channel_name, channel, destination in attempts:
            if channel is None:
                logger.debug(
                    "Channel %s not configured, skipping user %s", channel_name, config.user_id,
                )
                continue
            try:
                await channel.send(destination, message, signal)
                delivered += 1
            except Exception as exc:
                logger.error(
                    "Error sending %s alert for signal %s to user %s: %s",
                    channel_name, signal.id, config.user_id, exc,
                )
        return delivered
