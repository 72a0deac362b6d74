import logging
from typing import Optional

import aiohttp

from config import config
from strategy.signal_manager import Signal


logger = logging.getLogger(__name__)


class SignalAlertNotifier:
    """Push new strategy signals to a webhook, or just log them when none is set."""

    def __init__(self, webhook_url: Optional[str] = None, timeout_s: float = 5.0):
        url = webhook_url if webhook_url is not None else config.monitoring.get('alert_webhook')
        # Treat empty or unexpanded placeholders as disabled
        if url and not str(url).startswith('${'):
            self.webhook_url = str(url)
            self.enabled = True
        else:
            self.webhook_url = None
            self.enabled = False
        self.timeout_s = timeout_s

    @staticmethod
    def build_payload(signal: Signal) -> dict:
        kind = signal.kind.value if signal.kind else 'UNKNOWN'
        price = f"{signal.price:.2f}" if signal.price is not None else 'N/A'
        return {
            'title': f"{signal.symbol} {kind}",
            'body': f"{signal.strategy_id}: {signal.reason} @ {price} ({signal.confidence}%)",
            'tag': f"{signal.symbol}-{signal.strategy_id}",
            'signal': signal.to_dict(),
        }

    async def on_new_signal(self, signal: Signal):
        payload = self.build_payload(signal)
        if not self.enabled:
            logger.info("[Signal] %s - %s", payload['title'], payload['body'])
            return

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.webhook_url,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.timeout_s),
                ) as response:
                    if response.status >= 300:
                        logger.error(
                            "[Signal] Webhook failed with status %s",
                            response.status,
                        )
        except Exception as e:
            logger.error("[Signal] Webhook error: %s", e)
