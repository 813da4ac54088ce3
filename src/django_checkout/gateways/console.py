"""Console payment gateway for development."""

import logging
import uuid

from .base import BaseGateway, IntentResult
from ..money import Money

logger = logging.getLogger(__name__)


class ConsoleGateway(BaseGateway):
    """Gateway that logs intents instead of charging anyone.

    Intent references are random; sign callbacks yourself with
    CHECKOUT_GATEWAY_SECRET to simulate the provider.
    """

    provider_name = "console"

    def create_intent(self, *, reference: str, amount: Money, timeout: float) -> IntentResult:
        intent_ref = f"console_{uuid.uuid4().hex[:16]}"
        logger.info(
            f"CONSOLE PAYMENT INTENT (not actually charged): "
            f"{intent_ref} for order {reference}, {amount}"
        )
        return IntentResult(intent_ref=intent_ref, provider=self.provider_name)
