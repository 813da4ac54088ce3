"""Base gateway interface for payment providers."""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from ..money import Money


@dataclass(frozen=True)
class IntentResult:
    """Result of creating a payment intent at the gateway."""

    intent_ref: str
    provider: str
    client_secret: str = ""


class BaseGateway(ABC):
    """Abstract base class for payment gateways.

    A gateway only has to create payment intents. Callback verification is
    done by django_checkout.payments against the shared secret, so providers
    never decide whether an order is paid.
    """

    provider_name: str = "base"

    @abstractmethod
    def create_intent(self, *, reference: str, amount: Money, timeout: float) -> IntentResult:
        """Request a payment intent for the given amount.

        Args:
            reference: Order idempotency key, passed to the provider so its
                own retries collapse onto one intent
            amount: Quantized order total
            timeout: Seconds to wait before giving up

        Returns:
            IntentResult carrying the provider's opaque intent reference

        Raises:
            Any exception on transport or provider failure; callers treat
            every failure as retryable.
        """
        raise NotImplementedError
