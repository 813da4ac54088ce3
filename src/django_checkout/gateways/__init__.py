"""Payment gateway adapters."""

from django.utils.module_loading import import_string

from django_checkout.conf import get_setting

from .base import BaseGateway, IntentResult

__all__ = ["BaseGateway", "IntentResult", "get_gateway", "get_gateway_class"]


def get_gateway_class() -> type:
    """The BaseGateway subclass named by CHECKOUT_GATEWAY_CLASS."""
    return import_string(get_setting('GATEWAY_CLASS'))


def get_gateway() -> BaseGateway:
    """Instantiate the gateway configured by CHECKOUT_GATEWAY_CLASS."""
    return get_gateway_class()()
