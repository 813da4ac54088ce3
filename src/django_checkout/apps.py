"""Django Checkout app configuration."""

from django.apps import AppConfig


class DjangoCheckoutConfig(AppConfig):
    """Configuration for django-checkout app."""

    name = "django_checkout"
    verbose_name = "Checkout"
    default_auto_field = "django.db.models.BigAutoField"
