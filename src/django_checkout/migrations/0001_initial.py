# Generated manually for standalone django-checkout package

import uuid

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Product",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True, verbose_name="created at")),
                ("updated_at", models.DateTimeField(auto_now=True, verbose_name="updated at")),
                (
                    "ref",
                    models.SlugField(
                        help_text="Stable product reference used by carts",
                        max_length=100,
                        unique=True,
                        verbose_name="reference",
                    ),
                ),
                ("title", models.CharField(max_length=200, verbose_name="title")),
                (
                    "kind",
                    models.CharField(
                        choices=[
                            ("download", "Download"),
                            ("plan", "Subscription Plan"),
                            ("api_tool", "API Tool"),
                        ],
                        db_index=True,
                        default="download",
                        max_length=20,
                        verbose_name="kind",
                    ),
                ),
                ("price", models.DecimalField(decimal_places=2, max_digits=12, verbose_name="price")),
                ("currency", models.CharField(default="USD", max_length=3, verbose_name="currency")),
                (
                    "is_active",
                    models.BooleanField(
                        db_index=True,
                        default=True,
                        help_text="Inactive products cannot be purchased",
                        verbose_name="is active",
                    ),
                ),
                (
                    "license_type",
                    models.CharField(
                        choices=[("PERSONAL", "Personal"), ("COMMERCIAL", "Commercial")],
                        default="PERSONAL",
                        max_length=20,
                        verbose_name="license type",
                    ),
                ),
                ("plan_name", models.CharField(blank=True, max_length=50, verbose_name="plan name")),
                (
                    "billing_cycle",
                    models.CharField(
                        blank=True,
                        choices=[("monthly", "Monthly"), ("yearly", "Yearly")],
                        max_length=20,
                        verbose_name="billing cycle",
                    ),
                ),
                ("tool_ref", models.CharField(blank=True, max_length=100, verbose_name="tool reference")),
                ("tier", models.CharField(blank=True, max_length=50, verbose_name="tier")),
                ("deleted_at", models.DateTimeField(blank=True, null=True, verbose_name="deleted at")),
            ],
            options={
                "verbose_name": "product",
                "verbose_name_plural": "products",
                "ordering": ["title"],
            },
        ),
        migrations.CreateModel(
            name="Order",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True, verbose_name="created at")),
                ("updated_at", models.DateTimeField(auto_now=True, verbose_name="updated at")),
                (
                    "buyer_ref",
                    models.CharField(
                        db_index=True,
                        editable=False,
                        max_length=255,
                        verbose_name="buyer reference",
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("draft", "Draft"),
                            ("awaiting_payment", "Awaiting Payment"),
                            ("paid", "Paid"),
                            ("fulfilled", "Fulfilled"),
                            ("payment_failed", "Payment Failed"),
                            ("fulfillment_failed", "Fulfillment Failed"),
                            ("expired", "Expired"),
                        ],
                        db_index=True,
                        default="draft",
                        max_length=20,
                        verbose_name="status",
                    ),
                ),
                ("currency", models.CharField(max_length=3, verbose_name="currency")),
                (
                    "total_amount",
                    models.DecimalField(decimal_places=2, max_digits=12, verbose_name="total amount"),
                ),
                (
                    "gateway_intent_ref",
                    models.CharField(
                        blank=True,
                        max_length=255,
                        null=True,
                        unique=True,
                        verbose_name="gateway intent reference",
                    ),
                ),
                (
                    "gateway_event_id",
                    models.CharField(
                        blank=True,
                        help_text="Gateway event that settled this order",
                        max_length=255,
                        verbose_name="gateway event id",
                    ),
                ),
                (
                    "awaiting_payment_at",
                    models.DateTimeField(blank=True, null=True, verbose_name="awaiting payment at"),
                ),
                ("paid_at", models.DateTimeField(blank=True, null=True, verbose_name="paid at")),
                ("fulfilled_at", models.DateTimeField(blank=True, null=True, verbose_name="fulfilled at")),
                ("expired_at", models.DateTimeField(blank=True, null=True, verbose_name="expired at")),
                ("failed_at", models.DateTimeField(blank=True, null=True, verbose_name="failed at")),
                (
                    "failure_reason",
                    models.CharField(
                        blank=True,
                        help_text="Buyer-facing explanation for failure states",
                        max_length=255,
                        verbose_name="failure reason",
                    ),
                ),
                (
                    "needs_review",
                    models.BooleanField(
                        db_index=True,
                        default=False,
                        help_text="Flagged for operator attention",
                        verbose_name="needs review",
                    ),
                ),
                (
                    "fulfillment_attempts",
                    models.PositiveIntegerField(default=0, verbose_name="fulfillment attempts"),
                ),
                (
                    "last_fulfillment_error",
                    models.TextField(blank=True, verbose_name="last fulfillment error"),
                ),
            ],
            options={
                "verbose_name": "order",
                "verbose_name_plural": "orders",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["buyer_ref", "created_at"],
                        name="checkout_order_buyer_idx",
                    ),
                    models.Index(
                        fields=["status", "awaiting_payment_at"],
                        name="checkout_order_awaiting_idx",
                    ),
                    models.Index(
                        fields=["status", "paid_at"],
                        name="checkout_order_paid_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="OrderLineItem",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("position", models.PositiveSmallIntegerField(verbose_name="position")),
                ("product_ref", models.CharField(max_length=100, verbose_name="product reference")),
                (
                    "kind",
                    models.CharField(
                        choices=[
                            ("download", "Download"),
                            ("plan", "Subscription Plan"),
                            ("api_tool", "API Tool"),
                        ],
                        max_length=20,
                        verbose_name="kind",
                    ),
                ),
                ("title_snapshot", models.CharField(max_length=200, verbose_name="title snapshot")),
                (
                    "price_snapshot",
                    models.DecimalField(decimal_places=2, max_digits=12, verbose_name="unit price snapshot"),
                ),
                ("quantity", models.PositiveIntegerField(default=1, verbose_name="quantity")),
                ("license_type", models.CharField(max_length=20, verbose_name="license type")),
                ("plan_name", models.CharField(blank=True, max_length=50, verbose_name="plan name")),
                ("billing_cycle", models.CharField(blank=True, max_length=20, verbose_name="billing cycle")),
                ("tool_ref", models.CharField(blank=True, max_length=100, verbose_name="tool reference")),
                ("tier", models.CharField(blank=True, max_length=50, verbose_name="tier")),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="line_items",
                        to="django_checkout.order",
                        verbose_name="order",
                    ),
                ),
            ],
            options={
                "verbose_name": "order line item",
                "verbose_name_plural": "order line items",
                "ordering": ["order", "position"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("order", "position"),
                        name="unique_line_position_per_order",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Entitlement",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True, verbose_name="created at")),
                ("updated_at", models.DateTimeField(auto_now=True, verbose_name="updated at")),
                ("buyer_ref", models.CharField(max_length=255, verbose_name="buyer reference")),
                (
                    "kind",
                    models.CharField(
                        choices=[
                            ("download", "Download Grant"),
                            ("subscription", "Subscription Grant"),
                            ("api_tier", "API Key Tier Grant"),
                        ],
                        max_length=20,
                        verbose_name="kind",
                    ),
                ),
                (
                    "target",
                    models.CharField(
                        help_text="Product ref, plan name or tool ref depending on kind",
                        max_length=100,
                        verbose_name="target",
                    ),
                ),
                ("license_type", models.CharField(blank=True, max_length=20, verbose_name="license type")),
                ("license_key", models.CharField(blank=True, max_length=32, verbose_name="license key")),
                ("plan_name", models.CharField(blank=True, max_length=50, verbose_name="plan name")),
                ("billing_cycle", models.CharField(blank=True, max_length=20, verbose_name="billing cycle")),
                ("tier", models.CharField(blank=True, max_length=50, verbose_name="tier")),
                (
                    "starts_at",
                    models.DateTimeField(default=django.utils.timezone.now, verbose_name="starts at"),
                ),
                (
                    "ends_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="Null means no expiry",
                        null=True,
                        verbose_name="ends at",
                    ),
                ),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="entitlements",
                        to="django_checkout.order",
                        verbose_name="order",
                    ),
                ),
            ],
            options={
                "verbose_name": "entitlement",
                "verbose_name_plural": "entitlements",
                "ordering": ["created_at"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("order", "kind", "target"),
                        name="unique_entitlement_per_order_kind_target",
                    ),
                ],
                "indexes": [
                    models.Index(
                        fields=["buyer_ref", "kind", "target"],
                        name="checkout_ent_buyer_kind_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="GatewayCallback",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True, verbose_name="created at")),
                ("updated_at", models.DateTimeField(auto_now=True, verbose_name="updated at")),
                ("provider", models.CharField(max_length=50, verbose_name="provider")),
                (
                    "event_id",
                    models.CharField(blank=True, db_index=True, max_length=255, verbose_name="event id"),
                ),
                ("intent_ref", models.CharField(blank=True, max_length=255, verbose_name="intent reference")),
                (
                    "body_hash",
                    models.CharField(
                        help_text="SHA-256 of the raw callback body",
                        max_length=64,
                        verbose_name="body hash",
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("received", "Received"),
                            ("accepted", "Accepted"),
                            ("ignored", "Ignored"),
                            ("rejected", "Rejected"),
                            ("conflict", "Conflict"),
                        ],
                        db_index=True,
                        default="received",
                        max_length=20,
                        verbose_name="status",
                    ),
                ),
                ("error_message", models.TextField(blank=True, verbose_name="error message")),
                ("processed_at", models.DateTimeField(blank=True, null=True, verbose_name="processed at")),
            ],
            options={
                "verbose_name": "gateway callback",
                "verbose_name_plural": "gateway callbacks",
                "ordering": ["-created_at"],
            },
        ),
    ]
