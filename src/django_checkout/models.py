"""Django Checkout models.

Provides:
- Product: Catalog read-model that carts are priced against
- Order: Snapshotted order and its status state machine
- OrderLineItem: Line items with product identity and price snapshotted at draft time
- Entitlement: Access right granted from a paid order, unique per (order, kind, target)
- GatewayCallback: Log of every inbound payment gateway callback

Order.status is only ever written by django_checkout.ledger.
"""

import uuid

from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from django_checkout.querysets import EntitlementQuerySet, OrderQuerySet


# =============================================================================
# Base Models
# =============================================================================

class CheckoutBaseModel(models.Model):
    """Abstract base model with UUID primary key and created/updated timestamps."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        abstract = True


class SoftDeleteManager(models.Manager):
    """Manager that excludes soft-deleted objects by default.

    Use .with_deleted() to include soft-deleted objects.
    """

    def get_queryset(self):
        """Return only non-deleted objects."""
        return super().get_queryset().filter(deleted_at__isnull=True)

    def with_deleted(self):
        """Include soft-deleted objects in queryset."""
        return super().get_queryset()


# =============================================================================
# Product - Catalog Read-Model
# =============================================================================

class Product(CheckoutBaseModel):
    """Purchasable catalog entry.

    The catalog is owned by the storefront; checkout only reads the current
    price and availability when a cart is drafted into an order. After that
    the order carries its own snapshot.
    """

    class Kind(models.TextChoices):
        DOWNLOAD = 'download', _('Download')
        PLAN = 'plan', _('Subscription Plan')
        API_TOOL = 'api_tool', _('API Tool')

    class LicenseType(models.TextChoices):
        PERSONAL = 'PERSONAL', _('Personal')
        COMMERCIAL = 'COMMERCIAL', _('Commercial')

    class BillingCycle(models.TextChoices):
        MONTHLY = 'monthly', _('Monthly')
        YEARLY = 'yearly', _('Yearly')

    ref = models.SlugField(
        _('reference'),
        max_length=100,
        unique=True,
        help_text=_('Stable product reference used by carts'),
    )
    title = models.CharField(_('title'), max_length=200)
    kind = models.CharField(
        _('kind'),
        max_length=20,
        choices=Kind.choices,
        default=Kind.DOWNLOAD,
        db_index=True,
    )
    price = models.DecimalField(_('price'), max_digits=12, decimal_places=2)
    currency = models.CharField(_('currency'), max_length=3, default='USD')
    is_active = models.BooleanField(
        _('is active'),
        default=True,
        db_index=True,
        help_text=_('Inactive products cannot be purchased'),
    )
    license_type = models.CharField(
        _('license type'),
        max_length=20,
        choices=LicenseType.choices,
        default=LicenseType.PERSONAL,
    )

    # Plan purchases
    plan_name = models.CharField(_('plan name'), max_length=50, blank=True)
    billing_cycle = models.CharField(
        _('billing cycle'),
        max_length=20,
        choices=BillingCycle.choices,
        blank=True,
    )

    # API tool purchases
    tool_ref = models.CharField(_('tool reference'), max_length=100, blank=True)
    tier = models.CharField(_('tier'), max_length=50, blank=True)

    deleted_at = models.DateTimeField(_('deleted at'), null=True, blank=True)

    objects = SoftDeleteManager()
    all_objects = models.Manager()

    class Meta:
        verbose_name = _('product')
        verbose_name_plural = _('products')
        ordering = ['title']

    def __str__(self):
        return f'{self.title} ({self.ref})'

    def delete(self, using=None, keep_parents=False):
        """Soft delete the product by setting deleted_at timestamp."""
        self.deleted_at = timezone.now()
        self.save(update_fields=['deleted_at', 'updated_at'])

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    @property
    def is_purchasable(self):
        return self.is_active and not self.is_deleted

    @property
    def entitlement_target(self) -> str:
        """What a purchase of this product grants access to."""
        if self.kind == self.Kind.PLAN:
            return self.plan_name
        if self.kind == self.Kind.API_TOOL:
            return self.tool_ref
        return self.ref


# =============================================================================
# Order - Ledger Aggregate
# =============================================================================

class Order(CheckoutBaseModel):
    """An order and its position in the fulfillment state machine.

    draft -> awaiting_payment -> paid -> fulfilled, with terminal failure
    states payment_failed (from awaiting_payment), expired (from
    awaiting_payment) and fulfillment_failed (from paid).
    """

    class Status(models.TextChoices):
        DRAFT = 'draft', _('Draft')
        AWAITING_PAYMENT = 'awaiting_payment', _('Awaiting Payment')
        PAID = 'paid', _('Paid')
        FULFILLED = 'fulfilled', _('Fulfilled')
        PAYMENT_FAILED = 'payment_failed', _('Payment Failed')
        FULFILLMENT_FAILED = 'fulfillment_failed', _('Fulfillment Failed')
        EXPIRED = 'expired', _('Expired')

    ALLOWED_TRANSITIONS = {
        Status.DRAFT: {Status.AWAITING_PAYMENT},
        Status.AWAITING_PAYMENT: {Status.PAID, Status.PAYMENT_FAILED, Status.EXPIRED},
        Status.PAID: {Status.FULFILLED, Status.FULFILLMENT_FAILED},
        Status.FULFILLED: set(),
        Status.PAYMENT_FAILED: set(),
        Status.FULFILLMENT_FAILED: set(),
        Status.EXPIRED: set(),
    }

    FAILURE_STATUSES = (Status.PAYMENT_FAILED, Status.FULFILLMENT_FAILED)

    buyer_ref = models.CharField(
        _('buyer reference'),
        max_length=255,
        db_index=True,
        editable=False,
    )
    status = models.CharField(
        _('status'),
        max_length=20,
        choices=Status.choices,
        default=Status.DRAFT,
        db_index=True,
    )
    currency = models.CharField(_('currency'), max_length=3)
    total_amount = models.DecimalField(_('total amount'), max_digits=12, decimal_places=2)

    # Gateway correlation
    gateway_intent_ref = models.CharField(
        _('gateway intent reference'),
        max_length=255,
        null=True,
        blank=True,
        unique=True,
    )
    gateway_event_id = models.CharField(
        _('gateway event id'),
        max_length=255,
        blank=True,
        help_text=_('Gateway event that settled this order'),
    )

    # Transition timestamps, each set exactly once
    awaiting_payment_at = models.DateTimeField(_('awaiting payment at'), null=True, blank=True)
    paid_at = models.DateTimeField(_('paid at'), null=True, blank=True)
    fulfilled_at = models.DateTimeField(_('fulfilled at'), null=True, blank=True)
    expired_at = models.DateTimeField(_('expired at'), null=True, blank=True)
    failed_at = models.DateTimeField(_('failed at'), null=True, blank=True)

    # Failure handling
    failure_reason = models.CharField(
        _('failure reason'),
        max_length=255,
        blank=True,
        help_text=_('Buyer-facing explanation for failure states'),
    )
    needs_review = models.BooleanField(
        _('needs review'),
        default=False,
        db_index=True,
        help_text=_('Flagged for operator attention'),
    )
    fulfillment_attempts = models.PositiveIntegerField(_('fulfillment attempts'), default=0)
    last_fulfillment_error = models.TextField(_('last fulfillment error'), blank=True)

    objects = OrderQuerySet.as_manager()

    class Meta:
        verbose_name = _('order')
        verbose_name_plural = _('orders')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['buyer_ref', 'created_at'], name='checkout_order_buyer_idx'),
            models.Index(fields=['status', 'awaiting_payment_at'], name='checkout_order_awaiting_idx'),
            models.Index(fields=['status', 'paid_at'], name='checkout_order_paid_idx'),
        ]

    def __str__(self):
        return f'Order {self.pk} ({self.status})'

    @property
    def fulfillment_idempotency_key(self) -> str:
        return str(self.pk)

    @property
    def is_terminal(self) -> bool:
        return not self.ALLOWED_TRANSITIONS[self.status]

    def can_transition_to(self, status: str) -> bool:
        return status in self.ALLOWED_TRANSITIONS[self.status]


class OrderLineItem(models.Model):
    """A snapshotted order line.

    Title, price and entitlement data are copied from the Product at draft
    time so later catalog edits never change historical orders.
    """

    order = models.ForeignKey(
        Order,
        on_delete=models.CASCADE,
        related_name='line_items',
        verbose_name=_('order'),
    )
    position = models.PositiveSmallIntegerField(_('position'))
    product_ref = models.CharField(_('product reference'), max_length=100)
    kind = models.CharField(_('kind'), max_length=20, choices=Product.Kind.choices)
    title_snapshot = models.CharField(_('title snapshot'), max_length=200)
    price_snapshot = models.DecimalField(_('unit price snapshot'), max_digits=12, decimal_places=2)
    quantity = models.PositiveIntegerField(_('quantity'), default=1)
    license_type = models.CharField(_('license type'), max_length=20)
    plan_name = models.CharField(_('plan name'), max_length=50, blank=True)
    billing_cycle = models.CharField(_('billing cycle'), max_length=20, blank=True)
    tool_ref = models.CharField(_('tool reference'), max_length=100, blank=True)
    tier = models.CharField(_('tier'), max_length=50, blank=True)

    class Meta:
        verbose_name = _('order line item')
        verbose_name_plural = _('order line items')
        ordering = ['order', 'position']
        constraints = [
            models.UniqueConstraint(
                fields=['order', 'position'],
                name='unique_line_position_per_order',
            ),
        ]

    def __str__(self):
        return f'{self.title_snapshot} x{self.quantity}'

    @property
    def line_total(self):
        return self.price_snapshot * self.quantity


# =============================================================================
# Entitlement - Access Rights
# =============================================================================

class Entitlement(CheckoutBaseModel):
    """Access right granted from a paid order.

    Keyed by (order, kind, target) so that granting is an upsert: re-running
    fulfillment for the same order never creates a second row.

    Consumers (download serving, subscription gating, API key tiers) read
    entitlements by (buyer_ref, kind, target) and never look at order status.
    """

    class Kind(models.TextChoices):
        DOWNLOAD = 'download', _('Download Grant')
        SUBSCRIPTION = 'subscription', _('Subscription Grant')
        API_TIER = 'api_tier', _('API Key Tier Grant')

    order = models.ForeignKey(
        Order,
        on_delete=models.PROTECT,
        related_name='entitlements',
        verbose_name=_('order'),
    )
    buyer_ref = models.CharField(_('buyer reference'), max_length=255)
    kind = models.CharField(_('kind'), max_length=20, choices=Kind.choices)
    target = models.CharField(
        _('target'),
        max_length=100,
        help_text=_('Product ref, plan name or tool ref depending on kind'),
    )

    license_type = models.CharField(_('license type'), max_length=20, blank=True)
    license_key = models.CharField(_('license key'), max_length=32, blank=True)
    plan_name = models.CharField(_('plan name'), max_length=50, blank=True)
    billing_cycle = models.CharField(_('billing cycle'), max_length=20, blank=True)
    tier = models.CharField(_('tier'), max_length=50, blank=True)

    starts_at = models.DateTimeField(_('starts at'), default=timezone.now)
    ends_at = models.DateTimeField(
        _('ends at'),
        null=True,
        blank=True,
        help_text=_('Null means no expiry'),
    )

    objects = EntitlementQuerySet.as_manager()

    class Meta:
        verbose_name = _('entitlement')
        verbose_name_plural = _('entitlements')
        ordering = ['created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['order', 'kind', 'target'],
                name='unique_entitlement_per_order_kind_target',
            ),
        ]
        indexes = [
            models.Index(fields=['buyer_ref', 'kind', 'target'], name='checkout_ent_buyer_kind_idx'),
        ]

    def __str__(self):
        return f'{self.get_kind_display()} {self.target} for {self.buyer_ref}'

    @property
    def grant_key(self) -> tuple:
        return (str(self.order_id), self.kind, self.target)

    def is_active(self, at=None) -> bool:
        at = at or timezone.now()
        if self.starts_at > at:
            return False
        return self.ends_at is None or self.ends_at > at


# =============================================================================
# GatewayCallback - Inbound Callback Log
# =============================================================================

class GatewayCallback(CheckoutBaseModel):
    """One row per inbound payment gateway callback.

    State machine: received -> accepted/ignored/rejected/conflict
    """

    class Status(models.TextChoices):
        RECEIVED = 'received', _('Received')
        ACCEPTED = 'accepted', _('Accepted')
        IGNORED = 'ignored', _('Ignored')
        REJECTED = 'rejected', _('Rejected')
        CONFLICT = 'conflict', _('Conflict')

    provider = models.CharField(_('provider'), max_length=50)
    event_id = models.CharField(_('event id'), max_length=255, blank=True, db_index=True)
    intent_ref = models.CharField(_('intent reference'), max_length=255, blank=True)
    body_hash = models.CharField(
        _('body hash'),
        max_length=64,
        help_text=_('SHA-256 of the raw callback body'),
    )
    status = models.CharField(
        _('status'),
        max_length=20,
        choices=Status.choices,
        default=Status.RECEIVED,
        db_index=True,
    )
    error_message = models.TextField(_('error message'), blank=True)
    processed_at = models.DateTimeField(_('processed at'), null=True, blank=True)

    class Meta:
        verbose_name = _('gateway callback')
        verbose_name_plural = _('gateway callbacks')
        ordering = ['-created_at']

    def __str__(self):
        return f'{self.provider}:{self.event_id or "?"} ({self.status})'
