"""Django Checkout views - JSON API for the storefront and the payment gateway.

The buyer is always request.user; views pass its primary key on to the
services as buyer_ref.
"""
import json
from functools import wraps

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from . import selectors
from .cart import CartLine, draft_order
from .exceptions import (
    CartValidationError,
    CheckoutError,
    GatewayUnavailableError,
    InvalidCartLineError,
    OrderNotFoundError,
    OrderStateError,
)
from .payments import (
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    CallbackOutcome,
    create_intent,
    handle_callback,
)

ERROR_STATUS = (
    (CartValidationError, 400),
    (OrderNotFoundError, 404),
    (OrderStateError, 409),
    (GatewayUnavailableError, 503),
)

CALLBACK_STATUS = {
    CallbackOutcome.ACCEPTED: 200,
    CallbackOutcome.DUPLICATE: 200,
    CallbackOutcome.IGNORED: 200,
    CallbackOutcome.REJECTED: 400,
    CallbackOutcome.CONFLICT: 409,
}

GATEWAY_UNAVAILABLE_DETAIL = "Payment gateway is unavailable, please retry"


def error_response(exc: CheckoutError, **extra) -> JsonResponse:
    """Map a checkout exception onto {"error": code, "detail": message}."""
    status = 500
    for exc_class, exc_status in ERROR_STATUS:
        if isinstance(exc, exc_class):
            status = exc_status
            break

    # Gateway internals never reach the buyer
    detail = GATEWAY_UNAVAILABLE_DETAIL if isinstance(exc, GatewayUnavailableError) else str(exc)
    return JsonResponse({'error': exc.code, 'detail': detail, **extra}, status=status)


def buyer_required(view_func):
    """Reject anonymous requests with a JSON 401."""

    @wraps(view_func)
    def wrapper(request, *args, **kwargs):
        if not request.user.is_authenticated:
            return JsonResponse(
                {'error': 'authentication_required', 'detail': 'Sign in to continue'},
                status=401,
            )
        return view_func(request, *args, **kwargs)

    return wrapper


def buyer_ref_for(request) -> str:
    return str(request.user.pk)


def _cart_lines_from_request(request) -> list:
    try:
        payload = json.loads(request.body or b'{}')
    except ValueError:
        raise InvalidCartLineError("Request body is not valid JSON")

    items = payload.get('items') if isinstance(payload, dict) else payload
    if not isinstance(items, list):
        raise InvalidCartLineError("Expected a list of cart items")
    return [CartLine.from_payload(item) for item in items]


# =============================================================================
# Orders
# =============================================================================

@require_POST
@buyer_required
def order_create(request):
    """Draft an order from the cart and open a payment intent.

    POST /orders/  {"items": [{"product": "P1", "quantity": 1, "price": "49.00"}]}

    201 with the order and intent ref. If the gateway is unavailable the
    draft order is kept and returned with 503; retry via the intent endpoint.
    """
    try:
        order = draft_order(buyer_ref_for(request), _cart_lines_from_request(request))
    except CheckoutError as e:
        return error_response(e)

    try:
        intent_ref = create_intent(order)
    except GatewayUnavailableError as e:
        order = selectors.get_order_for_buyer(order.pk, buyer_ref_for(request))
        return error_response(e, order=selectors.order_payload(order))

    order = selectors.get_order_for_buyer(order.pk, buyer_ref_for(request))
    return JsonResponse(
        {'order': selectors.order_payload(order), 'intent_ref': intent_ref},
        status=201,
    )


@require_POST
@buyer_required
def order_intent(request, order_id):
    """Retry payment intent creation for a draft order.

    POST /orders/<id>/intent/
    """
    try:
        order = selectors.get_order_for_buyer(order_id, buyer_ref_for(request))
        intent_ref = create_intent(order)
    except CheckoutError as e:
        return error_response(e)

    order = selectors.get_order_for_buyer(order_id, buyer_ref_for(request))
    return JsonResponse({'order': selectors.order_payload(order), 'intent_ref': intent_ref})


@require_GET
@buyer_required
def order_detail(request, order_id):
    """Order status for polling.

    GET /orders/<id>/
    """
    try:
        order = selectors.get_order_for_buyer(order_id, buyer_ref_for(request))
    except OrderNotFoundError as e:
        return error_response(e)
    return JsonResponse({'order': selectors.order_payload(order)})


@require_GET
@buyer_required
def my_orders(request):
    """GET /orders/mine/?status=<status>"""
    orders = selectors.list_orders_for_buyer(
        buyer_ref_for(request),
        status=request.GET.get('status') or None,
    )
    return JsonResponse({'orders': [selectors.order_payload(order) for order in orders]})


# =============================================================================
# Entitlements
# =============================================================================

@require_GET
@buyer_required
def my_entitlements(request):
    """GET /entitlements/mine/?kind=<kind>&active=1"""
    entitlements = selectors.entitlements_for_buyer(
        buyer_ref_for(request),
        kind=request.GET.get('kind') or None,
        active_only=request.GET.get('active') in ('1', 'true'),
    )
    return JsonResponse({
        'entitlements': [selectors.entitlement_payload(e) for e in entitlements],
    })


# =============================================================================
# Gateway callbacks
# =============================================================================

@csrf_exempt
@require_POST
def gateway_webhook(request):
    """Signed payment callback from the gateway.

    POST /webhooks/gateway/ with X-Gateway-Signature: <hex hmac-sha256 of body>
    and optionally X-Gateway-Timestamp: <unix seconds of this delivery>

    200 accepted/duplicate/ignored, 400 rejected, 409 conflict.
    """
    outcome = handle_callback(
        request.body,
        request.headers.get(SIGNATURE_HEADER),
        timestamp_header=request.headers.get(TIMESTAMP_HEADER),
    )
    return JsonResponse(
        {'result': outcome.result, 'detail': outcome.detail},
        status=CALLBACK_STATUS[outcome.result],
    )
