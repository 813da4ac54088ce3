"""URL configuration for django_checkout."""

from django.urls import path

from . import views

app_name = 'django_checkout'

urlpatterns = [
    # Orders
    path('orders/', views.order_create, name='order_create'),
    path('orders/mine/', views.my_orders, name='my_orders'),
    path('orders/<uuid:order_id>/', views.order_detail, name='order_detail'),
    path('orders/<uuid:order_id>/intent/', views.order_intent, name='order_intent'),

    # Entitlements
    path('entitlements/mine/', views.my_entitlements, name='my_entitlements'),

    # Gateway callbacks
    path('webhooks/gateway/', views.gateway_webhook, name='gateway_webhook'),
]
