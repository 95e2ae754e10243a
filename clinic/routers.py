"""
URL mappings for the clinic API.

Order and payment endpoints live under ``/api``.  Trailing slashes are
omitted, as the front-end calls these paths verbatim.
"""
from django.urls import include, path

from .views import health
from .views import orders
from .views import payments

urlpatterns = [
    path('', include('django_prometheus.urls')),
    path('healthz', health.healthz),
    # Orders
    path('api/orders', orders.order_create),
    path('api/orders/<int:pk>', orders.order_detail),
    path('api/orders/user/<int:user_id>', orders.orders_by_user),
    path('api/orders/code/<str:order_code>', orders.order_by_code),
    # Payments
    path('api/payments/webhook', payments.payment_webhook),
    path('api/payments/queue/status', payments.queue_status),
    path('api/payments/queue/clear', payments.queue_clear),
    path('api/payments/user/<int:user_id>', payments.payments_by_user),
    path('api/payments/code/<str:transaction_code>', payments.payment_by_code),
    path('api/payments/<int:pk>', payments.payment_detail),
    path('api/payments/<int:pk>/cancel', payments.payment_cancel),
    # Bank gateway and admin
    path('api/payment/receiver', payments.bank_receiver),
    path('api/payment/dashboard', payments.payment_dashboard),
    path('api/payment/revenue-stats', payments.revenue_stats),
]
