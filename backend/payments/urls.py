"""URL routes for payment endpoints."""
from django.urls import path

from .models import Gateway
from .views import (
    AdminRefundView,
    GatewayConfigView,
    GatewayCurrencyLockView,
    GatewayCurrencyView,
    GatewayWebhookView,
)

app_name = "payments"

urlpatterns = [
    path("admin/refunds/", AdminRefundView.as_view(), name="admin-refund"),
]

for _gateway in Gateway.values:
    urlpatterns += [
        path(
            f"{_gateway}/webhook/",
            GatewayWebhookView.as_view(),
            {"gateway": _gateway},
            name=f"{_gateway}-webhook",
        ),
        path(f"{_gateway}/config/", GatewayConfigView.as_view(), {"gateway": _gateway}, name=f"{_gateway}-config"),
        path(
            f"{_gateway}/currency/",
            GatewayCurrencyView.as_view(),
            {"gateway": _gateway},
            name=f"{_gateway}-currency",
        ),
        path(
            f"{_gateway}/currency/lock/",
            GatewayCurrencyLockView.as_view(),
            {"gateway": _gateway},
            name=f"{_gateway}-currency-lock",
        ),
    ]
