from .config import GatewayConfigView, GatewayCurrencyLockView, GatewayCurrencyView
from .refunds import AdminRefundView
from .webhooks import GatewayWebhookView

__all__ = [
    "AdminRefundView",
    "GatewayConfigView",
    "GatewayCurrencyLockView",
    "GatewayCurrencyView",
    "GatewayWebhookView",
]
