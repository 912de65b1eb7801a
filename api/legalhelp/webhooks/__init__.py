from .dispatcher import DeliveryResult, DeliveryState, WebhookDispatcher, create_dispatcher
from .emitter import WebhookEmitter
from .endpoint import WebhookEndpoint
from .signer import WebhookSigner

__all__ = [
    "DeliveryResult",
    "DeliveryState",
    "WebhookDispatcher",
    "WebhookEmitter",
    "WebhookEndpoint",
    "WebhookSigner",
    "create_dispatcher",
]
