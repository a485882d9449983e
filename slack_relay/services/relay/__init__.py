from .context import BridgeContext, build_bridge_context
from .dedup import DeliveryDeduplicator, delivery_key
from .polling_bridge import PollingBridge, PollSession, SessionState

__all__ = [
    "BridgeContext",
    "build_bridge_context",
    "DeliveryDeduplicator",
    "delivery_key",
    "PollingBridge",
    "PollSession",
    "SessionState",
]
