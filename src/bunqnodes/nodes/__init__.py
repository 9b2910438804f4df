from .bunq import OPERATIONS, BunqNode
from .context import BinaryData, ExecutionContext, NodeItem, NodeOperationError, StaticContext
from .trigger import TRIGGER_EVENTS, BunqTrigger, TriggerOptions

__all__ = [
    "BinaryData",
    "BunqNode",
    "BunqTrigger",
    "ExecutionContext",
    "NodeItem",
    "NodeOperationError",
    "OPERATIONS",
    "StaticContext",
    "TRIGGER_EVENTS",
    "TriggerOptions",
]
