"""
Message Dispatch Package
Delivery clients for campaign messages.
"""
from .base import DispatchClient, DispatchResult
from .console import ConsoleDispatchClient, get_dispatch_client

__all__ = [
    "DispatchClient",
    "DispatchResult",
    "ConsoleDispatchClient",
    "get_dispatch_client",
]
