"""
Request coordination: in-flight deduplication, exclusive keys and auth retry.
"""
from .tokens import CancellationToken
from .coalescer import RequestCoalescer, InFlightRequest
from .exclusive import ExclusiveRunner, ExclusiveCall
from .coordinator import RequestCoordinator, AUTH_REFRESH_KEY

__all__ = [
    # Cancellation
    "CancellationToken",
    # Deduplication
    "RequestCoalescer",
    "InFlightRequest",
    # Exclusivity
    "ExclusiveRunner",
    "ExclusiveCall",
    # Coordinator
    "RequestCoordinator",
    "AUTH_REFRESH_KEY",
]
