"""
dashsync: request coordination and state sync for the redirect dashboard.
"""
from .context import AppContext, configure_logging

__all__ = ["AppContext", "configure_logging"]
