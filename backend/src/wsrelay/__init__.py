"""WebSocket topic relay: subscription registry, bounded backoff and batch dispatcher."""

__version__ = "0.1.0"
