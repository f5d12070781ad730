"""UThread realtime messaging, presence and notification delivery service."""

__version__ = "0.1.0"
