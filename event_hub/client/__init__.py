from .live_feed import ExponentialBackoff, LiveFeedClient

__all__ = ["ExponentialBackoff", "LiveFeedClient"]
