from .backpressure import BackpressureQueue
from .backpressure_config import BackpressureConfig, BackpressureStats
from .hub import FanOutConfig, FanOutHub, Subscriber, SubscriptionFilter

__all__ = [
    "BackpressureConfig",
    "BackpressureQueue",
    "BackpressureStats",
    "FanOutConfig",
    "FanOutHub",
    "Subscriber",
    "SubscriptionFilter",
]
