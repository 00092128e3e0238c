from .aggregator import AggregationEngine

__all__ = ["AggregationEngine"]
