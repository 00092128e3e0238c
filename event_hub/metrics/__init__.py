from .ingestion_metrics import IngestionMetricsService

__all__ = ["IngestionMetricsService"]
