"""SQLAlchemy models."""

from detective.models.url_metrics import UrlMetricsRecord

__all__ = ["UrlMetricsRecord"]
