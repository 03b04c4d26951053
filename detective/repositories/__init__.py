"""Repository layer for database access."""

from detective.repositories.base import Repository
from detective.repositories.url_metrics_repository import UrlMetricsRepository

__all__ = ["Repository", "UrlMetricsRepository"]
