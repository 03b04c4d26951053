"""API route modules."""

from detective.api.routes import metrics, url_metrics

__all__ = ["metrics", "url_metrics"]
