"""Repository for persisted URL Metrics.

Example:
    async with get_session() as session:
        repo = UrlMetricsRepository(session)
        url_metrics = await repo.get_url_metrics(slug)
        await repo.store_url_metrics(slug, url, collection.get_flattened_url_metrics())
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime

from detective.core.logging import get_logger
from detective.models.url_metrics import UrlMetricsRecord
from detective.repositories.base import Repository
from detective.services.url_metric import UrlMetric

logger = get_logger(__name__)


class UrlMetricsRepository(Repository[UrlMetricsRecord]):
    """Reads and writes the URL Metric set of a page identity."""

    model_class = UrlMetricsRecord

    async def get_url_metrics(self, slug: str) -> list[UrlMetric]:
        """Load every stored URL Metric for a page identity.

        Entries that no longer parse (for example after a schema change) are
        skipped with a warning rather than failing the whole page identity.

        Returns:
            Stored URL Metrics, or an empty list if none were stored yet
        """
        record = await self.get_by_id(slug)
        if record is None:
            return []

        url_metrics: list[UrlMetric] = []
        for data in record.url_metrics:
            try:
                url_metrics.append(UrlMetric.from_dict(data))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(
                    f"Skipping unreadable stored URL Metric for {slug}: {e}",
                    extra={"slug": slug},
                )
        return url_metrics

    async def store_url_metrics(
        self,
        slug: str,
        url: str,
        url_metrics: Sequence[UrlMetric],
    ) -> UrlMetricsRecord:
        """Replace the stored URL Metric set for a page identity."""
        record = UrlMetricsRecord(
            slug=slug,
            url=url,
            url_metrics=[url_metric.to_dict() for url_metric in url_metrics],
            updated_at=datetime.now(UTC),
        )
        return await self.save(record)
