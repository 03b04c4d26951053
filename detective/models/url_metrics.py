"""URL Metrics record model: the persisted metric set for one page identity."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from detective.core.database import Base


class UrlMetricsRecord(Base):
    """Stored URL Metrics for one page identity (URL plus query variant).

    The metric list is stored as JSON in the wire format produced by
    UrlMetric.to_dict(). Stale metrics stay in the list until evicted by
    newer ones; freshness is evaluated at read time.
    """

    __tablename__ = "url_metrics"

    slug: Mapped[str] = mapped_column(String(32), primary_key=True)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    url_metrics: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<UrlMetricsRecord(slug={self.slug!r}, url={self.url!r}, count={len(self.url_metrics)})>"
