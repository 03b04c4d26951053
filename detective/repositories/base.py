"""Generic async repository over a SQLAlchemy model keyed by primary key.

Example:
    class UrlMetricsRepository(Repository[UrlMetricsRecord]):
        model_class = UrlMetricsRecord
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, TypeVar

from sqlalchemy.dialects.postgresql import insert as pg_insert

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from detective.core.database import Base

T = TypeVar("T", bound="Base")


class Repository(Generic[T]):  # noqa: UP046
    """Primary-key lookups and last-writer-wins upserts for ``model_class``."""

    model_class: type[T]

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, entity_id: Any) -> T | None:
        return await self.session.get(self.model_class, entity_id)

    async def save(self, entity: T) -> T:
        """Insert the entity, or overwrite every non-key column of an existing row.

        Concurrent saves of the same key never conflict; the last one wins.

        Returns:
            The row as stored
        """
        table = self.model_class.__table__
        key_columns = [column.name for column in table.primary_key.columns]
        values = {
            column.name: getattr(entity, column.name)
            for column in table.columns
            if getattr(entity, column.name, None) is not None
        }

        statement = (
            pg_insert(self.model_class)
            .values(**values)
            .on_conflict_do_update(
                index_elements=key_columns,
                set_={name: value for name, value in values.items() if name not in key_columns},
            )
            .returning(self.model_class)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(statement)
        saved: T = result.scalar_one()
        await self.session.flush()
        return saved
