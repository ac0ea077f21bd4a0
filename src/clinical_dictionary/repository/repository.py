"""Base repository implementation."""

from typing import Any, Generic, Sequence, Type, TypeVar

from loguru import logger
from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinical_dictionary import db
from clinical_dictionary.models.base import Base

T = TypeVar("T", bound=Base)


class Repository(Generic[T]):
    """Generic async repository over one model."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession], Model: Type[T]):
        self.session_maker = session_maker
        self.Model = Model

    def select(self, *entities: Any) -> Select:
        """Start a select over the model, or over the given columns."""
        if not entities:
            return select(self.Model)
        return select(*entities)

    async def find_one(self, query: Select) -> T | None:
        async with db.scoped_session(self.session_maker) as session:
            result = await session.execute(query)
            return result.scalars().one_or_none()

    async def find_all(self, query: Select | None = None) -> Sequence[T]:
        query = self.select() if query is None else query
        async with db.scoped_session(self.session_maker) as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def find_by_id(self, entity_id: Any) -> T | None:
        async with db.scoped_session(self.session_maker) as session:
            return await session.get(self.Model, entity_id)

    async def add(self, model: T) -> T:
        """Insert a new row and return it."""
        async with db.scoped_session(self.session_maker) as session:
            session.add(model)
            await session.flush()
            logger.debug(f"Added {self.Model.__name__}: {model!r}")
            return model
