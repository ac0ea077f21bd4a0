"""Repository for the stored copy of the active dictionary."""

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinical_dictionary import db
from clinical_dictionary.models.dictionary import DataSchemaModel
from clinical_dictionary.repository.repository import Repository
from clinical_dictionary.schema.parser import SchemaDictionary, parse_dictionary, render_dictionary


class DictionaryRepository(Repository[DataSchemaModel]):
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        super().__init__(session_maker, DataSchemaModel)

    async def get(self, name: str) -> SchemaDictionary | None:
        model = await self.find_by_id(name)
        if model is None:
            return None
        return parse_dictionary(model.schemas)

    async def create_or_update(self, dictionary: SchemaDictionary) -> SchemaDictionary:
        """Store the dictionary, replacing any stored version with the same name."""
        async with db.scoped_session(self.session_maker) as session:
            model = await session.get(DataSchemaModel, dictionary.name)
            if model is None:
                model = DataSchemaModel(name=dictionary.name)
                session.add(model)
            model.version = dictionary.version
            model.schemas = render_dictionary(dictionary)

        logger.info(f"Stored dictionary: name={dictionary.name}, version={dictionary.version}")
        return dictionary
