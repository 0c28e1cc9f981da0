import logging
from sqlmodel import SQLModel
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncEngine,
    async_sessionmaker,
)

from kidledger.config import DATABASE_URL, SQL_ECHO

# Route SQL echo through logging instead of stdout
if SQL_ECHO:
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)

engine = create_async_engine(DATABASE_URL, echo=SQL_ECHO)

async_session = async_sessionmaker(engine, expire_on_commit=False)


async def create_db_and_tables(bind: AsyncEngine | None = None) -> None:
    # Register every table on the metadata before create_all
    from kidledger.models import (  # noqa: F401
        Account,
        Transaction,
        ChoreTemplate,
        ChoreInstance,
    )

    async with (bind or engine).begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
