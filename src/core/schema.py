"""SQLite schema management (code-first approach).

Tables come from feature modules: each module returns its CREATE TABLE
statements (parents before children) and its indexes.
"""

import logging
from collections.abc import Sequence

from src.core import db_client
from src.core.logging import span
from src.core.module import Module


logger = logging.getLogger(__name__)


def default_modules() -> list[Module]:
    """Modules whose tables make up the application schema."""
    from src.modules.progress import ProgressModule

    return [ProgressModule()]


def collect_table_schemas(modules: Sequence[Module]) -> dict[str, str]:
    """Merge table schemas from all modules, rejecting duplicate table names.

    Raises:
        ValueError: If two modules define the same table
    """
    all_schemas: dict[str, str] = {}
    for module in modules:
        for table_name, ddl in module.get_table_schemas().items():
            if table_name in all_schemas:
                msg = f"Duplicate table schema '{table_name}' from module '{module.name}'"
                raise ValueError(msg)
            all_schemas[table_name] = ddl
    return all_schemas


async def init_db(*, db_path: str | None = None, modules: Sequence[Module] | None = None) -> None:
    """Create all tables and indexes if they do not exist yet."""
    with span("schema.init_db"):
        modules = list(modules) if modules is not None else default_modules()
        conn = await db_client.get_connection(db_path=db_path)

        schemas = collect_table_schemas(modules)
        for table_name, ddl in schemas.items():
            await conn.execute(ddl)
            logger.debug("Ensured table", extra={"table": table_name})

        for module in modules:
            for index_ddl in module.get_indexes():
                await conn.execute(index_ddl)

        await conn.commit()
        logger.info("Database schema initialized", extra={"tables": list(schemas)})
