"""Prepare the projectflow database before the API starts.

A database without the recurring-task schema gets every table created from
the models and is stamped at the Alembic head. A database that already has
it is upgraded through the migrations in ``alembic/versions``.
"""

import logging
import subprocess
import sys

from sqlalchemy import inspect

from projectflow.core.config import get_settings
from projectflow.db.session import engine
from projectflow.db.base import Base
from projectflow.models import Project, RecurringTaskInstance, Task  # noqa: F401

logger = logging.getLogger("projectflow.start")

SCHEMA_TABLES = {"projects", "tasks", "recurring_task_instances"}


def _alembic(*args: str) -> None:
    subprocess.check_call([sys.executable, "-m", "alembic", *args])


def main():
    logging.basicConfig(level=get_settings().log_level.upper())
    existing = set(inspect(engine).get_table_names())

    if not existing & SCHEMA_TABLES:
        logger.info("Empty database; creating projectflow tables")
        Base.metadata.create_all(bind=engine)
        _alembic("stamp", "head")
        logger.info("Schema created and stamped at head")
    else:
        missing = SCHEMA_TABLES - existing
        if missing:
            logger.warning(f"Tables missing before upgrade: {', '.join(sorted(missing))}")
        logger.info("Existing database; applying migrations")
        _alembic("upgrade", "head")
        logger.info("Migrations applied")


if __name__ == "__main__":
    main()
