"""Versioned schema migrations for the local SQLite cache.

The schema version is SQLite's ``PRAGMA user_version`` header field.  A step
registered for version *N* upgrades the database **from** *N* to *N + 1*;
:meth:`SchemaMigrator.initialize` walks the chain of consecutive steps
starting at the stored version.  All steps of one ``initialize()`` call run in
a single transaction: either the database ends up at the latest version or it
is left exactly as it was.
"""

import logging
from typing import Callable
from typing import Dict

from sqlalchemy import Connection
from sqlalchemy import Engine

logger = logging.getLogger(__name__)

MigrationStep = Callable[[Connection], None]


def read_schema_version(conn: Connection) -> int:
    return int(conn.exec_driver_sql("PRAGMA user_version").scalar() or 0)


def _write_schema_version(conn: Connection, version: int) -> None:
    # PRAGMA arguments cannot be bound parameters; int() keeps it safe.
    conn.exec_driver_sql(f"PRAGMA user_version = {int(version)}")


class SchemaMigrator:
    """Apply registered upgrade steps to a SQLite database."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._steps: Dict[int, MigrationStep] = {}

    def register(self, version: int, step: MigrationStep) -> None:
        """Register *step* as the upgrade from *version* to *version + 1*.

        Registering a version twice replaces the earlier step.
        """
        if version < 0:
            raise ValueError(f"Migration version must be >= 0, got {version}")
        if version in self._steps:
            logger.debug("Replacing migration step for schema version %s", version)
        self._steps[version] = step

    def current_version(self) -> int:
        with self.engine.connect() as conn:
            return read_schema_version(conn)

    def initialize(self) -> int:
        """Bring the database up to the latest registered version.

        Returns the schema version after the call.  Re-raises the failing
        step's exception after rolling back every step of this call.
        """
        with self.engine.connect() as conn:
            start = None
            transaction = conn.begin()
            try:
                start = version = read_schema_version(conn)
                while version in self._steps:
                    logger.info("Migrating cache schema from version %s to %s", version, version + 1)
                    self._steps[version](conn)
                    version += 1
                    _write_schema_version(conn, version)
                transaction.commit()
            except Exception as exc:
                transaction.rollback()
                logger.error("Cache schema migration failed, rolled back to version %s: %s", start, exc)
                raise

        if version == start:
            logger.debug("Cache schema already at version %s", version)
        else:
            logger.info("Cache schema migrated from version %s to %s", start, version)
        return version


__all__ = ["MigrationStep", "SchemaMigrator", "read_schema_version"]
