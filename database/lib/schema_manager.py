"""Database schema management module.

This module handles database schema versioning and migrations.
Schema versions live in database/schema/vN.py as plain dict definitions
describing tables, check constraints, foreign keys and (partial) indexes.
"""
import importlib
import logging
from pathlib import Path
from typing import Dict, Any, Optional

from ..exceptions import DatabaseSchemaError

logger = logging.getLogger(__name__)

SCHEMA_DIR = Path(__file__).resolve().parent.parent / 'schema'

class SchemaManager:
    """Manages database schema versioning and migrations."""

    def __init__(self, pool, schema_dir: Optional[Path] = None) -> None:
        """Initialize schema manager.

        Args:
            pool: Database connection pool
            schema_dir: Directory containing schema version files
        """
        self.pool = pool
        self._schema_dir = Path(schema_dir) if schema_dir else SCHEMA_DIR
        self.current_version = 0

    async def initialize(self, force_recreate: bool = False) -> None:
        """Create the version table and apply any pending migrations.

        Args:
            force_recreate: Drop every table and rebuild from the latest version

        Raises:
            DatabaseSchemaError: If schema initialization fails or no valid schema files are found
        """
        try:
            async with self.pool.acquire() as conn:
                await conn.execute('''
                    CREATE TABLE IF NOT EXISTS schema_version (
                        version INT8 PRIMARY KEY,
                        applied_at TIMESTAMPTZ NOT NULL DEFAULT now()
                    )
                ''')

                if force_recreate:
                    await conn.execute('DELETE FROM schema_version')

                self.current_version = await conn.fetchval(
                    'SELECT COALESCE(MAX(version), 0) FROM schema_version'
                )

            schema_files = self.load_schema_files()
            if not schema_files:
                raise DatabaseSchemaError("No valid schema files found in schema directory")

            await self._apply_migrations(schema_files)

        except DatabaseSchemaError:
            raise
        except Exception as e:
            logger.error(f"Schema initialization failed: {e}")
            raise DatabaseSchemaError(f"Failed to initialize schema: {e}")

    def load_schema_files(self) -> Dict[int, Dict[str, Any]]:
        """Load all schema version files.

        Returns:
            Dict mapping version numbers to schema definitions, sorted by version
        """
        schema_files = {}

        for file in self._schema_dir.glob('v*.py'):
            try:
                version = int(file.stem[1:])
            except ValueError:
                logger.warning(f"Invalid schema filename: {file}")
                continue

            module = importlib.import_module(f"database.schema.{file.stem}")
            schema = getattr(module, 'schema', None)
            if schema is None:
                raise DatabaseSchemaError(f"Schema file {file} missing 'schema' definition")
            if schema['version'] != version:
                raise DatabaseSchemaError(
                    f"Schema version mismatch in {file}: "
                    f"Expected v{version}, got v{schema['version']}"
                )
            schema_files[version] = schema

        return dict(sorted(schema_files.items()))

    async def _apply_migrations(self, schema_files: Dict[int, Dict[str, Any]]) -> None:
        """Apply any pending schema migrations.

        Args:
            schema_files: Dict mapping version numbers to schema definitions
        """
        latest_version = max(schema_files.keys())
        if self.current_version >= latest_version:
            logger.info("Schema is up to date")
            return

        logger.info(
            f"Updating schema from version {self.current_version} to {latest_version}"
        )

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                if self.current_version == 0:
                    await self._create_fresh_schema(conn, schema_files[latest_version])
                    return

                for version in range(self.current_version + 1, latest_version + 1):
                    if version not in schema_files:
                        continue
                    for migration in schema_files[version].get('migrations', []):
                        await conn.execute(migration)
                    await conn.execute(
                        'INSERT INTO schema_version (version) VALUES ($1)',
                        version
                    )
                    logger.info(f"Successfully migrated to version {version}")

    async def _create_fresh_schema(self, conn, schema: Dict[str, Any]) -> None:
        """Create a fresh schema installation from the latest version.

        Args:
            conn: Database connection inside a transaction
            schema: Latest schema definition
        """
        await self._drop_all_tables(conn)

        # Tables first, then cross-table constraints
        for table in schema.get('tables', []):
            await conn.execute(self.build_create_table(table))
            logger.info(f"Created table {table['name']}")

        for table in schema.get('tables', []):
            for statement in self.build_constraints(table):
                await conn.execute(statement)

        await conn.execute(
            'INSERT INTO schema_version (version) VALUES ($1)',
            schema['version']
        )
        logger.info(f"Successfully created fresh schema version {schema['version']}")

    async def _drop_all_tables(self, conn) -> None:
        """Drop all existing tables except schema_version."""
        tables = await conn.fetch('''
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = 'public'
            AND table_name != 'schema_version'
        ''')

        for table in tables:
            await conn.execute(f'DROP TABLE IF EXISTS "{table["table_name"]}" CASCADE')
            logger.info(f"Dropped table {table['table_name']}")

    @staticmethod
    def build_create_table(table: Dict[str, Any]) -> str:
        """Render CREATE TABLE for a table definition, without foreign keys."""
        columns = []
        constraints = []

        for col in table['columns']:
            col_def = f"{col['name']} {col['type']}"

            if 'default' in col:
                col_def += f" DEFAULT {col['default']}"
            if col.get('nullable') is False or col.get('primary_key'):
                col_def += " NOT NULL"

            if col.get('primary_key'):
                constraints.append(f"PRIMARY KEY ({col['name']})")
            elif col.get('unique'):
                constraints.append(f"UNIQUE ({col['name']})")

            if 'check' in col:
                constraints.append(
                    f"CONSTRAINT ck_{table['name']}_{col['name']} CHECK ({col['check']})"
                )

            columns.append(col_def)

        if isinstance(table.get('primary_key'), list):
            constraints.append(f"PRIMARY KEY ({', '.join(table['primary_key'])})")

        table_def = ',\n    '.join(columns + constraints)
        return f"CREATE TABLE {table['name']} (\n    {table_def}\n)"

    @staticmethod
    def build_constraints(table: Dict[str, Any]):
        """Render foreign key and index statements for a table definition."""
        statements = []

        for fk in table.get('foreign_keys', []):
            statements.append(
                f"ALTER TABLE {table['name']} "
                f"ADD CONSTRAINT fk_{table['name']}_{fk['columns'][0]} "
                f"FOREIGN KEY ({', '.join(fk['columns'])}) "
                f"REFERENCES {fk['references']}"
            )

        for idx in table.get('indexes', []):
            unique = 'UNIQUE ' if idx.get('unique') else ''
            where = f" WHERE {idx['where']}" if 'where' in idx else ''
            statements.append(
                f"CREATE {unique}INDEX {idx['name']} "
                f"ON {table['name']}({', '.join(idx['columns'])}){where}"
            )

        return statements
