import sqlite3
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from podcast_history_converter.core.errors import StoreError

ConditionColumns = Union[str, List[str]]


class DatabaseManager:
    """SQLite access for a store working copy.

    Only builds the statements the players need: filtered selects, keyed
    batch updates and schema checks. Table and column names come from
    db.schema constants, values always go through parameters.
    """

    def __init__(self, db_path: Union[str, Path]) -> None:
        try:
            self.conn = sqlite3.connect(str(db_path))
            self.cursor = self.conn.cursor()
            # Forces a read of the file header, so non-databases fail on open
            self.cursor.execute("PRAGMA schema_version")
        except sqlite3.DatabaseError as e:
            raise StoreError(f"Unreadable SQLite database {db_path}: {e}") from e

    def close(self) -> None:
        self.commit()
        self.conn.close()

    def commit(self) -> None:
        self.conn.commit()

    def backup_to(self, path: Union[str, Path]) -> None:
        """Write a consistent snapshot of the open database to path."""
        self.commit()
        target = sqlite3.connect(str(path))
        try:
            self.conn.backup(target)
        finally:
            target.close()

    def execute(self, query: str, params: Sequence = ()) -> int:
        """Run a write statement and return the number of affected rows."""
        self.cursor.execute(query, params)
        return self.cursor.rowcount

    def select(
        self,
        table: str,
        columns: List[str],
        condition: Optional[str] = None,
        params: Sequence = (),
    ) -> list:
        query = f"SELECT {', '.join(columns)} FROM {table}"
        if condition:
            query = f"{query} WHERE {condition}"
        self.cursor.execute(query, params)
        return self.cursor.fetchall()

    def table_columns(self, table: str) -> List[str]:
        self.cursor.execute(f"PRAGMA table_info({table})")
        return [name for _, name, *_ in self.cursor.fetchall()]

    def require_schema(self, schema: Dict[str, List[str]]) -> None:
        """Check that every table exists with at least the given columns.

        Args:
            schema: Mapping of table name to required column names

        Raises:
            StoreError: If a table or column is missing
        """
        for table, columns in schema.items():
            existing = set(self.table_columns(table))
            if not existing:
                raise StoreError(f"Unrecognized store schema: missing table '{table}'")
            missing = [c for c in columns if c not in existing]
            if missing:
                raise StoreError(
                    f"Unrecognized store schema: table '{table}' lacks columns {missing}"
                )

    def update_many(
        self,
        table: str,
        columns: List[str],
        values: List[tuple],
        condition_columns: ConditionColumns,
        extra_condition: Optional[str] = None,
    ) -> int:
        """Batch update of rows selected by key columns.

        Each values tuple holds the new column values, then the key values,
        then the parameters of extra_condition.

        Example:
            >>> db.update_many("tracks", ["played"], [(1, "feed", 7)],
            ...                ["parentfeedid", "orgrssitemid"])
            1

        Returns:
            int: Number of rows changed
        """
        if isinstance(condition_columns, str):
            condition_columns = [condition_columns]

        assignments = ", ".join(f"{column} = ?" for column in columns)
        conditions = [f"{column} = ?" for column in condition_columns]
        if extra_condition:
            conditions.append(f"({extra_condition})")

        self.cursor.executemany(
            f"UPDATE {table} SET {assignments} WHERE {' AND '.join(conditions)}",
            values,
        )
        self.commit()
        return self.cursor.rowcount
