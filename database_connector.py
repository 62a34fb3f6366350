import logging
from typing import Optional, Sequence

import duckdb
import pandas as pd

logger = logging.getLogger(__name__)


class DatabaseError(Exception):
    """Raised when DuckDB rejects a load or a query."""


class DatabaseConnector:
    """
    Lazily opened DuckDB connection holding the stop tables.

    The stop list is rebuilt from a DataFrame on every dataset refresh and
    queried with parameterised SQL; the connection is in-memory unless a
    path is given.
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self.conn: Optional[duckdb.DuckDBPyConnection] = None

    def connect(self) -> duckdb.DuckDBPyConnection:
        if self.conn is None:
            try:
                self.conn = duckdb.connect(self.db_path)
            except duckdb.Error as e:
                logger.error(f"Could not open DuckDB at '{self.db_path}': {e}")
                raise DatabaseError(f"Database connection failed: {e}") from e
        return self.conn

    def replace_table(self, table_name: str, df: pd.DataFrame) -> None:
        """Create or replace ``table_name`` with the rows of ``df`` in one statement."""
        conn = self.connect()
        try:
            conn.register("incoming_rows", df)
            try:
                conn.execute(f"CREATE OR REPLACE TABLE {table_name} AS SELECT * FROM incoming_rows")
            finally:
                conn.unregister("incoming_rows")
        except duckdb.Error as e:
            logger.error(f"Loading {len(df)} rows into {table_name} failed: {e}")
            raise DatabaseError(f"Table load failed: {e}") from e
        logger.debug(f"Loaded {len(df)} rows into {table_name}")

    def execute_df(self, query: str, params: Optional[Sequence] = None) -> pd.DataFrame:
        """
        Run a query and return the result as a DataFrame.

        Raises:
            DatabaseError: If DuckDB rejects the query
        """
        conn = self.connect()
        try:
            return conn.execute(query, list(params) if params else []).df()
        except duckdb.Error as e:
            logger.error(f"Query failed: {e}")
            raise DatabaseError(f"Query execution failed: {e}") from e

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None
