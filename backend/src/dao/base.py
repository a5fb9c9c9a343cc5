"""
PostgreSQL plumbing shared by the market data tables.

Each concrete DAO only declares a :class:`TableSpec`; creating the table and
upserting a normalised DataFrame into it is handled here.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Sequence, Tuple

import pandas as pd
import psycopg2
from psycopg2 import sql
from psycopg2.extras import execute_values

from ..config.settings import DEFAULT_APPLICATION_NAME, PostgresSettings

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 3
SCHEMA_DIR = Path(__file__).resolve().parents[2] / "config"


@dataclass(frozen=True)
class TableSpec:
    """Static description of a destination table."""

    settings_attr: str  # PostgresSettings field holding the table name
    ddl_file: str
    columns: Tuple[str, ...]
    conflict_keys: Tuple[str, ...]
    date_columns: Tuple[str, ...] = ()

    def load_ddl(self) -> str:
        return (SCHEMA_DIR / self.ddl_file).read_text(encoding="utf-8")


def connection_kwargs(config: PostgresSettings) -> dict:
    """Translate settings into ``psycopg2.connect`` keyword arguments."""
    server_options = []
    if config.statement_timeout_ms is not None:
        server_options.append(f"-c statement_timeout={int(config.statement_timeout_ms)}")
    if config.idle_in_transaction_session_timeout_ms is not None:
        server_options.append(
            "-c idle_in_transaction_session_timeout="
            f"{int(config.idle_in_transaction_session_timeout_ms)}"
        )

    kwargs = dict(
        host=config.host,
        port=config.port,
        dbname=config.database,
        user=config.user,
        password=config.password,
        connect_timeout=config.connect_timeout or DEFAULT_CONNECT_TIMEOUT,
        application_name=config.application_name or DEFAULT_APPLICATION_NAME,
    )
    if server_options:
        kwargs["options"] = " ".join(server_options)
    return kwargs


def frame_to_rows(
    dataframe: pd.DataFrame,
    columns: Sequence[str],
    date_columns: Sequence[str] = (),
) -> List[tuple]:
    """Project ``dataframe`` onto ``columns`` as DB-ready tuples (NaN becomes NULL)."""
    if dataframe is None or dataframe.empty:
        return []
    frame = dataframe.reindex(columns=list(columns))
    for column in date_columns:
        frame[column] = pd.to_datetime(frame[column], format="%Y%m%d", errors="coerce").dt.date
    frame = frame.astype(object).where(pd.notnull(frame), None)
    return [tuple(row) for row in frame.itertuples(index=False, name=None)]


class PostgresDAOBase:
    """Table-agnostic DAO; subclasses set ``spec``."""

    spec: TableSpec

    def __init__(self, config: PostgresSettings) -> None:
        self.config = config
        self._ddl = self.spec.load_ddl()

    @property
    def table_name(self) -> str:
        return getattr(self.config, self.spec.settings_attr)

    def _qualified_table(self) -> sql.Composed:
        return sql.SQL("{}.{}").format(
            sql.Identifier(self.config.schema),
            sql.Identifier(self.table_name),
        )

    @contextmanager
    def connect(self) -> Iterator[psycopg2.extensions.connection]:
        """Yield a connection that is committed on success and always closed."""
        conn = psycopg2.connect(**connection_kwargs(self.config))
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def ensure_table(self, conn: psycopg2.extensions.connection) -> None:
        with conn.cursor() as cur:
            cur.execute(
                sql.SQL("CREATE SCHEMA IF NOT EXISTS {}").format(sql.Identifier(self.config.schema))
            )
            cur.execute(
                sql.SQL(self._ddl).format(
                    schema=sql.Identifier(self.config.schema),
                    table=sql.Identifier(self.table_name),
                )
            )

    def _upsert_statement(self) -> sql.Composed:
        spec = self.spec
        assignments = [
            sql.SQL("{col} = EXCLUDED.{col}").format(col=sql.Identifier(column))
            for column in spec.columns
            if column not in spec.conflict_keys
        ]
        assignments.append(sql.SQL("updated_at = CURRENT_TIMESTAMP"))
        return sql.SQL(
            "INSERT INTO {table} ({columns}) VALUES %s "
            "ON CONFLICT ({keys}) DO UPDATE SET {assignments}"
        ).format(
            table=self._qualified_table(),
            columns=sql.SQL(", ").join(map(sql.Identifier, spec.columns)),
            keys=sql.SQL(", ").join(map(sql.Identifier, spec.conflict_keys)),
            assignments=sql.SQL(", ").join(assignments),
        )

    def upsert(self, dataframe: pd.DataFrame) -> int:
        """Write ``dataframe`` into the table, refreshing rows that share a conflict key."""
        rows = frame_to_rows(dataframe, self.spec.columns, self.spec.date_columns)
        if not rows:
            return 0
        with self.connect() as conn:
            self.ensure_table(conn)
            with conn.cursor() as cur:
                execute_values(cur, self._upsert_statement().as_string(conn), rows)
        logger.debug("Upserted %s rows into %s.%s", len(rows), self.config.schema, self.table_name)
        return len(rows)


__all__ = ["PostgresDAOBase", "TableSpec", "connection_kwargs", "frame_to_rows"]
