"""
PostgreSQL connection configuration and per-call execution.

This module provides :class:`DbUtil`, which resolves connection parameters once
(from a params dict, a libpq connection string, an XML connection document, or
``DATABASE_*`` environment variables) and then runs each statement on its own
connection, optionally inside a transaction. Results come back wrapped in an
:class:`ExecutionResult` so a rolled-back call is never mistaken for one that
simply affected no rows.
"""

import logging
import os
import xml.etree.ElementTree as ElementTree
from typing import Any, Callable, Dict, Generic, List, Mapping, Optional, TypeVar, Union

import pandas as pd
import psycopg2 as psycopg
from pydantic import BaseModel, ConfigDict

from dbmapper.exceptions import ConfigurationError, InvalidOperationError
from dbmapper.query_builder import is_procedure_name

logger = logging.getLogger("dbmapper.db_util")

R = TypeVar("R")

InfoHandler = Callable[[psycopg.extensions.connection, str], None]


class ExecutionResult(BaseModel, Generic[R]):
    """
    Outcome of one call. ``error`` is set only when a transactional call
    failed and was rolled back; ``value`` then holds the operation's default.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    value: Optional[R] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def rolled_back(self) -> bool:
        return self.error is not None

    def unwrap(self) -> R:
        """Return ``value``, or raise the error that caused the rollback."""
        if self.error is not None:
            raise self.error
        return self.value


class ConnectionSettings(BaseModel):
    """
    Structured connection data. ``instance`` is the cluster port: PostgreSQL
    clusters sharing a host are told apart by port.
    """

    server: str
    instance: Optional[str] = None
    database: str
    user: Optional[str] = None
    password: Optional[str] = None
    integrated_security: bool = False

    def connection_params(self) -> Dict[str, Any]:
        """psycopg2 keyword arguments. Integrated security leaves authentication to libpq."""
        params = {"host": self.server, "database": self.database}
        if self.instance:
            params["port"] = self.instance
        if not self.integrated_security:
            params["user"] = self.user
            params["password"] = self.password
        return params


def _text(node: ElementTree.Element, tag: str) -> Optional[str]:
    value = node.findtext(tag)
    if value is None or not value.strip():
        return None
    return value.strip()


def load_connection_settings(path: str) -> ConnectionSettings:
    """
    Read a connection document of the form::

        <Config>
          <ConnectionString>
            <Server>db.local</Server>
            <Instance>5433</Instance>
            <Database>fleet</Database>
            <Username>app</Username>
            <Password>secret</Password>
            <IntegratedSecurity>false</IntegratedSecurity>
          </ConnectionString>
        </Config>

    Instance and Password may be empty; without a password, integrated
    security must be enabled.
    """
    try:
        root = ElementTree.parse(path).getroot()
    except (OSError, ElementTree.ParseError) as error:
        logger.error("DB: Failed to read connection document %s", path, exc_info=True)
        raise ConfigurationError(f"Failed to read connection document: {path}") from error

    node = root if root.tag == "ConnectionString" else root.find(".//ConnectionString")
    if node is None:
        raise ConfigurationError(f"No ConnectionString element in {path}")

    server = _text(node, "Server")
    database = _text(node, "Database")
    if server is None or database is None:
        raise ConfigurationError(f"Server and Database are required in {path}")

    integrated_security = (_text(node, "IntegratedSecurity") or "false").lower() == "true"
    password = _text(node, "Password")
    if password is None and not integrated_security:
        raise ConfigurationError(
            f"No password in {path}: enable IntegratedSecurity or provide a Password"
        )

    return ConnectionSettings(
        server=server,
        instance=_text(node, "Instance"),
        database=database,
        user=_text(node, "Username"),
        password=password,
        integrated_security=integrated_security,
    )


class _NoticeSink(list):
    """Stands in for ``connection.notices`` and forwards each notice as it arrives."""

    def __init__(self, connection: psycopg.extensions.connection, handler: InfoHandler):
        super().__init__()
        self._connection = connection
        self._handler = handler

    def append(self, notice: str) -> None:
        super().append(notice)
        self._handler(self._connection, notice)


def fetch_rows(cursor) -> List[Dict[str, Any]]:
    """Return the remaining rows as dicts (column name -> value)."""
    if cursor.description is None:
        return []
    column_names = [desc[0] for desc in cursor.description]
    return [dict(zip(column_names, row)) for row in cursor.fetchall()]


def fetch_frame(cursor) -> pd.DataFrame:
    """Return the remaining rows as a :class:`pandas.DataFrame`."""
    if cursor.description is None:
        return pd.DataFrame()
    column_names = [desc[0] for desc in cursor.description]
    return pd.DataFrame(cursor.fetchall(), columns=column_names)


def affected_rows(cursor) -> int:
    return cursor.rowcount


class DbUtil:
    """
    PostgreSQL connection configuration and per-call executor.

    ``connection`` may be a path to an XML connection document, a libpq
    connection string, a params dict, or None. Dict entries that are not
    provided fall back to environment variables: ``DATABASE_HOST``,
    ``DATABASE_NAME``, ``DATABASE_USER``, ``DATABASE_PASS``, ``DATABASE_PORT``.

    ``info_handler`` is called with ``(connection, notice)`` for every
    notice/warning the server emits while a statement runs.
    """

    def __init__(
        self,
        connection: Union[str, Dict, None] = None,
        info_handler: Optional[InfoHandler] = None,
    ):
        self.info_handler = info_handler
        self.dsn: Optional[str] = None
        self.connection_params: Dict[str, Any] = {}

        if isinstance(connection, str) and os.path.isfile(connection):
            self.connection_params = load_connection_settings(connection).connection_params()
        elif isinstance(connection, str):
            self.dsn = connection
        else:
            params = connection or {}
            self.connection_params = {
                "host": params.get("host") or os.getenv("DATABASE_HOST"),
                "database": params.get("database") or os.getenv("DATABASE_NAME"),
                "user": params.get("user") or os.getenv("DATABASE_USER"),
                "password": params.get("password") or os.getenv("DATABASE_PASS"),
                "port": params.get("port") or os.getenv("DATABASE_PORT"),
            }

    def connect(self) -> psycopg.extensions.connection:
        """Open a new connection. Raises RuntimeError on failure."""
        try:
            if self.dsn is not None:
                connection = psycopg.connect(self.dsn)
            else:
                connection = psycopg.connect(**self.connection_params)
        except Exception as error:
            logger.error("DB: Error creating connection", exc_info=True)
            raise RuntimeError("Failed to create DB Connection") from error

        if self.info_handler is not None:
            connection.notices = _NoticeSink(connection, self.info_handler)
        return connection

    def run(
        self,
        text: str,
        params: Optional[Mapping[str, Any]],
        action: Callable[[Any], R],
        use_transactions: bool = False,
        default: Optional[R] = None,
    ) -> ExecutionResult:
        """
        Execute ``text`` on a fresh connection and hand the cursor to ``action``.

        Text without whitespace is called as a stored routine. Without
        transactions the connection autocommits and errors propagate. With
        transactions the call commits on success; on any error it rolls back
        and returns ``ExecutionResult(value=default, error=error)``. The
        connection is closed on every path.
        """
        if text is None or not text.strip():
            raise InvalidOperationError("Statement text must not be blank")

        connection = self.connect()
        try:
            if not use_transactions:
                connection.autocommit = True
                try:
                    return ExecutionResult(value=self._execute(connection, text, params, action))
                except Exception:
                    logger.error("DB: Error executing statement", exc_info=True)
                    raise

            try:
                value = self._execute(connection, text, params, action)
                connection.commit()
            except Exception as error:
                logger.error("DB: Error executing statement, rolling back", exc_info=True)
                try:
                    connection.rollback()
                except psycopg.Error:
                    logger.error("DB: Error rolling back", exc_info=True)
                return ExecutionResult(value=default, error=error)
            return ExecutionResult(value=value)
        finally:
            connection.close()

    def _execute(self, connection, text: str, params: Optional[Mapping[str, Any]], action):
        logger.debug("Executing: %s", text)
        with connection.cursor() as cursor:
            if is_procedure_name(text):
                if params:
                    cursor.callproc(text, dict(params))
                else:
                    cursor.callproc(text)
            elif params:
                cursor.execute(text, dict(params))
            else:
                cursor.execute(text)
            return action(cursor)
