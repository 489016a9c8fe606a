"""Shared fixtures for dbmapper tests."""

from unittest.mock import MagicMock, patch

import pytest


@pytest.fixture
def mock_connect():
    """Patch psycopg2.connect; yields (connect, connection, cursor) mocks."""
    with patch("dbmapper.db_util.psycopg.connect") as connect:
        mock_conn = MagicMock()
        mock_cursor = MagicMock()
        mock_conn.cursor.return_value.__enter__.return_value = mock_cursor
        connect.return_value = mock_conn
        yield connect, mock_conn, mock_cursor
