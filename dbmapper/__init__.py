"""
dbmapper: map Pydantic models onto PostgreSQL tables and run CRUD over per-call connections.

Example::

    from dbmapper import BaseTableModel, Column, CRUD, DbExecutor
    class Driver(BaseTableModel):
        driver_id: int = Column(primary_key=True)
        name: str = Column()
        created_at: datetime.datetime = Column(skip=CRUD.CREATE | CRUD.UPDATE)
    executor = DbExecutor(use_transactions=True)
    executor.create(Driver(name="Ana"))
    drivers = executor.retrieve(Driver).value
"""

__version__ = "0.1.0"

from dbmapper.base_model import (
    CRUD,
    BaseTableModel,
    Column,
    ColumnMetadata,
    DbEnum,
    FieldMapping,
    fields_for,
)
from dbmapper.db_util import (
    ConnectionSettings,
    DbUtil,
    ExecutionResult,
    load_connection_settings,
)
from dbmapper.exceptions import (
    ConfigurationError,
    DbMapperError,
    InvalidOperationError,
    MappingError,
    MissingPrimaryKeyError,
)
from dbmapper.executor import DbExecutor
from dbmapper.query_builder import Statement

__all__ = [
    "CRUD",
    "BaseTableModel",
    "Column",
    "ColumnMetadata",
    "DbEnum",
    "FieldMapping",
    "fields_for",
    "ConnectionSettings",
    "DbUtil",
    "ExecutionResult",
    "load_connection_settings",
    "DbExecutor",
    "Statement",
    "DbMapperError",
    "InvalidOperationError",
    "MappingError",
    "MissingPrimaryKeyError",
    "ConfigurationError",
    "__version__",
]
