"""
Pydantic table models and the field-to-column mapper.

Define models by subclassing :class:`BaseTableModel` and using :func:`Column`
for field metadata (primary key, per-operation skips). Field names are column
names and the table name is the class name unless ``__table_name__`` is set.
The mapper reads this metadata fresh on every call; nothing is cached.
"""

import logging
from enum import Enum, IntFlag
from typing import Any, Dict, Generic, List, Mapping, Optional, Tuple, Type, TypeVar

from psycopg2.extras import Json
from pydantic import BaseModel, ConfigDict, Field

from dbmapper.exceptions import MappingError

logger = logging.getLogger("dbmapper.base_model")

T = TypeVar("T", bound="BaseTableModel")
V = TypeVar("V")


class CRUD(IntFlag):
    """Operations a column can be skipped for. Combine with ``|``."""

    NONE = 0
    CREATE = 1
    RETRIEVE = 2
    UPDATE = 4
    DELETE = 8


class ColumnMetadata(BaseModel):
    """
    Metadata for a table column (stored in Pydantic Field metadata).
    ``skip`` holds :class:`CRUD` flags as a plain int.
    """

    primary_key: Optional[bool] = False
    skip: Optional[int] = 0

    def skips(self, operation: CRUD) -> bool:
        return bool(CRUD(self.skip or 0) & operation)


def Column(
    default: Optional[Any] = None,
    primary_key: Optional[bool] = False,
    skip: CRUD = CRUD.NONE,
) -> Any:
    """
    Declare a table column with mapping metadata.

    ``skip`` lists the operations the column takes no part in, e.g. a
    database-generated timestamp that is read but never written::

        class Driver(BaseTableModel):
            driver_id: int = Column(primary_key=True)
            name: str = Column()
            created_at: datetime.datetime = Column(skip=CRUD.CREATE | CRUD.UPDATE)
    """
    metadata_dict = ColumnMetadata(primary_key=primary_key, skip=int(skip)).model_dump()
    return Field(default=default, json_schema_extra={"column_metadata": metadata_dict})


class FieldMapping(BaseModel):
    """One mapped field: its name (== column name) and mapping metadata."""

    name: str
    primary_key: bool = False
    skip: int = 0

    def get_value(self, instance: Any) -> Any:
        return getattr(instance, self.name)


def adapt_value(value: Any) -> Any:
    """Adapt a Python value for psycopg2 (dict / list of dicts -> JSON, Enum -> value)."""
    if isinstance(value, dict):
        return Json(value)
    if isinstance(value, list) and len(value) > 0 and isinstance(value[0], dict):
        return Json(value)
    if isinstance(value, Enum):
        return value.value
    return value


class BaseTableModel(BaseModel):
    """
    Base class for mapped models.

    Subclass and define fields with :func:`Column`. At most one field may be
    the primary key; this is checked when the subclass is defined.
    """

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def __pydantic_init_subclass__(cls, **kwargs: Any) -> None:
        super().__pydantic_init_subclass__(**kwargs)
        primary_keys = [
            name for name, metadata in cls.get_column_metadata().items() if metadata.primary_key
        ]
        if len(primary_keys) > 1:
            raise MappingError(
                f"{cls.__name__} declares more than one primary key: {', '.join(primary_keys)}"
            )

    @classmethod
    def get_table_name(cls) -> str:
        """Return ``__table_name__`` if set, else the class name."""
        return getattr(cls, "__table_name__", None) or cls.__name__

    @classmethod
    def get_column_metadata(cls) -> Dict[str, ColumnMetadata]:
        """Return metadata per field, in declaration order."""
        columns = {}
        for name, field_info in cls.model_fields.items():
            metadata = ColumnMetadata()
            if (
                isinstance(field_info.json_schema_extra, dict)
                and "column_metadata" in field_info.json_schema_extra
            ):
                metadata = ColumnMetadata(**field_info.json_schema_extra["column_metadata"])
            columns[name] = metadata
        return columns

    @classmethod
    def get_columns(cls) -> List[str]:
        """Return the list of column names."""
        return list(cls.model_fields.keys())

    @classmethod
    def get_primary_key(cls) -> Optional[str]:
        for name, metadata in cls.get_column_metadata().items():
            if metadata.primary_key:
                return name
        return None

    @classmethod
    def get_fields(
        cls, operation: CRUD, exclude_primary_key: bool = False
    ) -> Tuple[List[FieldMapping], Optional[FieldMapping]]:
        """
        Return ``(fields, pk_field)`` for ``operation``.

        Fields skipped for the operation are left out. ``pk_field`` is the
        primary key among the remaining fields (or None); with
        ``exclude_primary_key`` it is removed from ``fields`` but still returned.
        """
        fields = [
            FieldMapping(name=name, primary_key=metadata.primary_key, skip=metadata.skip)
            for name, metadata in cls.get_column_metadata().items()
            if not metadata.skips(operation)
        ]
        pk_field = next((field for field in fields if field.primary_key), None)
        if exclude_primary_key and pk_field is not None:
            fields = [field for field in fields if field is not pk_field]
        return fields, pk_field

    @classmethod
    def from_row(cls: Type[T], row: Mapping[str, Any]) -> T:
        """
        Build an instance from a result row. Every field mapped for retrieve
        must have a column; extra columns are ignored.
        """
        fields, _ = cls.get_fields(CRUD.RETRIEVE)
        values = {}
        for field in fields:
            if field.name not in row:
                raise MappingError(
                    f"Column '{field.name}' of {cls.__name__} not found in result set"
                )
            values[field.name] = row[field.name]
        return cls.model_validate(values)


def fields_for(
    model_cls: Type[BaseTableModel], operation: CRUD, exclude_primary_key: bool = False
) -> Tuple[List[FieldMapping], Optional[FieldMapping]]:
    """Module-level form of :meth:`BaseTableModel.get_fields`."""
    return model_cls.get_fields(operation, exclude_primary_key)


class DbEnum(BaseTableModel, Generic[V]):
    """A row of a lookup ("enum") table: display name and value (usually the id)."""

    name: str = Column()
    value: V = Column()
